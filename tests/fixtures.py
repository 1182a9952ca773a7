from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict

from topicstore.models import RawTimestamp

INDEX_TEMPLATE = """<!DOCTYPE html>
<html><body><div id="topic-list"><!--TOPIC_LIST_PLACEHOLDER--></div></body></html>
"""

TOPIC_TEMPLATE = """<!DOCTYPE html>
<html><head>
<title>__OG_TITLE__</title>
<meta property="og:title" content="__OG_TITLE__">
<meta property="og:description" content="__OG_DESCRIPTION__">
<meta property="og:image" content="__OG_IMAGE__">
<meta property="og:url" content="__OG_URL__">
</head><body>
<script id="topic-data" type="application/json">__TOPIC_DATA_JSON__</script>
</body></html>
"""

ADMIN_HTML = "<!DOCTYPE html><html><body>admin</body></html>\n"

SAMPLE_TREE: Dict[str, Any] = {
    "politics": {
        "elections": {
            "t1": {
                "title": "Café & Crème Brûlée!",
                "description": "Dessert diplomacy",
                "media": [
                    {"type": "video", "url": "https://example.invalid/v.mp4"},
                    {"type": "image", "url": "https://example.invalid/a.png"},
                ],
                "perspectives": {"A": {"votes": 3}, "B": {"votes": 5}},
                "likes": 4,
                "timestamp": RawTimestamp(seconds=1_700_000_000),
            },
            "t2": {
                "title": "Voting Age",
                "timestamp": RawTimestamp(seconds=1_700_000_500, nanos=250_000_000),
                "pollClosesAt": {"_seconds": 1_800_000_000, "_nanoseconds": 0},
            },
        },
    },
    "science & tech": {
        "ai": {
            "t3": {"title": "", "timestamp": RawTimestamp(seconds=1_600_000_000)},
            "t4": {"description": "no title at all"},
        },
    },
}


def sample_tree() -> Dict[str, Any]:
    """Deep copy of SAMPLE_TREE; tests may mutate the result."""
    return copy.deepcopy(SAMPLE_TREE)


def write_site_source(source_dir: Path) -> Path:
    source_dir.mkdir(parents=True, exist_ok=True)
    (source_dir / "index-template.html").write_text(INDEX_TEMPLATE, encoding="utf-8")
    (source_dir / "topic-template.html").write_text(TOPIC_TEMPLATE, encoding="utf-8")
    (source_dir / "admin.html").write_text(ADMIN_HTML, encoding="utf-8")
    return source_dir
