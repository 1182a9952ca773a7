from __future__ import annotations

import logging
import re
from typing import Any, Dict, Sequence

from topicstore.models import Topic

logger = logging.getLogger(__name__)

UNTITLED_SLUG = "untitled-topic"

_ACCENTED = "àáâäæãåāăąçćčđďèéêëēėęěğǵḧîïíīįìłḿñńǹňôöòóœøōõőṕŕřßśšşșťțûüùúūǘůűųẃẍÿýžźż·/_,:;"
_PLAIN = "aaaaaaaaaacccddeeeeeeeegghiiiiiilmnnnnoooooooooprrsssssttuuuuuuuuuwxyyzzz------"
_TRANSLITERATE = str.maketrans(_ACCENTED, _PLAIN)

# Same character set as ECMAScript \s
_WHITESPACE = re.compile("[\t\n\v\f\r \u00a0\u1680\u2000-\u200a\u2028\u2029\u202f\u205f\u3000\ufeff]+")
_NOT_WORD = re.compile(r"[^A-Za-z0-9_\-]+")
_HYPHENS = re.compile(r"-{2,}")


def slugify(title: Any) -> str:
    """
    URL-safe identifier for a title.

    Deterministic and total: non-string input gives UNTITLED_SLUG, and a
    title with nothing left after stripping gives "".
    """
    if not isinstance(title, str):
        return UNTITLED_SLUG
    text = _WHITESPACE.sub("-", title.lower())
    text = text.translate(_TRANSLITERATE)
    text = text.replace("&", "-and-")
    text = _NOT_WORD.sub("", text)
    text = _HYPHENS.sub("-", text)
    return text.strip("-")


def is_publishable_slug(slug: str) -> bool:
    return bool(slug) and slug != UNTITLED_SLUG


def assign_page_slugs(topics: Sequence[Topic]) -> Dict[str, str]:
    """
    Map Topic.key -> output slug, in fetch order.

    The first topic to claim a slug keeps it; later ones get the slugified
    id appended so no page overwrites another. Topics whose title has no
    publishable slug are left out.
    """
    assigned: Dict[str, str] = {}
    taken = set()
    for topic in topics:
        base = slugify(topic.title)
        if not is_publishable_slug(base):
            continue
        slug = base
        if slug in taken:
            slug = f"{base}-{slugify(topic.id) or 'topic'}"
            n = 2
            while slug in taken:
                slug = f"{base}-{slugify(topic.id) or 'topic'}-{n}"
                n += 1
            logger.warning(
                "Slug '%s' already used; topic %s (\"%s\") will be written as %s.html",
                base, topic.id, topic.title, slug,
            )
        taken.add(slug)
        assigned[topic.key] = slug
    return assigned
