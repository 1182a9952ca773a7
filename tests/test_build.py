from __future__ import annotations

import asyncio
import re
from pathlib import Path
from typing import Any, Dict, List

import pytest

from sitebuild.build import BuildSettings, build_site
from sitebuild.render import TemplateSlotError
from tests.fixtures import ADMIN_HTML, sample_tree, write_site_source
from topicstore.flatten import FetchError, InMemorySource, StoredDocument
from topicstore.models import RawTimestamp


def _settings(tmp_path: Path) -> BuildSettings:
    return BuildSettings(
        output_dir=tmp_path / "dist",
        source_dir=write_site_source(tmp_path / "src"),
    )


def _many_topics(n: int) -> Dict[str, Any]:
    # Fetch order deliberately differs from timestamp order
    topics = {}
    for i in range(n):
        seconds = 1_000_000 + ((i * 7) % n) * 60
        topics[f"id{i:02d}"] = {"title": f"Topic {i}", "timestamp": RawTimestamp(seconds=seconds)}
    return {"cat": {"sub": topics}}


def _card_ids(index_html: str) -> List[str]:
    return re.findall(r'data-topic-id="([^"]+)"', index_html)


def test_build_writes_index_pages_and_static_files(tmp_path: Path, caplog) -> None:
    settings = _settings(tmp_path)
    with caplog.at_level("INFO"):
        result = asyncio.run(build_site(InMemorySource.from_tree(sample_tree()), settings))

    out = settings.output_dir
    assert (out / "admin.html").read_text(encoding="utf-8") == ADMIN_HTML
    assert (out / "index.html").exists()
    assert sorted(p.name for p in (out / "topics").iterdir()) == ["cafe-and-creme-brulee.html", "voting-age.html"]

    assert result.total_topics == 4
    assert result.generated == 2
    assert result.skipped == ["t3", "t4"]
    assert result.failed == []
    assert "Skipping topic with ID t3" in caplog.text
    assert "Generated 2 topic pages (of 4 topics)" in caplog.text

    page = (out / "topics" / "voting-age.html").read_text(encoding="utf-8")
    assert 'content="https://perspp.netlify.app/topics/voting-age.html"' in page
    assert '"pollClosesAt":"2027-01-15T08:00:00.000Z"' in page


def test_index_holds_twelve_most_recent_cards_newest_first(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    tree = _many_topics(20)
    result = asyncio.run(build_site(InMemorySource.from_tree(tree), settings))

    topics = tree["cat"]["sub"]
    expected = sorted(topics, key=lambda tid: topics[tid]["timestamp"].seconds, reverse=True)[:12]
    index_html = (settings.output_dir / "index.html").read_text(encoding="utf-8")

    assert _card_ids(index_html) == expected
    assert result.generated == 20


def test_topics_without_timestamp_sort_last_on_index(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    tree = {"c": {"s": {"old": {"title": "No date"}, "new": {"title": "Dated", "timestamp": RawTimestamp(5)}}}}
    asyncio.run(build_site(InMemorySource.from_tree(tree), settings))
    index_html = (settings.output_dir / "index.html").read_text(encoding="utf-8")
    assert _card_ids(index_html) == ["new", "old"]


def test_one_unserializable_topic_does_not_stop_the_rest(tmp_path: Path, caplog) -> None:
    settings = _settings(tmp_path)
    topics = {f"t{i}": {"title": f"Topic {i}"} for i in range(5)}
    topics["t2"]["tags"] = {"not", "json"}

    with caplog.at_level("INFO"):
        result = asyncio.run(build_site(InMemorySource.from_tree({"c": {"s": topics}}), settings))

    assert result.generated == 4
    assert result.failed == ["t2"]
    assert len(list((settings.output_dir / "topics").glob("*.html"))) == 4
    assert not (settings.output_dir / "topics" / "topic-2.html").exists()
    assert 'FAILED to generate page for topic "Topic 2" (ID: t2)' in caplog.text


def test_malformed_timestamp_does_not_abort_the_build(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    topics: Dict[str, Any] = {f"t{i}": {"title": f"Topic {i}", "timestamp": RawTimestamp(100 + i)} for i in range(5)}
    topics["t2"]["timestamp"] = {"seconds": "not-a-number"}
    topics["t3"]["pollClosesAt"] = {"_seconds": None}

    result = asyncio.run(build_site(InMemorySource.from_tree({"c": {"s": topics}}), settings))

    assert result.generated == 5
    assert result.failed == []
    page = (settings.output_dir / "topics" / "topic-2.html").read_text(encoding="utf-8")
    assert '"timestamp":{"seconds":"not-a-number"}' in page
    index_html = (settings.output_dir / "index.html").read_text(encoding="utf-8")
    assert _card_ids(index_html) == ["t4", "t3", "t1", "t0", "t2"]


def test_non_document_record_is_skipped(tmp_path: Path, caplog) -> None:
    settings = _settings(tmp_path)
    topics: Dict[str, Any] = {f"t{i}": {"title": f"Topic {i}"} for i in range(3)}
    topics["t1"] = None

    with caplog.at_level("WARNING"):
        result = asyncio.run(build_site(InMemorySource.from_tree({"c": {"s": topics}}), settings))

    assert result.total_topics == 2
    assert result.generated == 2
    assert "Skipping categories/c/subcategories/s/topics/t1: stored record is NoneType" in caplog.text
    assert sorted(p.name for p in (settings.output_dir / "topics").glob("*.html")) == ["topic-0.html", "topic-2.html"]


def test_rebuild_is_byte_identical(tmp_path: Path) -> None:
    settings = _settings(tmp_path)

    def _snapshot() -> Dict[str, bytes]:
        asyncio.run(build_site(InMemorySource.from_tree(sample_tree()), settings))
        root = settings.output_dir
        return {str(p.relative_to(root)): p.read_bytes() for p in sorted(root.rglob("*")) if p.is_file()}

    first = _snapshot()
    second = _snapshot()
    assert first == second


def test_rebuild_removes_stale_output(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    stale = settings.output_dir / "topics" / "deleted-topic.html"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")

    asyncio.run(build_site(InMemorySource.from_tree(sample_tree()), settings))
    assert not stale.exists()


def test_colliding_titles_get_distinct_pages_and_matching_links(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    tree = {"c": {"s": {"a1": {"title": "Same Title"}, "b2": {"title": "same title!"}}}}
    result = asyncio.run(build_site(InMemorySource.from_tree(tree), settings))

    assert result.generated == 2
    names = sorted(p.name for p in (settings.output_dir / "topics").iterdir())
    assert names == ["same-title-b2.html", "same-title.html"]
    index_html = (settings.output_dir / "index.html").read_text(encoding="utf-8")
    assert 'href="/topics/same-title-b2.html?id=b2&amp;category=c&amp;subcategory=s"' in index_html


class _BrokenSource:
    async def list_documents(self, collection_path: str) -> List[StoredDocument]:
        raise FetchError("auth_status:403")


def test_fetch_failure_leaves_no_topic_pages(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    stale = settings.output_dir / "topics" / "stale.html"
    stale.parent.mkdir(parents=True)
    stale.write_text("old", encoding="utf-8")

    with pytest.raises(FetchError):
        asyncio.run(build_site(_BrokenSource(), settings))

    assert list((settings.output_dir / "topics").iterdir()) == []
    assert not (settings.output_dir / "index.html").exists()


def test_missing_template_slot_aborts_before_fetch(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    (settings.source_dir / "topic-template.html").write_text("<html>__OG_TITLE__</html>", encoding="utf-8")

    with pytest.raises(TemplateSlotError):
        asyncio.run(build_site(_BrokenSource(), settings))


def test_missing_static_file_is_fatal(tmp_path: Path) -> None:
    settings = _settings(tmp_path)
    (settings.source_dir / "admin.html").unlink()
    with pytest.raises(OSError):
        asyncio.run(build_site(InMemorySource.from_tree(sample_tree()), settings))
