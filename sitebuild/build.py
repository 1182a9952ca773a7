from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Tuple

from sitebuild.render import IndexTemplate, PageTemplate, render_cards, render_page
from sitebuild.slugs import assign_page_slugs, slugify
from topicstore.flatten import DataSource, fetch_all_topics
from topicstore.models import Topic

logger = logging.getLogger(__name__)

DEFAULT_SITE_ORIGIN = "https://perspp.netlify.app"
TOPICS_SUBDIR = "topics"
INDEX_TEMPLATE = "index-template.html"
TOPIC_TEMPLATE = "topic-template.html"
RECENT_LIMIT = 12


@dataclass
class BuildSettings:
    output_dir: Path = Path("dist")
    source_dir: Path = Path("site_src")
    static_files: Tuple[str, ...] = ("admin.html",)
    site_origin: str = DEFAULT_SITE_ORIGIN
    recent_limit: int = RECENT_LIMIT

    @property
    def topics_dir(self) -> Path:
        return self.output_dir / TOPICS_SUBDIR

    def canonical_url(self, slug: str) -> str:
        return f"{self.site_origin.rstrip('/')}/{TOPICS_SUBDIR}/{slug}.html"


@dataclass
class BuildResult:
    """
    Outcome of one build.

    Invariant: generated + len(skipped) + len(failed) == total_topics
    """
    total_topics: int
    generated: int
    skipped: List[str] = field(default_factory=list)  # topic ids with no publishable slug
    failed: List[str] = field(default_factory=list)  # topic ids whose page could not be written
    index_path: Path = Path()
    page_paths: List[Path] = field(default_factory=list)


def reset_output_dir(settings: BuildSettings) -> None:
    if settings.output_dir.exists():
        shutil.rmtree(settings.output_dir)
    settings.topics_dir.mkdir(parents=True, exist_ok=True)


def copy_static_files(settings: BuildSettings) -> None:
    for name in settings.static_files:
        shutil.copyfile(settings.source_dir / name, settings.output_dir / name)
    logger.info("Copied static files: %s", ", ".join(settings.static_files) or "(none)")


def newest_first(topics: Sequence[Topic]) -> List[Topic]:
    """Stable sort by creation time, newest first; topics without a timestamp go last."""
    return sorted(topics, key=lambda t: t.sort_key, reverse=True)


def write_index(template: IndexTemplate, topics: Sequence[Topic], slugs: Dict[str, str], settings: BuildSettings) -> Path:
    recent = newest_first(topics)[: settings.recent_limit]
    index_path = settings.output_dir / "index.html"
    index_path.write_text(template.render(render_cards(recent, slugs)), encoding="utf-8")
    logger.info("Generated index.html with %d pre-rendered recent topics", len(recent))
    return index_path


async def build_site(source: DataSource, settings: BuildSettings) -> BuildResult:
    """
    Run one full build from the data source into settings.output_dir.

    Args:
        source: Read-only topic store
        settings: Output/input locations and site parameters

    Returns:
        BuildResult with per-topic outcomes

    Failure modes:
        - Raises OSError if the output tree, static files or templates cannot be handled
        - Raises TemplateSlotError if a template lacks a placeholder
        - Raises FetchError if the store cannot be read in full
        - Per-topic render/write errors are logged and recorded, never raised
    """
    logger.info("Starting site build into %s", settings.output_dir)

    reset_output_dir(settings)
    copy_static_files(settings)

    page_template = PageTemplate.load(settings.source_dir / TOPIC_TEMPLATE)
    index_template = IndexTemplate.load(settings.source_dir / INDEX_TEMPLATE)

    topics = await fetch_all_topics(source)
    logger.info("Fetched %d total topics", len(topics))

    slugs = assign_page_slugs(topics)
    index_path = write_index(index_template, topics, slugs, settings)

    result = BuildResult(total_topics=len(topics), generated=0, index_path=index_path)
    for topic in topics:
        slug = slugs.get(topic.key)
        if slug is None:
            logger.warning(
                "Skipping topic with ID %s due to invalid title (slug %r)", topic.id, slugify(topic.title)
            )
            result.skipped.append(topic.id)
            continue

        try:
            page_path = settings.topics_dir / f"{slug}.html"
            html = render_page(page_template, topic, settings.canonical_url(slug))
            page_path.write_text(html, encoding="utf-8")
        except Exception as e:
            logger.error(
                "FAILED to generate page for topic \"%s\" (ID: %s): %s: %s",
                topic.title or "NO TITLE", topic.id, type(e).__name__, e,
            )
            result.failed.append(topic.id)
            continue

        result.generated += 1
        result.page_paths.append(page_path)

    logger.info("Generated %d topic pages (of %d topics)", result.generated, result.total_topics)
    if result.skipped or result.failed:
        logger.info("Skipped %d, failed %d", len(result.skipped), len(result.failed))
    return result
