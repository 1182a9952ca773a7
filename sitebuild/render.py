from __future__ import annotations

import html
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Sequence
from urllib.parse import quote

from jinja2 import Environment, FileSystemLoader
from jinja2.utils import htmlsafe_json_dumps

from sitebuild.slugs import slugify
from topicstore.models import Topic

CARD_PLACEHOLDER_IMAGE = "https://placehold.co/600x400/e2e8f0/64748b?text="
PAGE_DEFAULT_TITLE = "Perspective Poll Topic"
PAGE_DEFAULT_DESCRIPTION = "Join the discussion on Perspective Poll."
PAGE_DEFAULT_IMAGE = "https://placehold.co/1200x630/3b82f6/ffffff?text=Perspective%0APoll"
CARD_DEFAULT_TITLE = "Untitled Topic"

# Characters encodeURIComponent leaves alone besides alphanumerics
_URI_COMPONENT_SAFE = "-_.!~*'()"


class TemplateSlotError(ValueError):
    """A template is missing a placeholder it must contain."""


class PageSlot(str, Enum):
    TITLE = "__OG_TITLE__"
    DESCRIPTION = "__OG_DESCRIPTION__"
    IMAGE = "__OG_IMAGE__"
    URL = "__OG_URL__"
    DATA = "__TOPIC_DATA_JSON__"


class IndexSlot(str, Enum):
    TOPIC_LIST = "<!--TOPIC_LIST_PLACEHOLDER-->"


# Slots replaced at their first occurrence only; the rest are replaced everywhere.
_SINGLE_USE = {PageSlot.DATA, IndexSlot.TOPIC_LIST}


def encode_uri_component(value: Any) -> str:
    return quote(str(value), safe=_URI_COMPONENT_SAFE)


@lru_cache(maxsize=1)
def _get_template_env() -> Environment:
    """Create Jinja2 environment with templates directory."""
    templates_dir = Path(__file__).parent / "templates"
    return Environment(
        loader=FileSystemLoader(str(templates_dir)),
        autoescape=True,
        trim_blocks=True,
        lstrip_blocks=True,
    )


def topic_link(topic: Topic, slug: Optional[str] = None) -> str:
    slug = slug if slug is not None else slugify(topic.title)
    return (
        f"/topics/{slug}.html?id={encode_uri_component(topic.id)}"
        f"&category={encode_uri_component(topic.category)}"
        f"&subcategory={encode_uri_component(topic.subcategory)}"
    )


def _prepare_card_context(topic: Topic, slug: Optional[str]) -> Dict[str, Any]:
    image_url = topic.first_image_url
    if image_url is None:
        image_url = CARD_PLACEHOLDER_IMAGE + encode_uri_component(topic.title or CARD_DEFAULT_TITLE)
    return {
        "link": topic_link(topic, slug),
        "topic_id": topic.id,
        "image_url": image_url,
        "image_alt": topic.title or "Topic",
        "subcategory": topic.subcategory,
        "title": topic.title or CARD_DEFAULT_TITLE,
        "description": topic.description or "",
        "likes": topic.likes,
        "total_votes": topic.total_votes,
    }


def render_card(topic: Topic, slug: Optional[str] = None) -> str:
    """
    Render one topic as an index-page card.

    Args:
        topic: Topic to render
        slug: Output slug assigned by the build; defaults to the title's slug

    Returns:
        HTML fragment; missing fields fall back to defaults, so this does not fail
    """
    template = _get_template_env().get_template("topic_card.html.j2")
    return template.render(**_prepare_card_context(topic, slug))


def render_cards(topics: Iterable[Topic], slugs: Optional[Dict[str, str]] = None) -> str:
    slugs = slugs or {}
    return "\n".join(render_card(t, slugs.get(t.key)) for t in topics)


class SlotTemplate:
    """
    Template text with a fixed, enumerated set of placeholder slots.

    Every slot must occur in the text; this is checked when the template is
    created so a renamed placeholder fails the build instead of rendering
    unchanged. Rendering substitutes all slots in one pass, so values are
    never themselves scanned for placeholders.
    """

    slots: Sequence[Enum] = ()

    def __init__(self, text: str, name: str = "template") -> None:
        missing = [slot.value for slot in self.slots if slot.value not in text]
        if missing:
            raise TemplateSlotError(f"{name} is missing placeholder(s): {', '.join(missing)}")
        self.text = text
        self.name = name
        self._pattern = re.compile("|".join(re.escape(slot.value) for slot in self.slots))

    @classmethod
    def load(cls, path: Path) -> "SlotTemplate":
        return cls(Path(path).read_text(encoding="utf-8"), name=Path(path).name)

    def substitute(self, values: Dict[Enum, str]) -> str:
        by_token = {slot.value: values[slot] for slot in self.slots}
        used = set()

        def _replace(match: "re.Match[str]") -> str:
            token = match.group(0)
            slot = next(s for s in self.slots if s.value == token)
            if slot in _SINGLE_USE:
                if token in used:
                    return token
                used.add(token)
            return by_token[token]

        return self._pattern.sub(_replace, self.text)


class IndexTemplate(SlotTemplate):
    slots = tuple(IndexSlot)

    def render(self, cards_html: str) -> str:
        return self.substitute({IndexSlot.TOPIC_LIST: cards_html})


@dataclass(frozen=True)
class PageContext:
    title: str
    description: str
    image_url: str
    canonical_url: str
    data_json: str

    @classmethod
    def for_topic(cls, topic: Topic, canonical_url: str) -> "PageContext":
        """
        Failure modes:
            - Raises TypeError/ValueError if the topic payload is not JSON-serializable
        """
        return cls(
            title=topic.title or PAGE_DEFAULT_TITLE,
            description=topic.description or PAGE_DEFAULT_DESCRIPTION,
            image_url=topic.first_image_url or PAGE_DEFAULT_IMAGE,
            canonical_url=canonical_url,
            data_json=serialize_topic(topic),
        )


class PageTemplate(SlotTemplate):
    slots = tuple(PageSlot)

    def render(self, context: PageContext) -> str:
        return self.substitute(
            {
                PageSlot.TITLE: html.escape(context.title),
                PageSlot.DESCRIPTION: html.escape(context.description),
                PageSlot.IMAGE: html.escape(context.image_url),
                PageSlot.URL: html.escape(context.canonical_url),
                PageSlot.DATA: context.data_json,
            }
        )


def serialize_topic(topic: Topic) -> str:
    """Sorted-key JSON of the topic payload, safe to embed inside <script>."""
    return str(
        htmlsafe_json_dumps(
            topic.to_payload(),
            sort_keys=True,
            ensure_ascii=False,
            separators=(",", ":"),
            allow_nan=False,
        )
    )


def render_page(template: PageTemplate, topic: Topic, canonical_url: str) -> str:
    return template.render(PageContext.for_topic(topic, canonical_url))
