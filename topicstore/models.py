from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Union

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_FRACTION = re.compile(r"\.(\d+)")

# Fields the store writes as timestamps; their map-shaped form is read as RawTimestamp.
TEMPORAL_FIELDS = ("timestamp", "pollClosesAt")


@dataclass(frozen=True)
class RawTimestamp:
    """Store-native instant: whole seconds since the epoch plus nanoseconds."""
    seconds: int
    nanos: int = 0

    def to_datetime(self) -> datetime:
        return _EPOCH + timedelta(seconds=self.seconds, microseconds=self.nanos // 1000)


@dataclass(frozen=True)
class IsoString:
    """RFC 3339 instant as returned by the REST API (e.g. "2024-05-01T12:00:00.123456Z")."""
    value: str

    def to_datetime(self) -> datetime:
        text = self.value.strip().replace("Z", "+00:00")
        # fromisoformat on older interpreters accepts at most 6 fractional digits
        text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
        dt = datetime.fromisoformat(text)
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt.astimezone(timezone.utc)


Instant = Union[RawTimestamp, IsoString]


def classify_instant(value: Any) -> Optional[Instant]:
    """
    Tag a stored temporal value with its variant.

    Accepts the tagged variants themselves, seconds/nanoseconds mappings
    (both the plain and the underscore-prefixed admin SDK spelling) and ISO
    strings. Returns None for anything else.
    """
    if isinstance(value, (RawTimestamp, IsoString)):
        return value
    if isinstance(value, str):
        return IsoString(value)
    if isinstance(value, Mapping):
        for sec_key, nano_key in (("seconds", "nanoseconds"), ("_seconds", "_nanoseconds")):
            if sec_key in value:
                try:
                    return RawTimestamp(int(value[sec_key]), int(value.get(nano_key, 0) or 0))
                except (TypeError, ValueError, OverflowError):
                    return None
    return None


def resolve_instant(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    tagged = classify_instant(value)
    if tagged is None:
        return None
    try:
        return tagged.to_datetime()
    except (ValueError, OverflowError):
        return None


def resolve_tagged(value: Any) -> Any:
    """Replace every tagged instant nested anywhere in value with a datetime."""
    if isinstance(value, (RawTimestamp, IsoString)):
        try:
            return value.to_datetime()
        except (ValueError, OverflowError):
            return value.value if isinstance(value, IsoString) else value.seconds
    if isinstance(value, dict):
        return {k: resolve_tagged(v) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_tagged(v) for v in value]
    return value


def format_instant(dt: datetime) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. 2024-05-01T12:00:00.000Z."""
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@dataclass(frozen=True)
class MediaItem:
    type: str
    url: str


@dataclass
class Topic:
    """
    One discussion item, flattened out of its category/subcategory.

    `fields` is the stored record with all temporal values resolved to
    datetime; the typed attributes are read from it for rendering.
    """
    id: str
    category: str
    subcategory: str
    title: Optional[str] = None
    description: Optional[str] = None
    media: List[MediaItem] = field(default_factory=list)
    perspectives: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    likes: Union[int, float] = 0
    timestamp: Optional[datetime] = None
    poll_closes_at: Optional[datetime] = None
    fields: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(
        cls, doc_id: str, data: Mapping[str, Any], category: str, subcategory: str
    ) -> "Topic":
        fields: Dict[str, Any] = resolve_tagged(dict(data))
        for name in TEMPORAL_FIELDS:
            if name in fields and not isinstance(fields[name], datetime):
                resolved = resolve_instant(fields[name])
                if resolved is not None:
                    fields[name] = resolved

        media: List[MediaItem] = []
        raw_media = fields.get("media")
        for item in raw_media if isinstance(raw_media, list) else []:
            if isinstance(item, Mapping):
                media.append(MediaItem(type=str(item.get("type") or ""), url=str(item.get("url") or "")))

        perspectives = fields.get("perspectives")
        likes = fields.get("likes")
        title = fields.get("title")
        description = fields.get("description")
        timestamp = fields.get("timestamp")
        closes = fields.get("pollClosesAt")

        return cls(
            id=doc_id,
            category=category,
            subcategory=subcategory,
            title=title if isinstance(title, str) else None,
            description=description if isinstance(description, str) else None,
            media=media,
            perspectives=dict(perspectives) if isinstance(perspectives, Mapping) else {},
            likes=_number(likes),
            timestamp=timestamp if isinstance(timestamp, datetime) else None,
            poll_closes_at=closes if isinstance(closes, datetime) else None,
            fields=fields,
        )

    @property
    def key(self) -> str:
        """Unique within a snapshot; store ids are only unique per subcategory."""
        return f"{self.category}/{self.subcategory}/{self.id}"

    @property
    def total_votes(self) -> Union[int, float]:
        total: Union[int, float] = 0
        for record in self.perspectives.values():
            votes = record.get("votes") if isinstance(record, Mapping) else None
            if isinstance(votes, (int, float)) and not isinstance(votes, bool):
                total += votes
        return _number(total)

    @property
    def first_image_url(self) -> Optional[str]:
        for item in self.media:
            if item.type == "image" and item.url:
                return item.url
        return None

    @property
    def sort_key(self) -> float:
        """Seconds since the epoch; topics without a timestamp sort as 0."""
        return self.timestamp.timestamp() if self.timestamp else 0.0

    def to_payload(self) -> Dict[str, Any]:
        """JSON-ready record for client-side hydration."""
        payload: Dict[str, Any] = {"id": self.id}
        payload.update(_iso_dates(self.fields))
        payload["category"] = self.category
        payload["subcategory"] = self.subcategory
        return payload


def _iso_dates(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_instant(value)
    if isinstance(value, dict):
        return {k: _iso_dates(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_iso_dates(v) for v in value]
    return value


def _number(value: Any) -> Union[int, float]:
    """Numeric counter as displayed; whole floats (Firestore doubleValue) show as ints, anything else as 0."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return 0
        return int(value) if value.is_integer() else value
    return value
