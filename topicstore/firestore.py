from __future__ import annotations

import asyncio
import logging
import os
import random
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from topicstore.flatten import FetchError, StoredDocument
from topicstore.models import IsoString

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://firestore.googleapis.com"


class ConfigError(RuntimeError):
    """Required store settings are missing or malformed."""


@dataclass
class FirestoreConfig:
    project_id: str
    database: str
    base_url: str
    auth_bearer: Optional[str]
    user_agent: str
    timeout_s: float
    page_size: int
    rps: float
    max_retries: int
    backoff_base_s: float
    backoff_cap_s: float
    jitter_ratio: float

    @property
    def documents_root(self) -> str:
        return f"projects/{self.project_id}/databases/{self.database}/documents"


class RateLimiter:
    """
    Minimum-interval limiter (per process). Reads are sequential, so this only
    spaces them out; it never has to arbitrate between concurrent callers.
    """
    def __init__(self, rps: float) -> None:
        if rps <= 0:
            raise ValueError("rps must be > 0")
        self._min_interval = 1.0 / rps
        self._lock = asyncio.Lock()
        self._last_ts = 0.0

    async def wait(self) -> None:
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_ts
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_ts = time.monotonic()


def compute_backoff_s(attempt: int, base: float, cap: float, jitter_ratio: float) -> float:
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = exp * jitter_ratio * random.random()
    return exp + jitter


def decode_value(value: Dict[str, Any]) -> Any:
    """Convert one Firestore REST typed value into a plain Python value."""
    if "nullValue" in value:
        return None
    if "booleanValue" in value:
        return bool(value["booleanValue"])
    if "integerValue" in value:
        return int(value["integerValue"])
    if "doubleValue" in value:
        return float(value["doubleValue"])
    if "timestampValue" in value:
        return IsoString(value["timestampValue"])
    if "stringValue" in value:
        return value["stringValue"]
    if "bytesValue" in value:
        return value["bytesValue"]
    if "referenceValue" in value:
        return value["referenceValue"]
    if "geoPointValue" in value:
        point = value["geoPointValue"]
        return {"latitude": point.get("latitude", 0.0), "longitude": point.get("longitude", 0.0)}
    if "arrayValue" in value:
        return [decode_value(v) for v in value["arrayValue"].get("values", [])]
    if "mapValue" in value:
        return decode_fields(value["mapValue"].get("fields", {}))
    raise ValueError(f"Unsupported Firestore value: {sorted(value)}")


def decode_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {name: decode_value(v) for name, v in fields.items()}


def decode_document(doc: Dict[str, Any]) -> StoredDocument:
    name = doc.get("name", "")
    doc_id = name.rsplit("/", 1)[-1]
    if not doc_id:
        raise ValueError("Document without a name")
    return StoredDocument(id=doc_id, data=decode_fields(doc.get("fields", {})))


class FirestoreSource:
    """
    DataSource backed by the Firestore REST API.

    One client is opened for the whole build and shared by every listing:

        async with FirestoreSource(cfg) as source:
            topics = await fetch_all_topics(source)
    """

    def __init__(self, cfg: FirestoreConfig, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
        self.cfg = cfg
        self._transport = transport
        self._limiter = RateLimiter(cfg.rps)
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "FirestoreSource":
        headers = {"User-Agent": self.cfg.user_agent}
        if self.cfg.auth_bearer:
            headers["Authorization"] = f"Bearer {self.cfg.auth_bearer}"
        self._client = httpx.AsyncClient(
            base_url=self.cfg.base_url,
            timeout=self.cfg.timeout_s,
            headers=headers,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def collection_url(self, collection_path: str) -> str:
        return f"/v1/{self.cfg.documents_root}/{collection_path.strip('/')}"

    async def list_documents(self, collection_path: str) -> List[StoredDocument]:
        url = self.collection_url(collection_path)
        docs: List[StoredDocument] = []
        page_token: Optional[str] = None
        while True:
            params: Dict[str, Any] = {"pageSize": self.cfg.page_size}
            if page_token:
                params["pageToken"] = page_token
            payload = await self._get_json(url, params)
            try:
                docs.extend(decode_document(d) for d in payload.get("documents", []))
            except (ValueError, TypeError, AttributeError) as e:
                raise FetchError(f"Undecodable document in {collection_path}: {e}") from e
            page_token = payload.get("nextPageToken")
            if not page_token:
                return docs

    async def _get_json(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        GET with retries.

        Semantics:
          - Retry 429, 5xx and network errors with exponential backoff + jitter
          - 401/403 and other 4xx fail immediately
          - Anything still failing after max_retries raises FetchError
        """
        if self._client is None:
            raise RuntimeError("FirestoreSource must be used as an async context manager")

        cfg = self.cfg
        last_error = "no attempts made"
        for attempt in range(1, cfg.max_retries + 1):
            await self._limiter.wait()
            t0 = time.monotonic()
            try:
                resp = await self._client.get(url, params=params)
            except (httpx.TimeoutException, httpx.NetworkError) as e:
                last_error = f"network:{type(e).__name__}"
                logger.warning("GET %s failed (attempt %d/%d): %s", url, attempt, cfg.max_retries, last_error)
                await asyncio.sleep(compute_backoff_s(attempt, cfg.backoff_base_s, cfg.backoff_cap_s, cfg.jitter_ratio))
                continue

            elapsed_ms = int((time.monotonic() - t0) * 1000)
            status_code = resp.status_code
            logger.debug("GET %s -> %d in %d ms", url, status_code, elapsed_ms)

            if status_code in (401, 403):
                raise FetchError(f"auth_status:{status_code} for {url}")

            if status_code == 429 or 500 <= status_code <= 599:
                last_error = f"retryable_status:{status_code}"
                logger.warning("GET %s failed (attempt %d/%d): %s", url, attempt, cfg.max_retries, last_error)
                await asyncio.sleep(compute_backoff_s(attempt, cfg.backoff_base_s, cfg.backoff_cap_s, cfg.jitter_ratio))
                continue

            try:
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                raise FetchError(f"http_status:{e.response.status_code} for {url}") from e

            try:
                data = resp.json()
            except ValueError as e:
                raise FetchError(f"json_parse:{type(e).__name__} for {url}") from e
            if not isinstance(data, dict):
                raise FetchError(f"Unexpected response shape for {url}")
            return data

        raise FetchError(f"Giving up on {url} after {cfg.max_retries} attempts ({last_error})")


def _env_number(name: str, default: str, kind: type) -> Any:
    raw = os.environ.get(name, default).strip()
    try:
        return kind(raw)
    except ValueError as e:
        raise ConfigError(f"Invalid {name}={raw!r}: {e}") from e


def load_config_from_env() -> FirestoreConfig:
    project_id = os.environ.get("FIRESTORE_PROJECT_ID", "").strip()
    if not project_id:
        raise ConfigError("Missing FIRESTORE_PROJECT_ID")

    emulator_host = os.environ.get("FIRESTORE_EMULATOR_HOST", "").strip()
    auth_bearer = os.environ.get("FIRESTORE_AUTH_BEARER", "").strip() or None
    if emulator_host:
        base_url = f"http://{emulator_host}"
        auth_bearer = auth_bearer or "owner"
    else:
        base_url = os.environ.get("FIRESTORE_BASE_URL", "").strip() or DEFAULT_BASE_URL
        if not auth_bearer:
            raise ConfigError("Missing FIRESTORE_AUTH_BEARER (OAuth access token for the project)")

    cfg = FirestoreConfig(
        project_id=project_id,
        database=os.environ.get("FIRESTORE_DATABASE", "").strip() or "(default)",
        base_url=base_url,
        auth_bearer=auth_bearer,
        user_agent=os.environ.get("FIRESTORE_USER_AGENT", "perspective-sitebuild/0.1"),
        timeout_s=_env_number("FIRESTORE_TIMEOUT_S", "20", float),
        page_size=_env_number("FIRESTORE_PAGE_SIZE", "300", int),
        rps=_env_number("FIRESTORE_RPS", "10", float),
        max_retries=_env_number("FIRESTORE_MAX_RETRIES", "4", int),
        backoff_base_s=_env_number("FIRESTORE_BACKOFF_BASE_S", "0.8", float),
        backoff_cap_s=_env_number("FIRESTORE_BACKOFF_CAP_S", "30", float),
        jitter_ratio=_env_number("FIRESTORE_JITTER_RATIO", "0.25", float),
    )
    if cfg.rps <= 0 or cfg.max_retries < 1 or cfg.page_size < 1:
        raise ConfigError("FIRESTORE_RPS, FIRESTORE_MAX_RETRIES and FIRESTORE_PAGE_SIZE must be positive")
    return cfg
