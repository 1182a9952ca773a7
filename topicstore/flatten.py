from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Protocol

from topicstore.models import Topic

logger = logging.getLogger(__name__)

CATEGORIES = "categories"
SUBCATEGORIES = "subcategories"
TOPICS = "topics"


class FetchError(RuntimeError):
    """The store could not be read; a build cannot continue without the full data set."""


@dataclass(frozen=True)
class StoredDocument:
    id: str
    data: Dict[str, Any]


class DataSource(Protocol):
    """
    Read-only hierarchical document store.

    `collection_path` is a slash-separated path such as
    "categories/politics/subcategories". Documents come back in the store's
    native enumeration order.
    """

    async def list_documents(self, collection_path: str) -> List[StoredDocument]:
        ...


class InMemorySource:
    """
    DataSource over a dict of document path -> fields.

    Enumeration order is insertion order. Parent documents (categories,
    subcategories) must be present, even with empty fields, to be listed.
    """

    def __init__(self, documents: Mapping[str, Dict[str, Any]]) -> None:
        self._documents = dict(documents)

    @classmethod
    def from_tree(cls, tree: Mapping[str, Mapping[str, Mapping[str, Dict[str, Any]]]]) -> "InMemorySource":
        """Build from {category: {subcategory: {topic_id: fields}}}."""
        documents: Dict[str, Dict[str, Any]] = {}
        for category, subcategories in tree.items():
            documents[f"{CATEGORIES}/{category}"] = {}
            for subcategory, topics in subcategories.items():
                sub_path = f"{CATEGORIES}/{category}/{SUBCATEGORIES}/{subcategory}"
                documents[sub_path] = {}
                for topic_id, fields in topics.items():
                    documents[f"{sub_path}/{TOPICS}/{topic_id}"] = fields
        return cls(documents)

    @classmethod
    def from_snapshot(cls, path: Path) -> "InMemorySource":
        """Load a JSON snapshot file shaped like the tree accepted by from_tree."""
        try:
            tree = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise FetchError(f"Could not read snapshot {path}: {e}") from e
        if not isinstance(tree, dict):
            raise FetchError(f"Snapshot {path} must contain a JSON object at the top level")
        try:
            return cls.from_tree(tree)
        except (AttributeError, TypeError) as e:
            raise FetchError(f"Snapshot {path} is not shaped category -> subcategory -> topic: {e}") from e

    async def list_documents(self, collection_path: str) -> List[StoredDocument]:
        prefix = collection_path.strip("/") + "/"
        docs: List[StoredDocument] = []
        for path, fields in self._documents.items():
            if not path.startswith(prefix):
                continue
            doc_id = path[len(prefix):]
            if "/" in doc_id:
                continue
            docs.append(StoredDocument(id=doc_id, data=fields))
        return docs


async def _list(source: DataSource, collection_path: str) -> List[StoredDocument]:
    try:
        return await source.list_documents(collection_path)
    except FetchError:
        raise
    except Exception as e:
        raise FetchError(f"Listing {collection_path} failed: {type(e).__name__}: {e}") from e


async def fetch_all_topics(source: DataSource) -> List[Topic]:
    """
    Flatten categories -> subcategories -> topics into one list.

    Each Topic carries its category and subcategory ids. Order follows the
    store's enumeration at every level.

    Failure modes:
        - Raises FetchError if any listing fails; nothing is returned partially
        - Topic records that are not mappings are logged and left out
    """
    topics: List[Topic] = []
    for category in await _list(source, CATEGORIES):
        sub_root = f"{CATEGORIES}/{category.id}/{SUBCATEGORIES}"
        for subcategory in await _list(source, sub_root):
            topic_root = f"{sub_root}/{subcategory.id}/{TOPICS}"
            docs = await _list(source, topic_root)
            logger.debug("Listed %d topics under %s", len(docs), topic_root)
            for doc in docs:
                if not isinstance(doc.data, Mapping):
                    logger.warning(
                        "Skipping %s/%s: stored record is %s, not a document",
                        topic_root, doc.id, type(doc.data).__name__,
                    )
                    continue
                topics.append(Topic.from_document(doc.id, doc.data, category.id, subcategory.id))
    return topics
