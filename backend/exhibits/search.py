from __future__ import annotations

import asyncio
import copy
import logging
import os
from typing import Any, Optional, Protocol

from elasticsearch import ApiError, ConflictError, Elasticsearch, NotFoundError, TransportError

from .errors import IndexConflict, SearchIndexError

# purpose: document store contract used by the index synchronizer plus its Elasticsearch and in-process backends
# inputs: document ids (record uuids) and JSON bodies
# outputs: ack booleans, found/not-found results, IndexConflict on lost conditional writes, SearchIndexError on transport failure
# status: pilot

logger = logging.getLogger(__name__)

ES_URL = os.environ.get("ELASTICSEARCH_URL")
INDEX_NAME = os.getenv("ELASTICSEARCH_INDEX", "exhibits")
INDEX_TIMEOUT_SECONDS = float(os.getenv("EXHIBITS_INDEX_TIMEOUT", "30"))
GET_TIMEOUT_SECONDS = float(os.getenv("EXHIBITS_INDEX_GET_TIMEOUT", "10"))


class SearchIndex(Protocol):
    async def index(self, doc_id: str, body: dict[str, Any], version: Any = None) -> bool:
        """Store ``body`` under ``doc_id``; ``True`` when acknowledged.

        With ``version`` set, the write only lands if the stored document still
        carries that version; otherwise ``IndexConflict`` is raised.
        """

    async def get(self, doc_id: str) -> Optional[dict[str, Any]]:
        """Return the stored document or ``None`` when absent."""

    async def get_versioned(self, doc_id: str) -> Optional[tuple[dict[str, Any], Any]]:
        """Return the stored document with its version token, or ``None``."""

    async def delete(self, doc_id: str) -> bool:
        """Remove a document; ``False`` means it was not there."""


class ElasticsearchIndex:
    """Elasticsearch-backed index; the blocking client runs in worker threads."""

    def __init__(
        self,
        client: Elasticsearch,
        index_name: str = INDEX_NAME,
        index_timeout: float = INDEX_TIMEOUT_SECONDS,
        get_timeout: float = GET_TIMEOUT_SECONDS,
    ) -> None:
        self.client = client
        self.index_name = index_name
        self.index_timeout = index_timeout
        self.get_timeout = get_timeout

    async def _call(self, operation: str, timeout: float, method, **kwargs: Any):
        try:
            return await asyncio.wait_for(asyncio.to_thread(method, **kwargs), timeout=timeout)
        except NotFoundError:
            raise
        except ConflictError as exc:
            raise IndexConflict(f"{operation} conflicted with a concurrent write") from exc
        except asyncio.TimeoutError as exc:
            raise SearchIndexError(f"{operation} timed out after {timeout}s") from exc
        except (ApiError, TransportError) as exc:
            raise SearchIndexError(f"{operation} failed: {exc}") from exc

    async def index(self, doc_id: str, body: dict[str, Any], version: Any = None) -> bool:
        conditions: dict[str, Any] = {}
        if version is not None:
            conditions = {"if_seq_no": version[0], "if_primary_term": version[1]}
        response = await self._call(
            f"index {doc_id}",
            self.index_timeout,
            self.client.index,
            index=self.index_name,
            id=doc_id,
            document=body,
            **conditions,
        )
        return response.get("result") in ("created", "updated")

    async def get(self, doc_id: str) -> Optional[dict[str, Any]]:
        fetched = await self.get_versioned(doc_id)
        return fetched[0] if fetched is not None else None

    async def get_versioned(self, doc_id: str) -> Optional[tuple[dict[str, Any], Any]]:
        try:
            response = await self._call(
                f"get {doc_id}",
                self.get_timeout,
                self.client.get,
                index=self.index_name,
                id=doc_id,
            )
        except NotFoundError:
            return None
        if not response.get("found"):
            return None
        return dict(response["_source"]), (response.get("_seq_no"), response.get("_primary_term"))

    async def delete(self, doc_id: str) -> bool:
        try:
            response = await self._call(
                f"delete {doc_id}",
                self.index_timeout,
                self.client.delete,
                index=self.index_name,
                id=doc_id,
            )
        except NotFoundError:
            return False
        return response.get("result") == "deleted"


class InMemorySearchIndex:
    """Process-local index used when no Elasticsearch URL is configured and in tests."""

    def __init__(self) -> None:
        self.documents: dict[str, dict[str, Any]] = {}
        self.versions: dict[str, int] = {}
        self._sequence = 0

    async def index(self, doc_id: str, body: dict[str, Any], version: Any = None) -> bool:
        if version is not None and self.versions.get(doc_id, 0) != version:
            raise IndexConflict(f"index {doc_id} conflicted with a concurrent write")
        self._sequence += 1
        self.documents[doc_id] = copy.deepcopy(body)
        self.versions[doc_id] = self._sequence
        return True

    async def get(self, doc_id: str) -> Optional[dict[str, Any]]:
        document = self.documents.get(doc_id)
        return copy.deepcopy(document) if document is not None else None

    async def get_versioned(self, doc_id: str) -> Optional[tuple[dict[str, Any], Any]]:
        document = await self.get(doc_id)
        if document is None:
            return None
        return document, self.versions.get(doc_id, 0)

    async def delete(self, doc_id: str) -> bool:
        self.versions.pop(doc_id, None)
        return self.documents.pop(doc_id, None) is not None


def build_search_index() -> SearchIndex:
    if ES_URL:
        return ElasticsearchIndex(Elasticsearch(ES_URL))
    logger.warning("ELASTICSEARCH_URL not set; exhibit documents are kept in process memory")
    return InMemorySearchIndex()
