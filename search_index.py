"""
Search Index Service

Abstract search-index contract used by the indexer and the fuzzy search
engine, with two implementations:
- ElasticsearchIndex: production backend (elasticsearch Python client)
- InMemorySearchIndex: process-local backend for tests and development

Index calls are the only network suspension points besides the feed
fetch; every Elasticsearch request carries a bounded timeout.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Sequence, Tuple

from elasticsearch import Elasticsearch, ApiError, TransportError
from elasticsearch.helpers import bulk, BulkIndexError
from rapidfuzz import fuzz

from database.models import normalize_name

logger = logging.getLogger(__name__)

DEFAULT_QUERY_FIELDS = (
    'firstName', 'secondName', 'thirdName', 'full_name', 'aliasNames', 'name',
)


class SearchBackendError(Exception):
    """Raised when the search index is unreachable or answers malformed data"""
    pass


class SearchIndex(ABC):
    """Contract of the search index service"""

    @abstractmethod
    def ensure_index(self, mapping: Dict[str, Any]) -> None:
        """Create the index with the given mapping when missing"""

    @abstractmethod
    def index_document(self, doc_id: str, document: Dict[str, Any]) -> None:
        """Index (or replace) one document"""

    @abstractmethod
    def bulk_index(self, documents: Sequence[Tuple[str, Dict[str, Any]]]) -> int:
        """Index many (doc_id, document) pairs; returns the number accepted"""

    @abstractmethod
    def query(
        self,
        query_text: str,
        fields: Sequence[str] = DEFAULT_QUERY_FIELDS,
        size: int = 1000
    ) -> List[Dict[str, Any]]:
        """Broad-recall fuzzy query; returns document sources in relevance order"""

    @abstractmethod
    def count(self) -> int:
        """Number of indexed documents"""

    @abstractmethod
    def latest(self, field: str = 'created_at') -> Optional[Dict[str, Any]]:
        """Document with the greatest value of a date field, or None"""

    def health_check(self) -> bool:
        try:
            self.count()
            return True
        except SearchBackendError:
            return False


# ============================================
# ELASTICSEARCH BACKEND
# ============================================

class ElasticsearchIndex(SearchIndex):
    """Search index backed by an Elasticsearch cluster."""

    def __init__(
        self,
        url: str,
        index_name: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        request_timeout: int = 30,
        client: Optional[Elasticsearch] = None
    ):
        """
        Args:
            url: Cluster URL
            index_name: Name of the blocklist index
            username: Basic auth user (optional)
            password: Basic auth password (optional)
            request_timeout: Per-request timeout in seconds
            client: Pre-built client (for testing)
        """
        self.index_name = index_name
        self.request_timeout = request_timeout
        if client is not None:
            self.es = client
        else:
            auth = (username, password) if username and password else None
            self.es = Elasticsearch(url, basic_auth=auth, request_timeout=request_timeout)

    @classmethod
    def from_config(cls, config) -> 'ElasticsearchIndex':
        search = config.search
        return cls(
            url=search.elasticsearch_url,
            index_name=search.index_name,
            username=search.username,
            password=search.password,
            request_timeout=search.request_timeout
        )

    def ensure_index(self, mapping: Dict[str, Any]) -> None:
        try:
            if not self.es.indices.exists(index=self.index_name):
                self.es.indices.create(index=self.index_name, mappings=mapping)
                logger.info(f"Created search index: {self.index_name}")
        except (ApiError, TransportError) as e:
            raise SearchBackendError(f"Could not ensure index {self.index_name}: {e}") from e

    def index_document(self, doc_id: str, document: Dict[str, Any]) -> None:
        try:
            self.es.index(index=self.index_name, id=doc_id, document=document, refresh=True)
        except (ApiError, TransportError) as e:
            raise SearchBackendError(f"Failed to index document {doc_id}: {e}") from e

    def bulk_index(self, documents: Sequence[Tuple[str, Dict[str, Any]]]) -> int:
        if not documents:
            return 0
        actions = [
            {'_index': self.index_name, '_id': doc_id, '_source': document}
            for doc_id, document in documents
        ]
        try:
            success, errors = bulk(self.es, actions, refresh=True, raise_on_error=False)
        except (ApiError, TransportError, BulkIndexError) as e:
            raise SearchBackendError(f"Bulk indexing failed: {e}") from e
        if errors:
            logger.warning(f"Bulk indexing rejected {len(errors)} of {len(actions)} documents")
        return success

    def query(
        self,
        query_text: str,
        fields: Sequence[str] = DEFAULT_QUERY_FIELDS,
        size: int = 1000
    ) -> List[Dict[str, Any]]:
        try:
            response = self.es.search(
                index=self.index_name,
                query={
                    'multi_match': {
                        'query': query_text,
                        'fields': list(fields),
                        'fuzziness': 'AUTO',
                    }
                },
                size=size
            )
        except (ApiError, TransportError) as e:
            raise SearchBackendError(f"Search request failed: {e}") from e

        hits = _extract_hits(response)
        return [hit.get('_source', {}) for hit in hits]

    def count(self) -> int:
        try:
            response = self.es.count(index=self.index_name)
        except (ApiError, TransportError) as e:
            raise SearchBackendError(f"Count request failed: {e}") from e
        return int(response['count'])

    def latest(self, field: str = 'created_at') -> Optional[Dict[str, Any]]:
        try:
            response = self.es.search(
                index=self.index_name,
                size=1,
                sort=[{field: {'order': 'desc'}}],
                source=[field]
            )
        except (ApiError, TransportError) as e:
            raise SearchBackendError(f"Latest-document request failed: {e}") from e
        hits = _extract_hits(response)
        return hits[0].get('_source') if hits else None


def _extract_hits(response: Any) -> List[Dict[str, Any]]:
    """Pull hits.hits out of a search response, rejecting malformed bodies"""
    try:
        hits = response['hits']['hits']
    except (KeyError, TypeError) as e:
        raise SearchBackendError("Invalid response from search index: hits is undefined") from e
    if not isinstance(hits, list):
        raise SearchBackendError("Invalid response from search index: hits is not a list")
    return hits


# ============================================
# IN-MEMORY BACKEND
# ============================================

class InMemorySearchIndex(SearchIndex):
    """
    Process-local index with token-level fuzzy recall.

    A document is recalled when any query token is close (rapidfuzz ratio)
    to any token of the queried fields.
    """

    def __init__(self, min_token_ratio: float = 70.0):
        self.min_token_ratio = min_token_ratio
        self.mapping: Optional[Dict[str, Any]] = None
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def ensure_index(self, mapping: Dict[str, Any]) -> None:
        self.mapping = mapping

    def index_document(self, doc_id: str, document: Dict[str, Any]) -> None:
        with self._lock:
            self._documents[doc_id] = dict(document)

    def bulk_index(self, documents: Sequence[Tuple[str, Dict[str, Any]]]) -> int:
        with self._lock:
            for doc_id, document in documents:
                self._documents[doc_id] = dict(document)
        return len(documents)

    def query(
        self,
        query_text: str,
        fields: Sequence[str] = DEFAULT_QUERY_FIELDS,
        size: int = 1000
    ) -> List[Dict[str, Any]]:
        query_tokens = normalize_name(query_text).split()
        if not query_tokens:
            return []

        with self._lock:
            documents = list(self._documents.values())

        scored = []
        for document in documents:
            doc_tokens = _document_tokens(document, fields)
            if not doc_tokens:
                continue
            best = max(
                fuzz.ratio(q, d) for q in query_tokens for d in doc_tokens
            )
            if best >= self.min_token_ratio:
                scored.append((best, document))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [dict(document) for _, document in scored[:size]]

    def count(self) -> int:
        with self._lock:
            return len(self._documents)

    def latest(self, field: str = 'created_at') -> Optional[Dict[str, Any]]:
        with self._lock:
            candidates = [d for d in self._documents.values() if d.get(field)]
        if not candidates:
            return None
        return dict(max(candidates, key=lambda d: d[field]))

    def clear(self) -> None:
        with self._lock:
            self._documents.clear()


def _document_tokens(document: Dict[str, Any], fields: Sequence[str]) -> List[str]:
    tokens: List[str] = []
    for name in fields:
        value = document.get(name)
        if isinstance(value, list):
            for item in value:
                tokens.extend(normalize_name(str(item)).split())
        elif value:
            tokens.extend(normalize_name(str(value)).split())
    return tokens


def create_search_index(config) -> SearchIndex:
    """Build the configured search index backend."""
    if config.search.backend == 'memory':
        logger.info("Using in-memory search index")
        return InMemorySearchIndex()
    return ElasticsearchIndex.from_config(config)
