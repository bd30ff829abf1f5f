"""
Indexer

Projects canonical blocklist records into the search index. The index is
an eventually-consistent copy of the primary store: indexing failures are
logged and counted, never raised into the ingestion pipelines.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from database.models import RecordKind, join_name_parts
from database.monitoring import record_indexing_failure
from database.repositories import IndividualRepository, EntityRepository
from search_index import SearchIndex, SearchBackendError

logger = logging.getLogger(__name__)

_TEXT = {'type': 'text'}
_KEYWORD = {'type': 'keyword'}
_NAME_TEXT = {'type': 'text', 'fields': {'keyword': {'type': 'keyword', 'ignore_above': 256}}}

INDEX_MAPPING: Dict[str, Any] = {
    'properties': {
        'firstName': _NAME_TEXT,
        'secondName': _NAME_TEXT,
        'thirdName': _NAME_TEXT,
        'full_name': _NAME_TEXT,
        'name': _NAME_TEXT,
        'aliasNames': _TEXT,
        'title': _TEXT,
        'nationality': _KEYWORD,
        'birthCity': _KEYWORD,
        'birthCountry': _KEYWORD,
        'addresses': _TEXT,
        'addressStreet': _TEXT,
        'addressCity': _KEYWORD,
        'addressCountry': _KEYWORD,
        'docType': _KEYWORD,
        'docNumber': _KEYWORD,
        'docIssueCountry': _KEYWORD,
        'dateOfBirth': _KEYWORD,
        'nicNumber': _KEYWORD,
        'referenceNumber': _KEYWORD,
        'recordId': _KEYWORD,
        'source': _KEYWORD,
        'sourceFile': _KEYWORD,
        'unListType': _KEYWORD,
        'listType': _KEYWORD,
        'type': _KEYWORD,
        'isActive': {'type': 'boolean'},
        'created_at': {'type': 'date'},
        'updated_at': {'type': 'date'},
    }
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def document_id(record: Any, kind: RecordKind) -> str:
    """Stable document id so re-indexing replaces the previous copy"""
    return f"{kind.value}:{record.id}"


def build_document(record: Any, kind: RecordKind) -> Dict[str, Any]:
    """
    Build a search document from a canonical record.

    Args:
        record: BlocklistIndividual or BlocklistEntity
        kind: Record kind of the record

    Returns:
        Document dict following INDEX_MAPPING
    """
    document: Dict[str, Any] = {
        'recordId': str(record.id),
        'referenceNumber': record.reference_number,
        'aliasNames': list(record.alias_names or []),
        'source': record.source,
        'sourceFile': record.source_file,
        'unListType': record.un_list_type,
        'listType': record.list_type.value if record.list_type else None,
        'type': kind.value,
        'isActive': bool(record.is_active),
        'created_at': _iso(record.created_at),
        'updated_at': _iso(record.updated_at),
    }

    if kind == RecordKind.INDIVIDUAL:
        document.update({
            'firstName': record.first_name,
            'secondName': record.second_name,
            'thirdName': record.third_name,
            'full_name': join_name_parts(record.first_name, record.second_name, record.third_name)
                         or record.full_name,
            'dateOfBirth': record.date_of_birth,
            'nicNumber': record.nic_number,
            'title': list(record.title or []),
            'nationality': list(record.nationality or []),
            'birthCity': list(record.birth_city or []),
            'birthCountry': list(record.birth_country or []),
            'addressCity': list(record.address_city or []),
            'addressCountry': list(record.address_country or []),
            'docType': list(record.document_type or []),
            'docNumber': list(record.document_number or []),
            'docIssueCountry': list(record.document_issue_country or []),
        })
    else:
        document.update({
            'name': record.name,
            'full_name': record.name,
            'addresses': list(record.addresses or []),
            'addressStreet': list(record.address_street or []),
            'addressCity': list(record.address_city or []),
            'addressCountry': list(record.address_country or []),
        })

    return document


class Indexer:
    """Pushes canonical records into a SearchIndex."""

    def __init__(self, index: SearchIndex):
        self.index = index

    def ensure_index(self) -> None:
        self.index.ensure_index(INDEX_MAPPING)

    def index_one(self, record: Any, kind: RecordKind) -> bool:
        """
        Index a single record.

        Returns:
            True when the index accepted the document
        """
        doc_id = document_id(record, kind)
        try:
            self.index.index_document(doc_id, build_document(record, kind))
            logger.debug(f"Indexed {doc_id}")
            return True
        except SearchBackendError as e:
            record_indexing_failure(kind.value)
            logger.error(f"Indexing failed for {record.reference_number}: {e}")
            return False

    def index_many(self, records: Sequence[Any], kind: RecordKind) -> int:
        """
        Bulk-index records.

        Returns:
            Number of documents the index accepted
        """
        if not records:
            logger.warning("index_many called with no records")
            return 0

        documents: List[Tuple[str, Dict[str, Any]]] = [
            (document_id(record, kind), build_document(record, kind)) for record in records
        ]
        try:
            accepted = self.index.bulk_index(documents)
        except SearchBackendError as e:
            record_indexing_failure(kind.value, len(documents))
            logger.error(f"Bulk indexing of {len(documents)} {kind.value} records failed: {e}")
            return 0

        if accepted < len(documents):
            record_indexing_failure(kind.value, len(documents) - accepted)
        logger.info(f"Indexed {accepted}/{len(documents)} {kind.value} records")
        return accepted

    def reindex_all(self, session: Session, batch_size: int = 500) -> Dict[str, int]:
        """
        Rebuild the index from the primary store.

        Args:
            session: Store session
            batch_size: Records per bulk request

        Returns:
            Indexed counts per kind
        """
        self.ensure_index()
        totals = {}
        for kind, repo in (
            (RecordKind.INDIVIDUAL, IndividualRepository(session)),
            (RecordKind.ENTITY, EntityRepository(session)),
        ):
            indexed = 0
            offset = 0
            while True:
                batch = repo.list_records(active_only=False, limit=batch_size, offset=offset)
                if not batch:
                    break
                indexed += self.index_many(batch, kind)
                offset += len(batch)
            totals[kind.value] = indexed
            logger.info(f"Reindexed {indexed} {kind.value} records")
        return totals
