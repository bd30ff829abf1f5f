"""
Fuzzy Search Engine
Broad fuzzy recall from the search index, re-ranked by token similarity

Features:
- Bigram Dice string similarity (compare_two_strings)
- Symmetric token-level scoring: every query token is matched to its best
  candidate token and vice versa; the stronger direction wins
- Record kind and data source filtering
- Stable ordering: equal scores keep the index's relevance order

SECURITY: Query input is validated and sanitized before logging.
"""

import logging
import unicodedata
from collections import Counter
from dataclasses import dataclass
from typing import List, Dict, Optional, Any, Tuple

from config_manager import get_config, ConfigManager, VALID_DATA_SOURCES
from database.models import ListType, RecordKind, normalize_name
from database.monitoring import operation_timer
from search_index import SearchIndex
from xml_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

# Data source selector -> list classification filter (None means no filter)
DATA_SOURCE_LIST_TYPES: Dict[str, Optional[str]] = {
    'Local': ListType.LOCAL_SANCTIONS.value,
    'UN': ListType.UN_SANCTIONS.value,
    'Both': None,
}

INDIVIDUAL_NAME_FIELDS = ('firstName', 'secondName', 'thirdName')


class InputValidationError(ValueError):
    """Raised when input validation fails

    Attributes:
        field: The field that failed validation
        code: Error code for programmatic handling
        message: Human-readable error message
        suggestion: Optional suggestion for fixing the error
    """
    def __init__(self, message: str, field: str = "unknown", code: str = "VALIDATION_ERROR", suggestion: str = ""):
        self.field = field
        self.code = code
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


# ============================================
# SIMILARITY
# ============================================

def _bigrams(text: str) -> Counter:
    return Counter(text[i:i + 2] for i in range(len(text) - 1))


def compare_two_strings(first: str, second: str) -> float:
    """Dice coefficient over character bigrams (whitespace ignored)

    Args:
        first: First string
        second: Second string

    Returns:
        Similarity in [0, 1]; 1.0 for identical strings
    """
    first = ''.join((first or '').split())
    second = ''.join((second or '').split())

    if first == second:
        return 1.0 if first else 0.0
    if len(first) < 2 or len(second) < 2:
        return 0.0

    first_bigrams = _bigrams(first)
    second_bigrams = _bigrams(second)
    overlap = sum((first_bigrams & second_bigrams).values())
    return (2.0 * overlap) / (len(first) + len(second) - 2)


def _tokens(text: str) -> List[str]:
    return normalize_name(text or '').split()


def token_similarity(query: str, candidate: str) -> Tuple[float, float]:
    """Average best-token similarity in both directions

    Returns:
        (query_side, candidate_side), each in [0, 1]
    """
    query_tokens = _tokens(query)
    candidate_tokens = _tokens(candidate)
    if not query_tokens or not candidate_tokens:
        return 0.0, 0.0

    query_side = sum(
        max(compare_two_strings(q, c) for c in candidate_tokens) for q in query_tokens
    ) / len(query_tokens)
    candidate_side = sum(
        max(compare_two_strings(c, q) for q in query_tokens) for c in candidate_tokens
    ) / len(candidate_tokens)
    return query_side, candidate_side


def similarity_percentage(query: str, candidate: str) -> float:
    """Symmetric token similarity as a percentage with two decimals"""
    return round(max(token_similarity(query, candidate)) * 100, 2)


def candidate_name(document: Dict[str, Any]) -> str:
    """Name string a candidate is scored against"""
    if document.get('type') == RecordKind.ENTITY.value or document.get('name'):
        name = document.get('name')
    else:
        name = ' '.join(
            str(document[f]) for f in INDIVIDUAL_NAME_FIELDS if document.get(f)
        )
    return (name or document.get('full_name') or '').strip()


@dataclass
class SearchHit:
    """Candidate document plus its similarity score"""
    document: Dict[str, Any]
    similarity: float
    matched_name: str = ''

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.document)
        result['similarityPercentage'] = self.similarity
        return result


# ============================================
# VALIDATION
# ============================================

def validate_query(query_text: Any, max_length: int = 200) -> str:
    """Validate a free-text search query

    Returns:
        The trimmed query

    Raises:
        InputValidationError: If the query is blank, too long or has control characters
    """
    if not isinstance(query_text, str) or not query_text.strip():
        raise InputValidationError(
            "Search term is required",
            field="searchTerm",
            code="SEARCH_TERM_REQUIRED",
            suggestion="Provide a name to search for"
        )

    query = query_text.strip()
    if len(query) > max_length:
        raise InputValidationError(
            f"Search term too long ({len(query)} chars, maximum {max_length})",
            field="searchTerm",
            code="SEARCH_TERM_TOO_LONG",
            suggestion=f"Shorten the search term to {max_length} characters or less"
        )

    for char in query:
        if unicodedata.category(char).startswith('C'):
            logger.warning("SECURITY: Control character detected in search term: %s",
                           sanitize_for_logging(query))
            raise InputValidationError(
                f"Search term contains invalid control character (code: {ord(char)})",
                field="searchTerm",
                code="CONTROL_CHARACTER",
                suggestion="Remove invisible or control characters from the search term"
            )
    return query


def resolve_data_source(data_source: Optional[str], default: str = 'Both') -> str:
    """Validate a data source selector, falling back to the default"""
    selected = data_source or default
    if selected not in VALID_DATA_SOURCES:
        raise InputValidationError(
            f"Invalid data source '{sanitize_for_logging(selected)}'",
            field="dataSource",
            code="INVALID_DATA_SOURCE",
            suggestion=f"Use one of: {', '.join(VALID_DATA_SOURCES)}"
        )
    return selected


def resolve_record_kind(record_kind: Any) -> Optional[RecordKind]:
    """Map a searchType value to a RecordKind (None for all kinds)"""
    if record_kind is None or isinstance(record_kind, RecordKind):
        return record_kind
    value = str(record_kind).strip().lower()
    if value in ('', 'all'):
        return None
    try:
        return RecordKind(value)
    except ValueError:
        raise InputValidationError(
            f"Invalid search type '{sanitize_for_logging(str(record_kind))}'",
            field="searchType",
            code="INVALID_SEARCH_TYPE",
            suggestion="Use 'individual', 'entity' or 'all'"
        )


# ============================================
# SEARCH ENGINE
# ============================================

class FuzzySearchEngine:
    """Fuzzy name search over the blocklist index"""

    def __init__(self, index: SearchIndex, config: Optional[ConfigManager] = None):
        """
        Args:
            index: Search index service
            config: Configuration manager instance
        """
        self.index = index
        self.config = config or get_config()

    def search(
        self,
        query_text: str,
        record_kind: Optional[Any] = None,
        data_source: Optional[str] = None
    ) -> List[SearchHit]:
        """
        Search the blocklist.

        Args:
            query_text: Free-text name query
            record_kind: RecordKind, 'individual', 'entity', 'all' or None
            data_source: 'Local', 'UN' or 'Both' (defaults to search.data_source)

        Returns:
            Hits sorted by descending similarity

        Raises:
            InputValidationError: If the query or selectors are invalid
            SearchBackendError: If the search index fails
        """
        settings = self.config.search
        query = validate_query(query_text, settings.max_query_length)
        kind = resolve_record_kind(record_kind)
        source = resolve_data_source(data_source, settings.data_source)
        list_type = DATA_SOURCE_LIST_TYPES[source]

        with operation_timer("search"):
            candidates = self.index.query(query, size=settings.max_candidates)

        hits: List[SearchHit] = []
        for document in candidates:
            if kind is not None and document.get('type') != kind.value:
                continue
            if list_type is not None and document.get('listType') != list_type:
                continue
            name = candidate_name(document)
            hits.append(SearchHit(
                document=document,
                similarity=similarity_percentage(query, name),
                matched_name=name
            ))

        # list.sort is stable: ties keep recall order
        hits.sort(key=lambda hit: hit.similarity, reverse=True)

        logger.info(
            "Search '%s' (type=%s, source=%s): %d candidates, %d results",
            sanitize_for_logging(query),
            kind.value if kind else 'all',
            source,
            len(candidates),
            len(hits)
        )
        return hits

    def database_status(self) -> Dict[str, Any]:
        """
        Summarize the index.

        Returns:
            {'totalRecords': int, 'lastUpdated': str} (lastUpdated is 'N/A' when empty)

        Raises:
            SearchBackendError: If the search index fails
        """
        total = self.index.count()
        latest = self.index.latest('created_at')
        last_updated = (latest or {}).get('created_at') or 'N/A'
        return {'totalRecords': total, 'lastUpdated': last_updated}
