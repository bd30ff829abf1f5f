"""
Format Detector

Classifies an ingested batch once, from its first row:
- record kind: individual vs entity
- dialect: "local" (in-house list layout, IN/CA and EN/CA reference
  numbers) vs "external" (UN-style column names)

A batch is assumed homogeneous, so detection never runs per row.
"""

import logging
from enum import Enum as PyEnum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from database.models import RecordKind

logger = logging.getLogger(__name__)


class Dialect(str, PyEnum):
    """Source field-naming convention"""
    LOCAL = "local"
    EXTERNAL = "external"


class EmptyBatchError(ValueError):
    """Raised when a batch has no rows to classify"""
    pass


REFERENCE_FIELDS = ('reference_number', 'referenceNumber', 'ref')

INDIVIDUAL_PREFIX = 'IN/'
ENTITY_PREFIX = 'EN/'
LOCAL_INDIVIDUAL_PREFIX = 'IN/CA/'
LOCAL_ENTITY_PREFIX = 'EN/CA/'

INDIVIDUAL_INDICATORS = (
    'firstName', 'first_name', 'given_name',
    'secondName', 'second_name', 'surname',
    'dob', 'date_of_birth',
    'nic', 'national_id',
)

ENTITY_INDICATORS = (
    'company_name', 'entity_name', 'companyName', 'entityName', 'organization',
)


def _field_names(row: Mapping[str, Any]) -> set:
    return {str(key).strip() for key in row.keys() if key is not None}


def reference_value(row: Mapping[str, Any]) -> Optional[str]:
    """Return the first non-blank reference-number-like value of a row"""
    for name in REFERENCE_FIELDS:
        value = row.get(name)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def detect_record_kind(sample_row: Mapping[str, Any]) -> RecordKind:
    """
    Decide whether a row describes an individual or an entity.

    Args:
        sample_row: First row of the batch (column name -> value)

    Returns:
        RecordKind.INDIVIDUAL or RecordKind.ENTITY
    """
    reference = reference_value(sample_row)
    if reference:
        upper = reference.upper()
        if upper.startswith(INDIVIDUAL_PREFIX):
            return RecordKind.INDIVIDUAL
        if upper.startswith(ENTITY_PREFIX):
            return RecordKind.ENTITY

    names = _field_names(sample_row)
    individual_score = sum(1 for field in INDIVIDUAL_INDICATORS if field in names)
    entity_score = sum(1 for field in ENTITY_INDICATORS if field in names)

    logger.debug(f"Kind detection scores: individual={individual_score} entity={entity_score}")

    # Ties favor individuals
    if entity_score > individual_score:
        return RecordKind.ENTITY
    return RecordKind.INDIVIDUAL


def detect_dialect(sample_row: Mapping[str, Any], kind: Optional[RecordKind] = None) -> Dialect:
    """
    Decide whether a row follows the local or the external layout.

    Args:
        sample_row: First row of the batch
        kind: Record kind, detected from the row when omitted

    Returns:
        Dialect.LOCAL or Dialect.EXTERNAL
    """
    if kind is None:
        kind = detect_record_kind(sample_row)

    reference = (reference_value(sample_row) or '').upper()
    names = _field_names(sample_row)

    if kind == RecordKind.INDIVIDUAL:
        if reference.startswith(LOCAL_INDIVIDUAL_PREFIX) or {'dob', 'nic'} <= names:
            return Dialect.LOCAL
    elif reference.startswith(LOCAL_ENTITY_PREFIX) or 'addresses' in names:
        return Dialect.LOCAL

    return Dialect.EXTERNAL


def detect_batch(rows: Iterable[Mapping[str, Any]]) -> Tuple[RecordKind, Dialect]:
    """
    Classify a batch from its first row.

    Args:
        rows: Materialized batch rows

    Returns:
        Tuple of (kind, dialect)

    Raises:
        EmptyBatchError: If the batch has no rows
    """
    rows_list: List[Dict[str, Any]] = list(rows) if not isinstance(rows, list) else rows
    if not rows_list:
        raise EmptyBatchError("Cannot detect the format of an empty batch")

    sample = rows_list[0]
    kind = detect_record_kind(sample)
    dialect = detect_dialect(sample, kind)
    logger.info(f"Detected batch format: kind={kind.value} dialect={dialect.value}")
    return kind, dialect
