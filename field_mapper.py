"""
Field Mapper

Pure functions converting a raw ingested row into canonical blocklist
record fields. No I/O; missing or odd input maps to empty values, never
to placeholder strings, and the functions never raise.

Source column names are resolved through ordered alias tables: for every
canonical field the first alias carrying a non-blank value wins.
"""

import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from database.models import ListType, join_name_parts
from format_detector import Dialect, REFERENCE_FIELDS

# Raw "not applicable" markers some sources emit instead of omitting a value.
# Stripped from list tokens and from reference, birth date and national id;
# names keep their literal value ("Na" is a real surname).
SENTINEL_VALUES = frozenset({'n/a', 'na', 'none', 'null', 'nil', '-', '--'})

LIST_SEPARATOR = ','
ADDRESS_SEPARATORS = re.compile(r'[;|]')

LOCAL_INDIVIDUAL_REFERENCE = re.compile(r'^IN/CA/\d{4}/\d{2}$')
LOCAL_ENTITY_REFERENCE = re.compile(r'^EN/CA/\d{4}/\d{2}$')

LOCAL_SOURCE = 'CSV Import - Local'
EXTERNAL_SOURCE = 'CSV Import - UN'


# ============================================
# ALIAS TABLES
# ============================================

INDIVIDUAL_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    'reference_number': REFERENCE_FIELDS + ('id',),
    'full_name': ('full_name', 'fullName'),
    'combined_name': ('name',),
    'first_name': ('firstName', 'first_name', 'given_name', 'givenName'),
    'second_name': ('secondName', 'second_name', 'family_name', 'familyName', 'surname'),
    'third_name': ('thirdName', 'third_name', 'middle_name', 'middleName'),
    'alias_names': ('alias', 'aliases', 'aka', 'also_known_as'),
    'date_of_birth': ('dob', 'date_of_birth', 'birth_date', 'yearOfBirth'),
    'nic_number': ('nic', 'nic_number', 'national_id'),
    'title': ('title', 'titles'),
    'nationality': ('nationality', 'nationalities'),
    'birth_city': ('birthCity', 'birth_city', 'cityOfBirth', 'city_of_birth'),
    'birth_country': ('birthCountry', 'birth_country', 'countryOfBirth', 'country_of_birth'),
    'address_city': ('city', 'cities'),
    'address_country': ('country', 'countries'),
    'document_type': ('docType', 'doc_type', 'document_type'),
    'document_number': ('docNumber', 'doc_number', 'document_number'),
    'document_issue_country': ('docIssueCountry', 'doc_issue_country', 'document_issue_country'),
}

# Nationality falls back to country for external rows only
EXTERNAL_NATIONALITY_FALLBACK = ('country',)

ENTITY_FIELD_ALIASES: Dict[str, Tuple[str, ...]] = {
    'reference_number': REFERENCE_FIELDS + ('id',),
    'name': ('name', 'entity_name', 'company_name', 'companyName', 'entityName', 'organization'),
    'alias_names': ('alias', 'aliases', 'aka', 'also_known_as'),
    'addresses': ('addresses',),
    'address': ('address',),
    'address_street': ('street', 'address', 'street_address'),
    'address_city': ('city', 'cities'),
    'address_country': ('country', 'countries'),
}

INDIVIDUAL_LIST_FIELDS = (
    'alias_names', 'title', 'nationality', 'birth_city', 'birth_country',
    'address_city', 'address_country', 'document_type', 'document_number',
    'document_issue_country',
)

ENTITY_LIST_FIELDS = ('alias_names', 'address_street', 'address_city', 'address_country')


@dataclass
class Provenance:
    """Where a record came from, plus the inputs for synthesized keys"""
    source_file: Optional[str] = None
    import_id: Optional[uuid.UUID] = None
    sequence: int = 1
    now: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ============================================
# VALUE NORMALIZATION
# ============================================

def clean_value(value: Any) -> Optional[str]:
    """Trim a scalar value; blanks become None"""
    if value is None or isinstance(value, (list, tuple, dict)):
        return None
    text = str(value).strip()
    return text or None


def clean_token(value: Any) -> Optional[str]:
    """Like clean_value, but sentinel markers also become None"""
    text = clean_value(value)
    if text is None or text.lower() in SENTINEL_VALUES:
        return None
    return text


def parse_list_field(value: Any, separator: str = LIST_SEPARATOR) -> List[str]:
    """
    Normalize a list-valued input.

    Accepts a list/tuple or a delimiter-separated string; tokens are
    trimmed and empty or sentinel tokens dropped. Order is kept and
    repeated tokens are removed.
    """
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        raw = list(value)
    elif isinstance(value, str):
        raw = value.split(separator)
    else:
        raw = [value]

    tokens: List[str] = []
    for item in raw:
        cleaned = clean_token(item)
        if cleaned and cleaned not in tokens:
            tokens.append(cleaned)
    return tokens


def first_value(
    row: Mapping[str, Any],
    aliases: Sequence[str],
    sentinels: bool = False
) -> Optional[str]:
    """Return the first non-blank value among the alias columns"""
    clean = clean_token if sentinels else clean_value
    for name in aliases:
        cleaned = clean(row.get(name))
        if cleaned:
            return cleaned
    return None


def first_list(row: Mapping[str, Any], aliases: Sequence[str]) -> List[str]:
    """Return the first non-empty list among the alias columns"""
    for name in aliases:
        values = parse_list_field(row.get(name))
        if values:
            return values
    return []


def is_blank_row(row: Mapping[str, Any]) -> bool:
    """True when every value of the row is absent or blank"""
    for key, value in row.items():
        if key is None:
            continue
        if isinstance(value, (list, tuple)):
            if any(clean_value(v) for v in value):
                return False
        elif value is not None and str(value).strip():
            return False
    return True


def normalize_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Trim column names and drop overflow columns (None keys)"""
    return {str(k).strip(): v for k, v in row.items() if k is not None}


def decompose_name(name: Optional[str]) -> Tuple[Optional[str], Optional[str], Optional[str]]:
    """Split a combined name into first, second and remaining-as-third"""
    if not name:
        return None, None, None
    tokens = name.split()
    first = tokens[0] if tokens else None
    second = tokens[1] if len(tokens) > 1 else None
    third = ' '.join(tokens[2:]) or None
    return first, second, third


def synthesize_local_reference(prefix: str, provenance: Provenance) -> str:
    """Build IN/CA/{year}/{nn} (or EN/CA/...) from the sequence counter"""
    return f"{prefix}/CA/{provenance.now.year}/{provenance.sequence:02d}"


def synthesize_external_reference(provenance: Provenance) -> str:
    timestamp = int(provenance.now.timestamp() * 1000)
    return f"CSV-{timestamp}-{provenance.sequence}"


# ============================================
# RECORD MAPPERS
# ============================================

def map_individual(
    raw_row: Mapping[str, Any],
    dialect: Dialect,
    provenance: Optional[Provenance] = None
) -> Dict[str, Any]:
    """
    Map a raw row to canonical individual fields.

    Args:
        raw_row: Column name -> value
        dialect: Local or external layout
        provenance: Source file, import id and sequence counter

    Returns:
        Dict of BlocklistIndividual column values
    """
    provenance = provenance or Provenance()
    row = normalize_row(raw_row)
    aliases = INDIVIDUAL_FIELD_ALIASES

    reference = first_value(row, aliases['reference_number'], sentinels=True)
    combined = first_value(row, aliases['combined_name'])
    discrete = (
        first_value(row, aliases['first_name']),
        first_value(row, aliases['second_name']),
        first_value(row, aliases['third_name']),
    )

    if dialect == Dialect.LOCAL:
        if not reference or not LOCAL_INDIVIDUAL_REFERENCE.match(reference):
            reference = synthesize_local_reference('IN', provenance)
        first, second, third = decompose_name(combined) if combined else discrete
        source, list_type = LOCAL_SOURCE, ListType.LOCAL_SANCTIONS
    else:
        if not reference:
            reference = synthesize_external_reference(provenance)
        split = decompose_name(combined)
        first, second, third = (d or s for d, s in zip(discrete, split))
        source, list_type = EXTERNAL_SOURCE, ListType.UN_SANCTIONS

    nic = first_value(row, aliases['nic_number'], sentinels=True)
    full_name = (
        first_value(row, aliases['full_name'])
        or combined
        or join_name_parts(first, second, third)
        or None
    )

    record: Dict[str, Any] = {
        'reference_number': reference,
        'first_name': first,
        'second_name': second,
        'third_name': third,
        'full_name': full_name,
        'date_of_birth': first_value(row, aliases['date_of_birth'], sentinels=True),
        'nic_number': nic.upper() if nic else None,
        'source': source,
        'source_file': provenance.source_file,
        'import_id': provenance.import_id,
        'list_type': list_type,
        'is_active': True,
    }
    for list_field in INDIVIDUAL_LIST_FIELDS:
        record[list_field] = first_list(row, aliases[list_field])

    if dialect == Dialect.EXTERNAL and not record['nationality']:
        record['nationality'] = first_list(row, EXTERNAL_NATIONALITY_FALLBACK)

    return record


def map_entity(
    raw_row: Mapping[str, Any],
    dialect: Dialect,
    provenance: Optional[Provenance] = None
) -> Dict[str, Any]:
    """
    Map a raw row to canonical entity fields.

    Args:
        raw_row: Column name -> value
        dialect: Local or external layout
        provenance: Source file, import id and sequence counter

    Returns:
        Dict of BlocklistEntity column values
    """
    provenance = provenance or Provenance()
    row = normalize_row(raw_row)
    aliases = ENTITY_FIELD_ALIASES

    reference = first_value(row, aliases['reference_number'], sentinels=True)
    if dialect == Dialect.LOCAL:
        if not reference or not LOCAL_ENTITY_REFERENCE.match(reference):
            reference = synthesize_local_reference('EN', provenance)
        source, list_type = LOCAL_SOURCE, ListType.LOCAL_SANCTIONS
    else:
        if not reference:
            reference = synthesize_external_reference(provenance)
        source, list_type = EXTERNAL_SOURCE, ListType.UN_SANCTIONS

    record: Dict[str, Any] = {
        'reference_number': reference,
        'name': first_value(row, aliases['name']) or '',
        'source': source,
        'source_file': provenance.source_file,
        'import_id': provenance.import_id,
        'list_type': list_type,
        'is_active': True,
    }
    for list_field in ENTITY_LIST_FIELDS:
        record[list_field] = first_list(row, aliases[list_field])

    record['addresses'] = _entity_addresses(row, record)
    return record


def _entity_addresses(row: Mapping[str, Any], record: Mapping[str, Any]) -> List[str]:
    """Address lines: 'addresses' (';' or '|' separated), else 'address', else joined parts"""
    raw = row.get('addresses')
    if isinstance(raw, (list, tuple)):
        lines = parse_list_field(raw)
    elif isinstance(raw, str):
        lines = parse_list_field(ADDRESS_SEPARATORS.split(raw))
    else:
        lines = []
    if lines:
        return lines

    single = first_value(row, ENTITY_FIELD_ALIASES['address'])
    if single:
        return [single]

    parts = [
        first_value(row, ('street', 'street_address')),
        record['address_city'][0] if record['address_city'] else None,
        record['address_country'][0] if record['address_country'] else None,
    ]
    joined = ', '.join(p for p in parts if p)
    return [joined] if joined else []
