"""
Tests for batch format detection
"""

import pytest

from database.models import RecordKind
from format_detector import (
    Dialect,
    EmptyBatchError,
    detect_batch,
    detect_dialect,
    detect_record_kind,
)


class TestRecordKind:

    def test_individual_reference_prefix_wins(self):
        row = {'reference_number': 'IN/CA/2024/01', 'company_name': 'ACME'}
        assert detect_record_kind(row) == RecordKind.INDIVIDUAL

    def test_entity_reference_prefix_wins(self):
        row = {'reference_number': 'EN/CA/2024/03', 'firstName': 'John'}
        assert detect_record_kind(row) == RecordKind.ENTITY

    def test_counts_indicator_fields(self):
        row = {'company_name': 'ACME', 'organization': 'ACME Ltd', 'firstName': 'x'}
        assert detect_record_kind(row) == RecordKind.ENTITY

    def test_blank_indicator_columns_still_count(self):
        row = {'company_name': '', 'entity_name': '', 'firstName': 'John'}
        assert detect_record_kind(row) == RecordKind.ENTITY

    def test_ties_favor_individual(self):
        row = {'name': 'Something', 'country': 'Nowhere'}
        assert detect_record_kind(row) == RecordKind.INDIVIDUAL

    def test_reference_prefix_is_case_insensitive(self):
        assert detect_record_kind({'ref': 'en/ca/2024/01'}) == RecordKind.ENTITY


class TestDialect:

    def test_local_individual_by_reference(self):
        row = {'reference_number': 'IN/CA/2024/01', 'name': 'John Doe'}
        assert detect_dialect(row) == Dialect.LOCAL

    def test_local_individual_by_dob_and_nic(self):
        row = {'name': 'John Doe', 'dob': '1980', 'nic': '123V'}
        assert detect_dialect(row, RecordKind.INDIVIDUAL) == Dialect.LOCAL

    def test_dob_alone_is_external(self):
        row = {'firstName': 'John', 'dob': '1980'}
        assert detect_dialect(row, RecordKind.INDIVIDUAL) == Dialect.EXTERNAL

    def test_local_entity_by_addresses_column(self):
        row = {'name': 'ACME', 'addresses': 'A;B'}
        assert detect_dialect(row, RecordKind.ENTITY) == Dialect.LOCAL

    def test_external_entity(self):
        row = {'referenceNumber': 'QDe.001', 'company_name': 'ACME'}
        assert detect_dialect(row, RecordKind.ENTITY) == Dialect.EXTERNAL


class TestBatch:

    def test_uses_first_row_only(self):
        rows = [
            {'reference_number': 'EN/CA/2024/01', 'name': 'ACME'},
            {'reference_number': 'IN/CA/2024/01', 'name': 'John'},
        ]
        assert detect_batch(rows) == (RecordKind.ENTITY, Dialect.LOCAL)

    def test_accepts_generators(self):
        rows = ({'firstName': 'John', 'secondName': 'Doe'} for _ in range(2))
        assert detect_batch(rows) == (RecordKind.INDIVIDUAL, Dialect.EXTERNAL)

    def test_empty_batch_raises(self):
        with pytest.raises(EmptyBatchError):
            detect_batch([])
