"""
Tests for raw-row to canonical-record mapping
"""

import uuid
from datetime import datetime, timezone

from database.models import ListType
from field_mapper import (
    Provenance,
    clean_token,
    clean_value,
    is_blank_row,
    map_entity,
    map_individual,
    parse_list_field,
)
from format_detector import Dialect


NOW = datetime(2024, 5, 17, 12, 0, tzinfo=timezone.utc)


def provenance(sequence=1):
    return Provenance(source_file='list.csv', import_id=uuid.uuid4(), sequence=sequence, now=NOW)


class TestValueNormalization:

    def test_sentinels_become_none(self):
        for raw in ('N/A', ' n/a ', 'null', '', '   ', None, '-'):
            assert clean_token(raw) is None

    def test_plain_values_keep_sentinel_lookalikes(self):
        assert clean_value(' Na ') == 'Na'
        assert clean_value('   ') is None

    def test_list_field_drops_blank_and_sentinel_tokens(self):
        assert parse_list_field('Sri Lanka, ,N/A,India') == ['Sri Lanka', 'India']

    def test_list_field_accepts_lists_and_dedups(self):
        assert parse_list_field(['A', ' A', 'B', None]) == ['A', 'B']

    def test_blank_row(self):
        assert is_blank_row({'name': '', 'dob': '  ', 'nic': None})
        assert not is_blank_row({'name': 'x'})


class TestLocalIndividual:

    def test_combined_name_is_decomposed(self):
        row = {
            'reference_number': 'IN/CA/2024/07',
            'name': 'Abdul Rahman Kareem Haji',
            'dob': '1975',
            'nic': '751234567v',
            'alias': 'Abu Kareem, N/A',
        }
        record = map_individual(row, Dialect.LOCAL, provenance())

        assert record['reference_number'] == 'IN/CA/2024/07'
        assert record['first_name'] == 'Abdul'
        assert record['second_name'] == 'Rahman'
        assert record['third_name'] == 'Kareem Haji'
        assert record['full_name'] == 'Abdul Rahman Kareem Haji'
        assert record['nic_number'] == '751234567V'
        assert record['alias_names'] == ['Abu Kareem']
        assert record['list_type'] == ListType.LOCAL_SANCTIONS
        assert record['source'] == 'CSV Import - Local'
        assert record['source_file'] == 'list.csv'

    def test_reference_is_synthesized_when_invalid(self):
        row = {'reference_number': 'bad-ref', 'name': 'John Doe', 'dob': '1980', 'nic': '1'}
        record = map_individual(row, Dialect.LOCAL, provenance(sequence=3))
        assert record['reference_number'] == 'IN/CA/2024/03'

    def test_missing_values_are_empty_not_placeholders(self):
        record = map_individual({'name': 'John Doe'}, Dialect.LOCAL, provenance())
        assert record['nationality'] == []
        assert record['title'] == []
        assert record['date_of_birth'] is None
        assert record['nic_number'] is None
        assert 'N/A' not in str(record)

    def test_name_resembling_sentinel_is_kept(self):
        row = {
            'reference_number': 'N/A',
            'firstName': 'Lee',
            'surname': 'Na',
            'dob': 'n/a',
            'nic': 'none',
        }
        record = map_individual(row, Dialect.LOCAL, provenance(sequence=4))

        assert record['second_name'] == 'Na'
        assert record['full_name'] == 'Lee Na'
        assert record['date_of_birth'] is None
        assert record['nic_number'] is None
        assert record['reference_number'] == 'IN/CA/2024/04'


class TestExternalIndividual:

    def test_discrete_name_fields(self):
        row = {
            'referenceNumber': 'QDi.001',
            'firstName': 'John',
            'secondName': 'Doe',
            'country': 'Yemen',
        }
        record = map_individual(row, Dialect.EXTERNAL, provenance())

        assert record['reference_number'] == 'QDi.001'
        assert (record['first_name'], record['second_name'], record['third_name']) == ('John', 'Doe', None)
        assert record['full_name'] == 'John Doe'
        assert record['nationality'] == ['Yemen']
        assert record['list_type'] == ListType.UN_SANCTIONS
        assert record['source'] == 'CSV Import - UN'

    def test_falls_back_to_split_name(self):
        record = map_individual({'name': 'Jane Q Public'}, Dialect.EXTERNAL, provenance())
        assert record['first_name'] == 'Jane'
        assert record['third_name'] == 'Public'

    def test_synthesized_external_reference(self):
        record = map_individual({'firstName': 'X'}, Dialect.EXTERNAL, provenance(sequence=4))
        assert record['reference_number'] == f"CSV-{int(NOW.timestamp() * 1000)}-4"


class TestEntity:

    def test_local_entity_addresses_split(self):
        row = {
            'reference_number': 'EN/CA/2024/01',
            'name': 'Acme Trading',
            'addresses': '12 Main St, Colombo; 4 Port Rd | N/A',
        }
        record = map_entity(row, Dialect.LOCAL, provenance())

        assert record['name'] == 'Acme Trading'
        assert record['addresses'] == ['12 Main St, Colombo', '4 Port Rd']
        assert record['list_type'] == ListType.LOCAL_SANCTIONS

    def test_external_entity_joins_address_parts(self):
        row = {'company_name': 'Acme', 'street': '1 Road', 'city': 'Aden', 'country': 'Yemen'}
        record = map_entity(row, Dialect.EXTERNAL, provenance())

        assert record['name'] == 'Acme'
        assert record['addresses'] == ['1 Road, Aden, Yemen']
        assert record['address_city'] == ['Aden']
        assert record['reference_number'].startswith('CSV-')
