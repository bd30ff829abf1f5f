"""
Tests for projecting canonical records into the search index
"""

from unittest.mock import MagicMock

from database.models import ListType, RecordKind
from database.repositories import EntityRepository, IndividualRepository
from indexer import INDEX_MAPPING, Indexer, build_document, document_id
from search_index import SearchBackendError


def add_individual(session, ref='QDi.1', **overrides):
    fields = {
        'reference_number': ref,
        'first_name': 'John',
        'second_name': 'Doe',
        'alias_names': ['JD'],
        'list_type': ListType.UN_SANCTIONS,
        'un_list_type': 'Al-Qaida',
    }
    fields.update(overrides)
    return IndividualRepository(session).insert(fields)


class TestBuildDocument:

    def test_individual_document(self, session):
        record = add_individual(session)
        document = build_document(record, RecordKind.INDIVIDUAL)

        assert document['full_name'] == 'John Doe'
        assert document['type'] == 'individual'
        assert document['listType'] == 'UN Sanctions'
        assert document['unListType'] == 'Al-Qaida'
        assert document['referenceNumber'] == 'QDi.1'
        assert document['aliasNames'] == ['JD']
        assert document['isActive'] is True
        assert document['created_at'].endswith('+00:00')

    def test_entity_document_uses_name(self, session):
        record = EntityRepository(session).insert({
            'reference_number': 'EN/CA/2024/01',
            'name': 'Acme Trading',
            'list_type': ListType.LOCAL_SANCTIONS,
        })
        document = build_document(record, RecordKind.ENTITY)

        assert document['name'] == 'Acme Trading'
        assert document['full_name'] == 'Acme Trading'
        assert document['type'] == 'entity'

    def test_mapping_covers_document_fields(self, session):
        document = build_document(add_individual(session), RecordKind.INDIVIDUAL)
        assert set(document) <= set(INDEX_MAPPING['properties'])


class TestIndexer:

    def test_index_one_replaces_previous_copy(self, session, indexer, search_index):
        record = add_individual(session)
        assert indexer.index_one(record, RecordKind.INDIVIDUAL)

        record.first_name = 'Johnny'
        assert indexer.index_one(record, RecordKind.INDIVIDUAL)

        assert search_index.count() == 1
        assert search_index.query('Johnny')[0]['firstName'] == 'Johnny'

    def test_index_many_empty(self, indexer):
        assert indexer.index_many([], RecordKind.INDIVIDUAL) == 0

    def test_failures_are_not_raised(self, session):
        index = MagicMock()
        index.index_document.side_effect = SearchBackendError("down")
        index.bulk_index.side_effect = SearchBackendError("down")
        indexer = Indexer(index)
        record = add_individual(session)

        assert indexer.index_one(record, RecordKind.INDIVIDUAL) is False
        assert indexer.index_many([record], RecordKind.INDIVIDUAL) == 0

    def test_document_id_is_stable(self, session):
        record = add_individual(session)
        assert document_id(record, RecordKind.INDIVIDUAL) == f"individual:{record.id}"

    def test_reindex_all(self, session, indexer, search_index):
        for i in range(3):
            add_individual(session, ref=f'QDi.{i}')
        EntityRepository(session).insert({'reference_number': 'QDe.1', 'name': 'Acme', 'list_type': ListType.OTHER})

        totals = indexer.reindex_all(session, batch_size=2)

        assert totals == {'individual': 3, 'entity': 1}
        assert search_index.count() == 4
