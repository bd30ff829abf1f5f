"""
Tests for repositories against an in-memory SQLite store
"""

import pytest

from database.models import ImportStatus, ListType
from database.repositories import (
    DuplicateEntityError,
    EntityNotFoundError,
    EntityRepository,
    ImportJobRepository,
    IndividualRepository,
    InvalidStatusTransition,
    RepositoryError,
)


def individual_fields(ref='IN/CA/2024/01', **overrides):
    fields = {
        'reference_number': ref,
        'first_name': 'John',
        'second_name': 'Doe',
        'full_name': 'John Doe',
        'alias_names': ['JD'],
        'date_of_birth': '1980',
        'document_type': ['Passport'],
        'document_number': ['N123'],
        'list_type': ListType.LOCAL_SANCTIONS,
        'source': 'CSV Import - Local',
    }
    fields.update(overrides)
    return fields


class TestBlocklistRepositories:

    def test_upsert_creates_then_updates(self, session):
        repo = IndividualRepository(session)
        record, created = repo.upsert(individual_fields())
        created_at = record.created_at

        updated, created_again = repo.upsert(individual_fields(first_name='Johnny'))

        assert created is True
        assert created_again is False
        assert updated.id == record.id
        assert updated.first_name == 'Johnny'
        assert updated.created_at == created_at
        assert repo.count() == 1

    def test_reference_scoped_by_list_type(self, session):
        repo = IndividualRepository(session)
        repo.upsert(individual_fields(ref='R1'))
        _, created = repo.upsert(individual_fields(ref='R1', list_type=ListType.UN_SANCTIONS))

        assert created is True
        assert repo.count() == 2
        assert repo.count(ListType.UN_SANCTIONS) == 1

    def test_upsert_requires_reference(self, session):
        with pytest.raises(RepositoryError):
            IndividualRepository(session).upsert(individual_fields(ref=''))

    def test_feed_duplicate_matches_composite_key(self, session):
        repo = IndividualRepository(session)
        repo.insert(individual_fields(ref='QDi.1', list_type=ListType.UN_SANCTIONS))

        assert repo.find_feed_duplicate(individual_fields(ref='QDi.1')) is not None
        assert repo.find_feed_duplicate(individual_fields(ref='QDi.1', date_of_birth='1981')) is None
        assert repo.find_feed_duplicate(individual_fields(ref='QDi.1', alias_names=[])) is None
        assert repo.find_feed_duplicate(individual_fields(ref='QDi.2')) is None

    def test_entity_feed_duplicate(self, session):
        repo = EntityRepository(session)
        repo.insert({'reference_number': 'QDe.1', 'name': 'Acme', 'list_type': ListType.UN_SANCTIONS})

        assert repo.find_feed_duplicate({'reference_number': 'QDe.1', 'name': 'Acme'}) is not None
        assert repo.find_feed_duplicate({'reference_number': 'QDe.1', 'name': 'Other'}) is None

    def test_list_records_paging(self, session):
        repo = EntityRepository(session)
        for i in range(5):
            repo.insert({'reference_number': f'E{i}', 'name': f'Entity {i}', 'list_type': ListType.OTHER})

        assert len(repo.list_records(limit=2)) == 2
        assert len(repo.list_records(limit=10, offset=4)) == 1


class TestImportJobRepository:

    def test_create_pending_job(self, session):
        job = ImportJobRepository(session).create('list.csv', file_size=42)
        assert job.status == ImportStatus.PENDING
        assert job.entries_updated == 0
        assert job.file_size == 42

    def test_duplicate_filename_rejected(self, session):
        jobs = ImportJobRepository(session)
        jobs.create('list.csv')
        with pytest.raises(DuplicateEntityError):
            jobs.create('list.csv')

    def test_lifecycle(self, session):
        jobs = ImportJobRepository(session)
        job = jobs.create('list.csv')
        jobs.mark_processing(job)
        jobs.mark_completed(job, 7)

        assert job.status == ImportStatus.COMPLETED
        assert job.entries_updated == 7
        assert job.is_terminal

    def test_terminal_status_is_final(self, session):
        jobs = ImportJobRepository(session)
        job = jobs.create('list.csv')
        jobs.mark_processing(job)
        jobs.mark_failed(job, "boom")

        with pytest.raises(InvalidStatusTransition):
            jobs.mark_processing(job)

    def test_cannot_complete_without_processing(self, session):
        jobs = ImportJobRepository(session)
        job = jobs.create('list.csv')
        with pytest.raises(InvalidStatusTransition):
            jobs.mark_completed(job, 1)

    def test_get_by_id_or_raise(self, session):
        with pytest.raises(EntityNotFoundError):
            ImportJobRepository(session).get_by_id_or_raise('not-a-uuid')

    def test_list_recent_limit(self, session):
        jobs = ImportJobRepository(session)
        for i in range(12):
            jobs.create(f'file{i}.csv')
        assert len(jobs.list_recent()) == 10
