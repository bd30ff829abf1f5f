"""
Tests for the CSV bulk-upload ingestion pipeline
"""

import threading
import time
import uuid

import pytest

from csv_ingestion import CsvIngestionPipeline, IngestionError, read_csv_rows
from database.models import BlocklistEntity, BlocklistIndividual, ImportStatus, ListType
from database.repositories import ImportJobRepository, IndividualRepository
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError


LOCAL_INDIVIDUALS = (
    "reference_number,name,dob,nic,alias,nationality\n"
    "IN/CA/2024/01,John Michael Doe,1980,801234567v,Johnny D,Sri Lanka\n"
    ",,,,,\n"
    "IN/CA/2024/02,Jane Roe,1985,851234567v,,N/A\n"
)

THREE_INDIVIDUALS = (
    "reference_number,name,dob,nic\n"
    "IN/CA/2024/01,John Doe,1980,801234567v\n"
    "IN/CA/2024/02,Jane Roe,1985,851234567v\n"
    "IN/CA/2024/03,Ali Khan,1990,901234567v\n"
)


def create_job(db_provider, filename="upload.csv"):
    with db_provider.session_scope() as session:
        job = ImportJobRepository(session).create(filename, file_size=100)
        return job.id


def get_job(db_provider, job_id):
    with db_provider.session_scope() as session:
        return ImportJobRepository(session).get_by_id(job_id)


@pytest.fixture
def pipeline(db_provider, indexer):
    return CsvIngestionPipeline(db_provider, indexer, index_batch_size=2)


class TestReadRows:

    def test_trims_headers_and_values(self, write_csv):
        path = write_csv(" name , dob \n  John Doe , 1980 \n")
        assert read_csv_rows(path) == [{'name': 'John Doe', 'dob': '1980'}]

    def test_header_only_file(self, write_csv):
        with pytest.raises(IngestionError, match="CSV file contains no data rows"):
            read_csv_rows(write_csv("name,dob\n"))

    def test_empty_file(self, write_csv):
        with pytest.raises(IngestionError, match="CSV file contains no data rows"):
            read_csv_rows(write_csv(""))

    def test_blank_header(self, write_csv):
        with pytest.raises(IngestionError, match="invalid structure"):
            read_csv_rows(write_csv(" , \nJohn,1980\n"))


class TestIngest:

    def test_local_individuals_end_to_end(self, db_provider, pipeline, search_index, write_csv):
        job_id = create_job(db_provider)
        result = pipeline.ingest_detailed(write_csv(LOCAL_INDIVIDUALS), job_id)

        assert result.processed == 2
        assert result.skipped == 1
        assert result.created == 2
        assert result.indexed == 2

        job = get_job(db_provider, job_id)
        assert job.status == ImportStatus.COMPLETED
        assert job.entries_updated == 2

        with db_provider.session_scope() as session:
            john = IndividualRepository(session).find_by_reference('IN/CA/2024/01')
            assert john.first_name == 'John'
            assert john.third_name == 'Doe'
            assert john.nic_number == '801234567V'
            assert john.alias_names == ['Johnny D']
            assert john.list_type == ListType.LOCAL_SANCTIONS
            assert john.import_id == job_id

            jane = IndividualRepository(session).find_by_reference('IN/CA/2024/02')
            assert jane.nationality == []

        assert search_index.count() == 2

    def test_reingest_updates_instead_of_duplicating(self, db_provider, pipeline, write_csv):
        path = write_csv(LOCAL_INDIVIDUALS, name="first.csv")
        pipeline.ingest(path, create_job(db_provider, "first.csv"))

        changed = LOCAL_INDIVIDUALS.replace("Johnny D", "JD")
        result = pipeline.ingest_detailed(write_csv(changed, name="second.csv"), create_job(db_provider, "second.csv"))

        assert result.created == 0
        assert result.updated == 2
        with db_provider.session_scope() as session:
            count = session.execute(select(func.count()).select_from(BlocklistIndividual)).scalar()
            john = IndividualRepository(session).find_by_reference('IN/CA/2024/01')
            assert count == 2
            assert john.alias_names == ['JD']

    def test_entities_are_detected(self, db_provider, pipeline, write_csv):
        text = (
            "reference_number,name,addresses\n"
            "EN/CA/2024/01,Acme Trading,1 Main St; 2 Port Rd\n"
        )
        job_id = create_job(db_provider)
        assert pipeline.ingest(write_csv(text), job_id) == 1

        with db_provider.session_scope() as session:
            entity = session.execute(select(BlocklistEntity)).scalars().one()
            assert entity.name == 'Acme Trading'
            assert entity.addresses == ['1 Main St', '2 Port Rd']

    def test_structural_error_marks_job_failed(self, db_provider, pipeline, write_csv):
        job_id = create_job(db_provider)
        with pytest.raises(IngestionError):
            pipeline.ingest(write_csv("name,dob\n"), job_id)

        job = get_job(db_provider, job_id)
        assert job.status == ImportStatus.FAILED
        assert job.processing_error == "CSV file contains no data rows"

    def test_delete_after_removes_file_on_failure(self, db_provider, pipeline, write_csv):
        path = write_csv("")
        with pytest.raises(IngestionError):
            pipeline.ingest(path, create_job(db_provider), delete_after=True)
        assert not path.exists()

    def test_delete_after_removes_file_on_success(self, db_provider, pipeline, write_csv):
        path = write_csv(LOCAL_INDIVIDUALS)
        pipeline.ingest(path, create_job(db_provider), delete_after=True)
        assert not path.exists()

    def test_without_indexer(self, db_provider, write_csv):
        pipeline = CsvIngestionPipeline(db_provider, indexer=None)
        result = pipeline.ingest_detailed(write_csv(LOCAL_INDIVIDUALS), create_job(db_provider))
        assert result.processed == 2
        assert result.indexed == 0


class TestRowFailures:

    def test_failing_row_is_rolled_back_alone(self, db_provider, pipeline, write_csv, monkeypatch):
        original_upsert = IndividualRepository.upsert

        def upsert_then_fail(repo, fields):
            record, created = original_upsert(repo, fields)
            if fields['reference_number'] == 'IN/CA/2024/02':
                raise IntegrityError("INSERT INTO blocklist_individuals", {}, Exception("constraint failed"))
            return record, created

        monkeypatch.setattr(IndividualRepository, 'upsert', upsert_then_fail)
        job_id = create_job(db_provider)

        result = pipeline.ingest_detailed(write_csv(THREE_INDIVIDUALS), job_id)

        assert result.processed == 2
        assert result.row_errors == 1
        assert result.errors == ["Row 3: IntegrityError"]

        with db_provider.session_scope() as session:
            references = sorted(
                r.reference_number for r in session.execute(select(BlocklistIndividual)).scalars()
            )
        assert references == ['IN/CA/2024/01', 'IN/CA/2024/03']

        job = get_job(db_provider, job_id)
        assert job.status == ImportStatus.COMPLETED
        assert job.entries_updated == 2


class TestJobState:

    def test_terminal_job_is_not_reprocessed(self, db_provider, pipeline, write_csv):
        job_id = create_job(db_provider)
        pipeline.ingest(write_csv(LOCAL_INDIVIDUALS), job_id)

        with pytest.raises(IngestionError, match="cannot be processed"):
            pipeline.ingest(write_csv(LOCAL_INDIVIDUALS, name="again.csv"), job_id)

        job = get_job(db_provider, job_id)
        assert job.status == ImportStatus.COMPLETED
        assert job.entries_updated == 2

    def test_unknown_job(self, pipeline, write_csv):
        path = write_csv(LOCAL_INDIVIDUALS)
        with pytest.raises(IngestionError, match="cannot be processed"):
            pipeline.ingest(path, uuid.uuid4(), delete_after=True)
        assert not path.exists()


class TestConcurrentImports:

    def test_same_reference_from_parallel_uploads_is_stored_once(self, db_provider, pipeline, write_csv):
        paths = [write_csv(LOCAL_INDIVIDUALS, name=f"{name}.csv") for name in ('first', 'second')]
        job_ids = [create_job(db_provider, path.name) for path in paths]
        workers = [
            threading.Thread(target=pipeline.ingest, args=(path, job_id))
            for path, job_id in zip(paths, job_ids)
        ]

        pipeline._write_lock.acquire()
        try:
            for worker in workers:
                worker.start()
            time.sleep(0.2)
            assert all(worker.is_alive() for worker in workers)
            assert get_job(db_provider, job_ids[0]).status == ImportStatus.PENDING
        finally:
            pipeline._write_lock.release()

        for worker in workers:
            worker.join(10)
            assert not worker.is_alive()

        with db_provider.session_scope() as session:
            count = session.execute(select(func.count()).select_from(BlocklistIndividual)).scalar()
        assert count == 2
        assert {get_job(db_provider, job_id).status for job_id in job_ids} == {ImportStatus.COMPLETED}
