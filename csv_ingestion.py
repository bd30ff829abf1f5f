"""
CSV Ingestion Pipeline (bulk upload path)

Parses one uploaded CSV file, detects its format once, maps every row to
a canonical record, upserts by reference number and queues written
records for indexing. The owning ImportJob is driven through
processing -> completed | failed before control returns.

Row-level problems are logged, counted and skipped; only structural
problems (no header, no data rows, undecodable file) fail the job.
"""

import csv
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from database.connection import DatabaseSessionProvider
from database.models import ImportJob, RecordKind
from database.monitoring import operation_timer, record_ingested_rows
from database.repositories import (
    EntityRepository,
    ImportJobRepository,
    IndividualRepository,
    RepositoryError,
)
from field_mapper import Provenance, is_blank_row, map_entity, map_individual
from format_detector import EmptyBatchError, detect_batch
from indexer import Indexer
from xml_utils import sanitize_for_logging

logger = logging.getLogger(__name__)

NO_DATA_ROWS = "CSV file contains no data rows"
INVALID_STRUCTURE = "CSV file has invalid structure or missing columns"


class IngestionError(Exception):
    """Unrecoverable structural failure of an ingestion call"""
    pass


@dataclass
class IngestionResult:
    """Outcome of one ingestion call"""
    kind: Optional[RecordKind] = None
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    row_errors: int = 0
    indexed: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind.value if self.kind else None,
            'processed': self.processed,
            'created': self.created,
            'updated': self.updated,
            'skipped': self.skipped,
            'row_errors': self.row_errors,
            'indexed': self.indexed,
            'errors': self.errors[:20],
        }


def read_csv_rows(file_path: Union[str, Path]) -> List[Dict[str, Any]]:
    """
    Parse a CSV file into trimmed row dicts.

    Args:
        file_path: Path to the CSV file

    Returns:
        Rows keyed by trimmed header names (blank lines skipped)

    Raises:
        IngestionError: If the file has no data rows or no usable header
    """
    rows: List[Dict[str, Any]] = []
    try:
        with open(file_path, 'r', encoding='utf-8-sig', newline='') as handle:
            reader = csv.DictReader(handle)
            fieldnames = reader.fieldnames
            if not fieldnames:
                raise IngestionError(NO_DATA_ROWS)
            if not any((name or '').strip() for name in fieldnames):
                raise IngestionError(INVALID_STRUCTURE)

            for row in reader:
                rows.append({
                    key.strip(): value.strip() if isinstance(value, str) else value
                    for key, value in row.items()
                    if key is not None and key.strip()
                })
    except UnicodeDecodeError as e:
        raise IngestionError("CSV file is not valid UTF-8 text") from e
    except csv.Error as e:
        raise IngestionError(f"CSV file could not be parsed: {e}") from e

    if not rows:
        raise IngestionError(NO_DATA_ROWS)
    if not rows[0]:
        raise IngestionError(INVALID_STRUCTURE)
    return rows


class CsvIngestionPipeline:
    """Bulk upload ingestion for one file per call."""

    def __init__(
        self,
        db_provider: DatabaseSessionProvider,
        indexer: Optional[Indexer] = None,
        index_batch_size: int = 100
    ):
        """
        Args:
            db_provider: Primary store session provider
            indexer: Search indexer (indexing disabled when None)
            index_batch_size: Records per bulk indexing request
        """
        self.db_provider = db_provider
        self.indexer = indexer
        self.index_batch_size = index_batch_size
        # Upserts are lookup-then-write; one file is written at a time
        self._write_lock = threading.Lock()

    def ingest(
        self,
        file_path: Union[str, Path],
        job: Union[ImportJob, UUID, str],
        delete_after: bool = False
    ) -> int:
        """
        Ingest a CSV file on behalf of an import job.

        Args:
            file_path: Path to the uploaded file
            job: ImportJob (or its id) owning this ingestion
            delete_after: Remove the file on every exit path

        Returns:
            Number of entries processed

        Raises:
            IngestionError: On structural failure (job marked failed), or when
                the job is unknown or no longer pending
        """
        return self.ingest_detailed(file_path, job, delete_after).processed

    def ingest_detailed(
        self,
        file_path: Union[str, Path],
        job: Union[ImportJob, UUID, str],
        delete_after: bool = False
    ) -> IngestionResult:
        """Same as ingest() but returns the full IngestionResult."""
        job_id = job.id if isinstance(job, ImportJob) else job
        path = Path(file_path)

        try:
            with self._write_lock, self.db_provider.get_unit_of_work() as uow:
                jobs = ImportJobRepository(uow.session)
                try:
                    job_row = jobs.get_by_id_or_raise(job_id)
                    jobs.mark_processing(job_row)
                except RepositoryError as e:
                    raise IngestionError(f"Import job cannot be processed: {e}") from e
                uow.commit()

                try:
                    with operation_timer("csv_ingest"):
                        result = self._process(uow, path, job_row)
                except Exception as e:
                    uow.rollback()
                    message = str(e) if isinstance(e, IngestionError) else "Unexpected error while processing file"
                    logger.error(
                        "Import %s failed: %s",
                        job_id,
                        sanitize_for_logging(f"{type(e).__name__}: {e}")
                    )
                    failed = jobs.get_by_id(job_id)
                    if failed is not None and not failed.is_terminal:
                        jobs.mark_failed(failed, message)
                        uow.commit()
                    if isinstance(e, IngestionError):
                        raise
                    raise IngestionError(message) from e

                jobs.mark_completed(job_row, result.processed)
                uow.commit()
        finally:
            if delete_after:
                self._remove_file(path)

        logger.info(
            f"Import {job_id} finished: processed={result.processed} skipped={result.skipped} "
            f"row_errors={result.row_errors} indexed={result.indexed}"
        )
        return result

    def _process(self, uow, path: Path, job: ImportJob) -> IngestionResult:
        session = uow.session
        rows = read_csv_rows(path)

        try:
            kind, dialect = detect_batch(rows)
        except EmptyBatchError as e:
            raise IngestionError(NO_DATA_ROWS) from e

        if kind == RecordKind.INDIVIDUAL:
            repo, mapper = IndividualRepository(session), map_individual
        else:
            repo, mapper = EntityRepository(session), map_entity

        result = IngestionResult(kind=kind)
        pending: List[Any] = []
        started = datetime.now(timezone.utc)
        sequence = 0

        for line_number, row in enumerate(rows, start=2):
            if is_blank_row(row):
                result.skipped += 1
                continue

            sequence += 1
            provenance = Provenance(
                source_file=job.filename,
                import_id=job.id,
                sequence=sequence,
                now=started
            )
            fields = mapper(row, dialect, provenance)

            try:
                with session.begin_nested():
                    record, created = repo.upsert(fields)
            except (SQLAlchemyError, RepositoryError) as e:
                result.row_errors += 1
                message = f"Row {line_number}: {type(e).__name__}"
                result.errors.append(message)
                logger.warning(
                    "Skipping row %d of %s: %s",
                    line_number,
                    sanitize_for_logging(job.filename),
                    sanitize_for_logging(str(e))
                )
                continue

            result.processed += 1
            if created:
                result.created += 1
            else:
                result.updated += 1
            pending.append(record)

            if len(pending) >= self.index_batch_size:
                uow.commit()
                result.indexed += self._flush(pending, kind)
                pending = []

        uow.commit()
        if pending:
            result.indexed += self._flush(pending, kind)

        record_ingested_rows('csv', 'processed', result.processed)
        record_ingested_rows('csv', 'skipped', result.skipped)
        record_ingested_rows('csv', 'error', result.row_errors)
        return result

    def _flush(self, records: List[Any], kind: RecordKind) -> int:
        if self.indexer is None:
            return 0
        return self.indexer.index_many(records, kind)

    @staticmethod
    def _remove_file(path: Path) -> None:
        try:
            if path.exists():
                path.unlink()
        except OSError as e:
            logger.error("Failed to cleanup temp file: path=%s error=%s", path, e)
