"""
Repository Pattern for Blocklist Database Operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns.
"""

import logging
from typing import List, Optional, Dict, Any, Tuple, Type, Union
from uuid import UUID

from sqlalchemy import select, func
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    BlocklistIndividual,
    BlocklistEntity,
    ImportJob,
    ImportStatus,
    ImportFileType,
    ListType,
    ALLOWED_TRANSITIONS,
)

logger = logging.getLogger(__name__)

BlocklistRecord = Union[BlocklistIndividual, BlocklistEntity]

# Fields never copied from an ingested mapping onto an existing record
_PROTECTED_FIELDS = frozenset({'id', 'created_at', 'updated_at'})


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when a record is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate record."""
    pass


class InvalidStatusTransition(RepositoryError):
    """Raised when an import job is moved backwards or out of a terminal state."""
    pass


def _to_uuid(value: Union[str, UUID]) -> Optional[UUID]:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


# ============================================
# BLOCKLIST RECORD REPOSITORIES
# ============================================

class _BlocklistRepository:
    """Shared lookup/upsert logic for canonical records."""

    model: Type[BlocklistRecord]

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, record_id: Union[str, UUID]) -> Optional[BlocklistRecord]:
        record_uuid = _to_uuid(record_id)
        if record_uuid is None:
            return None
        return self.session.get(self.model, record_uuid)

    def find_by_reference(
        self,
        reference_number: str,
        list_type: Optional[ListType] = None
    ) -> Optional[BlocklistRecord]:
        """
        Find the record holding a reference number.

        Args:
            reference_number: Natural key of the record
            list_type: Restrict to one list classification

        Returns:
            Oldest matching record or None
        """
        query = select(self.model).where(self.model.reference_number == reference_number)
        if list_type is not None:
            query = query.where(self.model.list_type == list_type)
        query = query.order_by(self.model.created_at).limit(1)
        return self.session.execute(query).scalars().first()

    def find_all_by_reference(self, reference_number: str) -> List[BlocklistRecord]:
        query = select(self.model).where(self.model.reference_number == reference_number)
        return list(self.session.execute(query).scalars().all())

    def insert(self, fields: Dict[str, Any]) -> BlocklistRecord:
        """
        Insert a new record.

        Args:
            fields: Canonical field mapping

        Returns:
            Created record (flushed, not committed)
        """
        record = self.model(**{k: v for k, v in fields.items() if k not in _PROTECTED_FIELDS})
        self.session.add(record)
        self.session.flush()
        logger.debug(f"Created {self.model.__name__}: {record.reference_number}")
        return record

    def update(self, record: BlocklistRecord, fields: Dict[str, Any]) -> BlocklistRecord:
        """Overwrite mapped fields in place; creation timestamp is preserved."""
        for key, value in fields.items():
            if key in _PROTECTED_FIELDS:
                continue
            setattr(record, key, value)
        self.session.flush()
        logger.debug(f"Updated {self.model.__name__}: {record.reference_number}")
        return record

    def upsert(self, fields: Dict[str, Any]) -> Tuple[BlocklistRecord, bool]:
        """
        Insert or update by reference number within the list classification.

        Args:
            fields: Canonical field mapping; must carry reference_number

        Returns:
            Tuple of (record, created)

        Raises:
            RepositoryError: If reference_number is missing
        """
        reference_number = fields.get('reference_number')
        if not reference_number:
            raise RepositoryError("Cannot upsert a record without a reference number")

        existing = self.find_by_reference(reference_number, fields.get('list_type'))
        if existing is not None:
            return self.update(existing, fields), False
        return self.insert(fields), True

    def list_records(
        self,
        list_type: Optional[ListType] = None,
        active_only: bool = True,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[BlocklistRecord]:
        query = select(self.model)
        if list_type is not None:
            query = query.where(self.model.list_type == list_type)
        if active_only:
            query = query.where(self.model.is_active.is_(True))
        query = query.order_by(self.model.created_at).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars().all())

    def count(self, list_type: Optional[ListType] = None) -> int:
        query = select(func.count()).select_from(self.model)
        if list_type is not None:
            query = query.where(self.model.list_type == list_type)
        return self.session.execute(query).scalar_one()


class IndividualRepository(_BlocklistRepository):
    """Repository for canonical individual records."""

    model = BlocklistIndividual

    def find_feed_duplicate(self, fields: Dict[str, Any]) -> Optional[BlocklistIndividual]:
        """
        Find an individual equal to a feed record on the composite key.

        The remote feed reuses reference numbers across distinct people, so
        a match also requires equal aliases, birth year and documents.

        Args:
            fields: Canonical field mapping from the feed

        Returns:
            Matching record or None
        """
        for candidate in self.find_all_by_reference(fields.get('reference_number', '')):
            if (
                list(candidate.alias_names or []) == list(fields.get('alias_names') or [])
                and (candidate.date_of_birth or None) == (fields.get('date_of_birth') or None)
                and list(candidate.document_type or []) == list(fields.get('document_type') or [])
                and list(candidate.document_number or []) == list(fields.get('document_number') or [])
            ):
                return candidate
        return None


class EntityRepository(_BlocklistRepository):
    """Repository for canonical entity records."""

    model = BlocklistEntity

    def find_feed_duplicate(self, fields: Dict[str, Any]) -> Optional[BlocklistEntity]:
        """Find an entity equal to a feed record on reference number and name."""
        query = select(BlocklistEntity).where(
            BlocklistEntity.reference_number == fields.get('reference_number', ''),
            BlocklistEntity.name == (fields.get('name') or '')
        ).limit(1)
        return self.session.execute(query).scalars().first()


# ============================================
# IMPORT JOB REPOSITORY
# ============================================

class ImportJobRepository:
    """Repository for import job lifecycle operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        filename: str,
        file_type: ImportFileType = ImportFileType.CSV,
        file_size: Optional[int] = None
    ) -> ImportJob:
        """
        Create a pending import job.

        Args:
            filename: Original file name (unique across jobs)
            file_type: Declared file type
            file_size: Size in bytes

        Returns:
            Created ImportJob

        Raises:
            DuplicateEntityError: If a job for the same filename exists
        """
        if self.get_by_filename(filename) is not None:
            raise DuplicateEntityError(f"File '{filename}' has already been imported")

        job = ImportJob(
            filename=filename,
            file_type=file_type,
            file_size=file_size,
            status=ImportStatus.PENDING,
            entries_updated=0
        )
        try:
            self.session.add(job)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"File '{filename}' has already been imported") from e

        logger.info(f"Created import job {job.id} for {filename}")
        return job

    def get_by_id(self, job_id: Union[str, UUID]) -> Optional[ImportJob]:
        job_uuid = _to_uuid(job_id)
        if job_uuid is None:
            return None
        return self.session.get(ImportJob, job_uuid)

    def get_by_id_or_raise(self, job_id: Union[str, UUID]) -> ImportJob:
        job = self.get_by_id(job_id)
        if job is None:
            raise EntityNotFoundError(f"Import job not found: {job_id}")
        return job

    def get_by_filename(self, filename: str) -> Optional[ImportJob]:
        query = select(ImportJob).where(ImportJob.filename == filename)
        return self.session.execute(query).scalars().first()

    def list_recent(self, limit: int = 10) -> List[ImportJob]:
        """Return the newest import jobs first."""
        query = select(ImportJob).order_by(ImportJob.created_at.desc()).limit(limit)
        return list(self.session.execute(query).scalars().all())

    def _transition(self, job: ImportJob, status: ImportStatus) -> None:
        if status not in ALLOWED_TRANSITIONS[job.status]:
            raise InvalidStatusTransition(
                f"Import job {job.id} cannot move from {job.status.value} to {status.value}"
            )
        job.status = status

    def mark_processing(self, job: ImportJob) -> ImportJob:
        self._transition(job, ImportStatus.PROCESSING)
        self.session.flush()
        return job

    def mark_completed(self, job: ImportJob, entries_updated: int) -> ImportJob:
        self._transition(job, ImportStatus.COMPLETED)
        job.entries_updated = entries_updated
        self.session.flush()
        logger.info(f"Import job {job.id} completed: {entries_updated} entries")
        return job

    def mark_failed(self, job: ImportJob, error: str) -> ImportJob:
        self._transition(job, ImportStatus.FAILED)
        job.processing_error = error
        self.session.flush()
        logger.warning(f"Import job {job.id} failed: {error}")
        return job
