"""
SQLAlchemy ORM Models for the Blocklist Screening Service

This module defines the primary record store schema:
- Canonical blocklist records (individuals and entities) that every
  ingestion path converges on
- Import jobs tracking the lifecycle of each uploaded file
- Timestamps for all records (created_at, updated_at)

Multi-valued attributes (aliases, nationalities, documents, addresses) are
stored as JSON arrays; JSONB is used on PostgreSQL.

Tables:
1. blocklist_individuals - Canonical individual records
2. blocklist_entities - Canonical entity (organization) records
3. import_jobs - Bulk upload lifecycle records
"""

import re
import uuid
import unicodedata
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Integer, Boolean, DateTime, Text, ForeignKey, Index, Enum, JSON, Uuid
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

# JSON arrays, stored as JSONB on PostgreSQL
JsonList = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# ENUMS
# ============================================

class RecordKind(str, PyEnum):
    """Kind of blocklist record"""
    INDIVIDUAL = "individual"
    ENTITY = "entity"


class ListType(str, PyEnum):
    """List classification of a blocklist record"""
    UN_SANCTIONS = "UN Sanctions"
    LOCAL_SANCTIONS = "Local Sanctions"
    OTHER = "Other"


class ImportStatus(str, PyEnum):
    """Lifecycle status of an import job"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ImportFileType(str, PyEnum):
    """Declared type of an imported file"""
    CSV = "csv"
    XML = "xml"
    PDF = "pdf"


TERMINAL_STATUSES = frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED})

# Allowed forward transitions; terminal states have none
ALLOWED_TRANSITIONS = {
    ImportStatus.PENDING: frozenset({ImportStatus.PROCESSING, ImportStatus.FAILED}),
    ImportStatus.PROCESSING: frozenset({ImportStatus.COMPLETED, ImportStatus.FAILED}),
    ImportStatus.COMPLETED: frozenset(),
    ImportStatus.FAILED: frozenset(),
}


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        onupdate=utc_now,
        nullable=False
    )


class ProvenanceMixin:
    """Mixin for provenance, classification and active flag"""
    source: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    source_file: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    # Sanctions regime label as published by the remote feed (e.g. "Al-Qaida")
    un_list_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    list_type: Mapped[ListType] = mapped_column(
        Enum(ListType),
        nullable=False,
        default=ListType.OTHER,
        index=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


# ============================================
# CANONICAL RECORD MODELS
# ============================================

class BlocklistIndividual(Base, TimestampMixin, ProvenanceMixin):
    """
    Canonical individual record.

    Reference number is the natural key within a list classification. The
    bulk upload path upserts on it; the remote feed path may hold several
    records sharing one reference number when they differ on aliases,
    birth year or documents.
    """
    __tablename__ = "blocklist_individuals"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference_number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Name parts
    first_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    second_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    third_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    full_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    alias_names: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)

    # Biographical data
    date_of_birth: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    nic_number: Mapped[Optional[str]] = mapped_column(String(50), nullable=True, index=True)
    title: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    nationality: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    birth_city: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    birth_country: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    address_city: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    address_country: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)

    # Identity documents (parallel lists)
    document_type: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    document_number: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    document_issue_country: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)

    import_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("import_jobs.id", ondelete="SET NULL"),
        nullable=True
    )

    __table_args__ = (
        Index('ix_individual_reference_list', 'reference_number', 'list_type'),
    )

    @property
    def display_name(self) -> str:
        """Full name, or the joined name parts when absent"""
        if self.full_name:
            return self.full_name
        return join_name_parts(self.first_name, self.second_name, self.third_name)

    def __repr__(self) -> str:
        return f"<BlocklistIndividual(ref={self.reference_number}, name='{self.display_name}')>"


class BlocklistEntity(Base, TimestampMixin, ProvenanceMixin):
    """Canonical entity (organization) record."""
    __tablename__ = "blocklist_entities"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    reference_number: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    alias_names: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)

    # Address lines and components
    addresses: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    address_street: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    address_city: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)
    address_country: Mapped[List[str]] = mapped_column(JsonList, default=list, nullable=False)

    import_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("import_jobs.id", ondelete="SET NULL"),
        nullable=True
    )

    __table_args__ = (
        Index('ix_entity_reference_list', 'reference_number', 'list_type'),
    )

    @property
    def display_name(self) -> str:
        return self.name or ""

    def __repr__(self) -> str:
        return f"<BlocklistEntity(ref={self.reference_number}, name='{self.name}')>"


# ============================================
# IMPORT JOB MODEL
# ============================================

class ImportJob(Base, TimestampMixin):
    """
    Lifecycle record for one uploaded file.

    Status moves pending -> processing -> completed | failed and is
    terminal afterwards; only the ingestion pipeline owning the job
    mutates it.
    """
    __tablename__ = "import_jobs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    filename: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    file_type: Mapped[ImportFileType] = mapped_column(
        Enum(ImportFileType),
        nullable=False,
        default=ImportFileType.CSV
    )
    status: Mapped[ImportStatus] = mapped_column(
        Enum(ImportStatus),
        nullable=False,
        default=ImportStatus.PENDING,
        index=True
    )
    entries_updated: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processing_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    file_size: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    __table_args__ = (
        Index('ix_import_job_created', 'created_at'),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<ImportJob(id={self.id}, filename='{self.filename}', status={self.status})>"


# ============================================
# HELPER FUNCTIONS
# ============================================

def join_name_parts(*parts: Optional[str]) -> str:
    """Join non-empty name parts with single spaces"""
    return " ".join(p.strip() for p in parts if p and p.strip())


def normalize_name(name: str) -> str:
    """
    Normalize a name for comparison.

    Removes accents, converts to uppercase, replaces punctuation with
    spaces and normalizes whitespace.

    Args:
        name: The name to normalize (can be None)

    Returns:
        Normalized name string, or empty string if name is None/empty
    """
    if not name:
        return ""

    # Normalize Unicode (decompose accents)
    normalized = unicodedata.normalize('NFD', name)
    # Remove accent marks
    normalized = ''.join(c for c in normalized if unicodedata.category(c) != 'Mn')
    # Remove special characters except spaces
    normalized = re.sub(r'[^\w\s]', ' ', normalized)
    normalized = normalized.replace('_', ' ')
    # Normalize whitespace
    normalized = re.sub(r'\s+', ' ', normalized)
    return normalized.upper().strip()
