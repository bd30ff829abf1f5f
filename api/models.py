"""
Pydantic request/response schemas for the Blocklist Screening API

Field names on the wire are camelCase, matching the search documents.
"""

from datetime import datetime
from typing import List, Optional, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from config_manager import VALID_DATA_SOURCES

SEARCH_TYPES = ("individual", "entity", "all")


class ImportJobResponse(BaseModel):
    """Import job as returned by the imports endpoints."""
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    id: str = Field(..., description="Import job ID")
    filename: str = Field(..., description="Uploaded file name")
    file_type: str = Field(..., alias="fileType", description="csv, xml or pdf")
    status: str = Field(..., description="pending, processing, completed or failed")
    entries_updated: int = Field(default=0, alias="entriesUpdated")
    processing_error: Optional[str] = Field(default=None, alias="processingError")
    file_size: Optional[int] = Field(default=None, alias="fileSize")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")

    @classmethod
    def from_job(cls, job) -> "ImportJobResponse":
        return cls(
            id=str(job.id),
            filename=job.filename,
            file_type=job.file_type.value,
            status=job.status.value,
            entries_updated=job.entries_updated or 0,
            processing_error=job.processing_error,
            file_size=job.file_size,
            created_at=job.created_at,
            updated_at=job.updated_at,
        )


class UploadResponse(BaseModel):
    """Response of a successful upload."""
    message: str
    imports: List[ImportJobResponse] = Field(default_factory=list)


class SearchRequest(BaseModel):
    """Fuzzy name search request."""
    model_config = ConfigDict(populate_by_name=True)

    search_term: str = Field(
        ...,
        alias="searchTerm",
        min_length=1,
        description="Name to search for"
    )
    search_type: Optional[str] = Field(
        default=None,
        alias="searchType",
        description="individual, entity or all"
    )
    data_source: Optional[str] = Field(
        default=None,
        alias="dataSource",
        description="Local, UN or Both (defaults to configuration)"
    )

    @field_validator('search_type')
    @classmethod
    def validate_search_type(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        value = v.strip().lower()
        if value and value not in SEARCH_TYPES:
            raise ValueError(f"searchType must be one of: {', '.join(SEARCH_TYPES)}")
        return value or None

    @field_validator('data_source')
    @classmethod
    def validate_data_source(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and v not in VALID_DATA_SOURCES:
            raise ValueError(f"dataSource must be one of: {', '.join(VALID_DATA_SOURCES)}")
        return v


class DatabaseStatusResponse(BaseModel):
    total_records: int = Field(..., alias="totalRecords")
    last_updated: str = Field(..., alias="lastUpdated")

    model_config = ConfigDict(populate_by_name=True)


class DataSourceResponse(BaseModel):
    data_source: str = Field(..., alias="dataSource")
    available: List[str] = Field(default_factory=lambda: list(VALID_DATA_SOURCES))

    model_config = ConfigDict(populate_by_name=True)


class FeedSyncResponse(BaseModel):
    """Outcome of a manually triggered feed sync."""
    message: str
    result: Optional[Dict[str, Any]] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str = Field(..., description="healthy or degraded")
    version: str = Field(..., description="API version")
    database: bool = Field(..., description="Primary store reachable")
    database_latency_ms: Optional[float] = Field(default=None, alias="databaseLatencyMs")
    search_index: bool = Field(..., alias="searchIndex", description="Search index reachable")
    indexed_records: Optional[int] = Field(default=None, alias="indexedRecords")
    uptime_seconds: Optional[float] = Field(default=None, alias="uptimeSeconds")

    model_config = ConfigDict(populate_by_name=True)


class ErrorDetail(BaseModel):
    code: str = Field(..., description="Error code")
    message: str = Field(..., description="Human-readable error message")
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    field: Optional[str] = Field(default=None, description="Field that caused the error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")


class ErrorResponse(BaseModel):
    """Standardized error response."""
    error: ErrorDetail
