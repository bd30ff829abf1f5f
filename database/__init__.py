"""
Database Package for the Blocklist Screening Service

This package provides:
- SQLAlchemy ORM models for blocklist records and import jobs
- Session provider and Unit of Work for transaction management
- Repository pattern for data access
- Operation timing, Prometheus metrics and store health checks
"""

from database.models import (
    Base,
    BlocklistIndividual,
    BlocklistEntity,
    ImportJob,
    RecordKind,
    ListType,
    ImportStatus,
    ImportFileType,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    UnitOfWork,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
    InvalidStatusTransition,
    IndividualRepository,
    EntityRepository,
    ImportJobRepository,
)
from database.monitoring import (
    operation_timer,
    timed_operation,
    render_metrics,
    check_health,
    HealthStatus,
)

__all__ = [
    # Models
    "Base",
    "BlocklistIndividual",
    "BlocklistEntity",
    "ImportJob",
    "RecordKind",
    "ListType",
    "ImportStatus",
    "ImportFileType",
    # Connection
    "DatabaseSessionProvider",
    "DatabaseSettings",
    "UnitOfWork",
    "get_db_provider",
    "init_db",
    "close_db",
    "create_test_provider",
    # Repositories
    "RepositoryError",
    "EntityNotFoundError",
    "DuplicateEntityError",
    "InvalidStatusTransition",
    "IndividualRepository",
    "EntityRepository",
    "ImportJobRepository",
    # Monitoring
    "operation_timer",
    "timed_operation",
    "render_metrics",
    "check_health",
    "HealthStatus",
]
