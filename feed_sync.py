"""
Feed Synchronizer (remote feed path)

Pulls the UN consolidated list, inserts records not already present and
indexes them. Records are matched on a composite key because the feed
reuses reference numbers across distinct people:
- individuals: reference number + aliases + birth year + documents
- entities: reference number + name

A failing record is logged and skipped; a failing fetch or parse aborts
the whole run.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from database.connection import DatabaseSessionProvider
from database.models import RecordKind
from database.monitoring import timed_operation, record_ingested_rows
from database.repositories import EntityRepository, IndividualRepository
from downloader import FeedDownloader
from indexer import Indexer

logger = logging.getLogger(__name__)


@dataclass
class KindSyncStats:
    inserted: int = 0
    skipped: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {'inserted': self.inserted, 'skipped': self.skipped, 'failed': self.failed}


@dataclass
class SyncResult:
    """Outcome of one feed synchronization run"""
    individuals: KindSyncStats = field(default_factory=KindSyncStats)
    entities: KindSyncStats = field(default_factory=KindSyncStats)
    indexed: int = 0

    @property
    def inserted(self) -> int:
        return self.individuals.inserted + self.entities.inserted

    def to_dict(self) -> Dict[str, Any]:
        return {
            'individuals': self.individuals.to_dict(),
            'entities': self.entities.to_dict(),
            'indexed': self.indexed,
        }


class FeedSynchronizer:
    """Synchronizes the primary store with the remote feed."""

    def __init__(
        self,
        db_provider: DatabaseSessionProvider,
        downloader: FeedDownloader,
        indexer: Optional[Indexer] = None
    ):
        self.db_provider = db_provider
        self.downloader = downloader
        self.indexer = indexer

    @timed_operation("feed_sync")
    def sync_from_feed(self) -> SyncResult:
        """
        Run one synchronization.

        Returns:
            SyncResult with per-kind inserted/skipped/failed counts

        Raises:
            FeedError: If the feed cannot be fetched or parsed
        """
        document = self.downloader.fetch_and_parse()
        result = SyncResult()

        with self.db_provider.get_unit_of_work() as uow:
            new_individuals = self._sync_kind(
                uow, IndividualRepository(uow.session), document.individuals,
                RecordKind.INDIVIDUAL, result.individuals
            )
            new_entities = self._sync_kind(
                uow, EntityRepository(uow.session), document.entities,
                RecordKind.ENTITY, result.entities
            )
            uow.commit()

            if self.indexer is not None:
                if new_individuals:
                    result.indexed += self.indexer.index_many(new_individuals, RecordKind.INDIVIDUAL)
                if new_entities:
                    result.indexed += self.indexer.index_many(new_entities, RecordKind.ENTITY)

        for kind, stats in (('individual', result.individuals), ('entity', result.entities)):
            record_ingested_rows('feed', 'inserted', stats.inserted)
            record_ingested_rows('feed', 'skipped', stats.skipped)
            record_ingested_rows('feed', 'error', stats.failed)
            logger.info(
                f"Feed sync {kind}: inserted={stats.inserted} "
                f"skipped={stats.skipped} failed={stats.failed}"
            )
        return result

    def _sync_kind(
        self,
        uow,
        repo,
        records: List[Dict[str, Any]],
        kind: RecordKind,
        stats: KindSyncStats
    ) -> List[Any]:
        session = uow.session
        created = []

        for fields in records:
            reference = fields.get('reference_number')
            if not reference:
                stats.failed += 1
                logger.warning(f"Skipping feed {kind.value} without reference number")
                continue

            try:
                with session.begin_nested():
                    if repo.find_feed_duplicate(fields) is not None:
                        stats.skipped += 1
                        continue
                    record = repo.insert(fields)
            except SQLAlchemyError as e:
                stats.failed += 1
                logger.error(f"Error processing feed {kind.value} {reference}: {e}")
                continue

            stats.inserted += 1
            created.append(record)

        return created
