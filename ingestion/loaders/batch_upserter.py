"""
Batched, idempotent persistence with per-batch failure isolation.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Set, Protocol

from core.config import settings
from core.exceptions import PersistenceBatchFailure
from ingestion.failure_sink import FailureSink
from ingestion.stats import ProcessingStats
from models.base import SourceKind, ConflictPolicy
from schemas.opportunity import CanonicalOpportunity

logger = logging.getLogger(__name__)


class OpportunityStore(Protocol):
    """Storage collaborator; ``upsert_batch`` returns the number of new rows, not refreshed ones."""

    async def upsert_batch(
        self,
        source: SourceKind,
        records: List[CanonicalOpportunity],
        policy: ConflictPolicy
    ) -> int:
        ...

    async def existing_natural_keys(self, source: SourceKind) -> Set[str]:
        ...

    async def record_natural_key(self, source: SourceKind, key: str) -> None:
        ...


@dataclass(frozen=True)
class UpsertOutcome:
    stats: ProcessingStats
    failures: List[PersistenceBatchFailure] = field(default_factory=list)
    cancelled: bool = False

    @property
    def inserted_count(self) -> int:
        return self.stats.inserted_count


class BatchUpserter:
    """
    Splits records into fixed-size chunks and writes them in order.

    A failing batch is logged with its start index and size, its rows go
    to the failure sink and its records count towards ``error_count``;
    the following batches are still written.
    """

    def __init__(
        self,
        store: OpportunityStore,
        source: SourceKind,
        policy: ConflictPolicy,
        batch_size: Optional[int] = None,
        failure_sink: Optional[FailureSink] = None,
        cancel_event=None,
        log: Optional[logging.LoggerAdapter] = None
    ):
        self.store = store
        self.source = source
        self.policy = policy
        self.batch_size = batch_size or settings.ETL_BATCH_SIZE
        self.failure_sink = failure_sink
        self.cancel_event = cancel_event
        self.log = log or logger

    def deduplicate(self, records: List[CanonicalOpportunity]) -> List[CanonicalOpportunity]:
        """
        One record per natural key, in first-seen order.

        SKIP keeps the first occurrence, UPDATE keeps the latest values.
        """
        by_key = {}
        for record in records:
            key = record.natural_key
            if key in by_key and self.policy == ConflictPolicy.SKIP:
                continue
            by_key[key] = record
        return list(by_key.values())

    async def upsert(
        self,
        records: List[CanonicalOpportunity],
        batch_size: Optional[int] = None
    ) -> UpsertOutcome:
        size = batch_size or self.batch_size
        unique = self.deduplicate(records)
        if len(unique) < len(records):
            self.log.info(f"Dropped {len(records) - len(unique)} duplicate natural keys before upsert")

        stats = ProcessingStats()
        failures = []
        total_batches = (len(unique) + size - 1) // size

        for start in range(0, len(unique), size):
            if self.cancel_event is not None and self.cancel_event.is_set():
                self.log.warning(f"Cancelled before batch starting at {start}")
                return UpsertOutcome(stats=stats, failures=failures, cancelled=True)

            batch = unique[start:start + size]
            batch_number = start // size + 1

            try:
                inserted = await self.store.upsert_batch(self.source, batch, self.policy)
            except Exception as e:
                failure = PersistenceBatchFailure(
                    f"Batch {batch_number}/{total_batches} failed",
                    start_index=start,
                    batch_size=len(batch),
                    context={"source": self.source.value},
                    original_exception=e
                )
                failures.append(failure)
                stats = stats.incremented(error_count=len(batch))
                self.log.error(
                    f"Batch {batch_number}/{total_batches} failed "
                    f"(start_index={start}, size={len(batch)}): {e}"
                )
                if self.failure_sink is not None:
                    reason = f"Persistence failed: {e}"
                    for record in batch:
                        self.failure_sink.record(record.model_dump(mode="json"), reason)
                continue

            stats = stats.incremented(inserted_count=inserted)
            self.log.info(f"Batch {batch_number}/{total_batches}: {inserted}/{len(batch)} records inserted")

        return UpsertOutcome(stats=stats, failures=failures)
