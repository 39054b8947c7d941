"""
Load canonical opportunities into PostgreSQL with upsert logic (idempotency)
"""

from datetime import datetime
from typing import List, Set, Callable

from sqlalchemy import select, literal_column
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import async_session_maker
from models.base import SourceKind, ConflictPolicy
from models.opportunity import Opportunity
from models.source_ledger import SourceLedgerEntry
from schemas.opportunity import CanonicalOpportunity
import logging

logger = logging.getLogger(__name__)

# Refreshed on conflict under the UPDATE policy; the natural key is kept
MUTABLE_COLUMNS = (
    "label",
    "address",
    "zip_code",
    "department",
    "latitude",
    "longitude",
    "opportunity_date",
    "contact_data",
    "extra_data",
)


class PostgresOpportunityStore:
    """
    Opportunity storage backed by the ``opportunities`` table.

    Ensures:
    - No duplicate rows on repeated runs: (source, external_id) is unique
    - One session and transaction per batch, so a failed batch rolls back alone
    - Inserted rows are told apart from refreshed ones with RETURNING (xmax = 0)
    """

    def __init__(self, session_factory: Callable[[], AsyncSession] = async_session_maker):
        self.session_factory = session_factory

    async def upsert_batch(
        self,
        source: SourceKind,
        records: List[CanonicalOpportunity],
        policy: ConflictPolicy
    ) -> int:
        """
        Write one batch with INSERT ... ON CONFLICT.

        Returns:
            Number of rows newly inserted; rows refreshed under UPDATE are not counted
        """
        if not records:
            return 0

        rows = [record.to_row() for record in records]
        stmt = insert(Opportunity).values(rows)

        if policy == ConflictPolicy.UPDATE:
            stmt = stmt.on_conflict_do_update(
                index_elements=["source", "external_id"],
                set_={
                    **{column: stmt.excluded[column] for column in MUTABLE_COLUMNS},
                    "updated_at": datetime.utcnow(),
                }
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=["source", "external_id"])

        # xmax is 0 only on a freshly inserted tuple
        stmt = stmt.returning(Opportunity.id, literal_column("(xmax = 0)").label("inserted"))

        async with self.session_factory() as session:
            async with session.begin():
                result = await session.execute(stmt)
                returned = result.fetchall()

        inserted = sum(1 for row in returned if row[1])
        logger.debug(
            f"Upserted {len(records)} {source.value} rows ({policy.value}): "
            f"{inserted} inserted, {len(returned) - inserted} refreshed"
        )
        return inserted

    async def existing_natural_keys(self, source: SourceKind) -> Set[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SourceLedgerEntry.natural_key).where(SourceLedgerEntry.source == source)
            )
            return set(result.scalars().all())

    async def record_natural_key(self, source: SourceKind, key: str) -> None:
        stmt = insert(SourceLedgerEntry).values(source=source, natural_key=key)
        stmt = stmt.on_conflict_do_nothing(index_elements=["source", "natural_key"])
        async with self.session_factory() as session:
            async with session.begin():
                await session.execute(stmt)
        logger.info(f"Recorded {key} as ingested for {source.value}")
