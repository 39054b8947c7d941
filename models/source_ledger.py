from sqlalchemy import Column, BigInteger, String, Enum, DateTime, Index
from datetime import datetime
from models.base import Base, SourceKind


class SourceLedgerEntry(Base):
    """
    Natural keys a source has already ingested.

    For file-based sources (death registry) the key is the bulk file name,
    which lets link discovery skip files processed by earlier runs.
    """
    __tablename__ = "source_ledger"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    source = Column(Enum(SourceKind), nullable=False)
    natural_key = Column(String(255), nullable=False)
    recorded_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("uq_ledger_source_key", "source", "natural_key", unique=True),
    )
