from sqlalchemy import (
    Column, String, BigInteger, Enum, Text, Float, Date, DateTime, Index
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from datetime import datetime
import uuid
from models.base import Base, SourceKind, OpportunityStatus


class Opportunity(Base):
    """
    Canonical opportunity produced by every ingestion source.

    Deduplication:
    - (source, external_id) is the natural key; upserts conflict on it
    - external_id is the SIRET, DPE number, or death-act composite key

    Source-specific attributes live in contact_data / extra_data so the
    table stays uniform for search.
    """
    __tablename__ = "opportunities"

    id = Column(BigInteger, primary_key=True, autoincrement=True)
    uuid = Column(UUID(as_uuid=True), default=uuid.uuid4, unique=True, nullable=False, index=True)

    # Source tracking
    source = Column(Enum(SourceKind), nullable=False, index=True)
    external_id = Column(String(255), nullable=False)

    # Location
    label = Column(String(500), nullable=False)
    address = Column(Text, nullable=True)
    zip_code = Column(String(5), nullable=False, index=True)
    department = Column(String(3), nullable=False, index=True)
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)

    opportunity_date = Column(Date, nullable=False)

    # Flexible fields
    contact_data = Column(JSONB, nullable=True)
    extra_data = Column(JSONB, nullable=True)

    status = Column(Enum(OpportunityStatus), default=OpportunityStatus.PENDING_REVIEW, nullable=False)

    # Timestamps
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("uq_opportunity_source_external", "source", "external_id", unique=True),
        Index("idx_opportunity_department_date", "department", "opportunity_date"),
        Index("idx_opportunity_location", "latitude", "longitude"),
    )
