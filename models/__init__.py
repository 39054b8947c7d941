"""
SQLAlchemy ORM models for database tables.

Models:
    base: Base declarative class and shared enums (SourceKind, ConflictPolicy, OpportunityStatus)
    opportunity: Canonical opportunities, unique per (source, external_id)
    source_ledger: Natural keys / bulk files each source has already ingested

Usage:
    from models.opportunity import Opportunity
    from models.base import SourceKind, ConflictPolicy
"""

__all__ = [
    "Base",
    "SourceKind",
    "ConflictPolicy",
    "OpportunityStatus",
    "Opportunity",
    "SourceLedgerEntry",
]
