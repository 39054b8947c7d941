"""
Pydantic schemas for validation and serialization.

Schemas:
    opportunity: CanonicalOpportunity and Coordinates
    request: IngestionRequest / SourceParams trigger input

Usage:
    from schemas.opportunity import CanonicalOpportunity, Coordinates
    from schemas.request import IngestionRequest, SourceParams
"""

__all__ = [
    "CanonicalOpportunity",
    "Coordinates",
    "IngestionRequest",
    "SourceParams",
]
