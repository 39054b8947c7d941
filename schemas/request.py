"""
Trigger input consumed from the job dispatcher
"""

from datetime import date
from typing import Optional, Dict, Any
from pydantic import BaseModel, Field, field_validator, model_validator
from models.base import SourceKind


class SourceParams(BaseModel):
    """Which slice of an upstream dataset a run should ingest"""

    department_or_region: Optional[str] = None
    since_date: date
    until_date: Optional[date] = None
    source_specific_filters: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("department_or_region")
    @classmethod
    def normalize_department(cls, v):
        if v is None:
            return None
        v = v.strip().upper()
        if not v:
            return None
        if v.isdigit():
            if not 1 <= int(v) <= 976:
                raise ValueError(f"Unknown department: {v}")
            return v.zfill(2)
        if v not in ("2A", "2B"):
            raise ValueError(f"Unknown department: {v}")
        return v

    @model_validator(mode="after")
    def check_date_range(self):
        if self.until_date is not None and self.until_date < self.since_date:
            raise ValueError("until_date must not precede since_date")
        return self


class IngestionRequest(BaseModel):
    """
    One unit of work: a source plus its parameters.

    Example:
        IngestionRequest(
            source=SourceKind.ENERGY_SIEVES,
            source_params={"department_or_region": "75", "since_date": "2024-01-01"},
        )
    """

    source: SourceKind
    source_params: SourceParams
    batch_size: Optional[int] = Field(None, ge=1, le=10000)
