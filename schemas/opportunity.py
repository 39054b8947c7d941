"""
Pydantic schemas for canonical opportunities with validation
"""

import math
from datetime import date
from typing import Optional, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from models.base import SourceKind


class Coordinates(BaseModel):
    """WGS84 point"""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    @field_validator("latitude", "longitude", mode="before")
    @classmethod
    def must_be_finite(cls, v):
        if v is None or isinstance(v, bool):
            raise ValueError("coordinate is required")
        if not math.isfinite(float(v)):
            raise ValueError("coordinate must be finite")
        return float(v)


class CanonicalOpportunity(BaseModel):
    """
    Normalized unit of value produced by every source.

    Ensures:
    - label is never empty
    - coordinates are finite and within WGS84 ranges
    - zip code is a positive 5-digit French postal code
    - opportunity date is a calendar date not in the future
    """

    model_config = ConfigDict(frozen=True)

    source: SourceKind
    external_id: str = Field(..., min_length=1, max_length=255)

    label: str = Field(..., min_length=1, max_length=500)
    address: Optional[str] = None
    zip_code: str
    department: str = Field(..., min_length=2, max_length=3)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)

    opportunity_date: date

    contact_data: Optional[Dict[str, Any]] = None
    extra_data: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("label")
    @classmethod
    def clean_label(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Label cannot be empty after stripping")
        return v

    @field_validator("address")
    @classmethod
    def clean_address(cls, v):
        if v is None:
            return None
        return v.strip() or None

    @field_validator("latitude", "longitude")
    @classmethod
    def must_be_finite(cls, v):
        if not math.isfinite(v):
            raise ValueError("coordinate must be finite")
        return v

    @field_validator("zip_code")
    @classmethod
    def check_zip_code(cls, v):
        v = v.strip()
        if len(v) != 5 or not v.isdigit() or int(v) <= 0:
            raise ValueError(f"Invalid postal code: {v!r}")
        return v

    @field_validator("opportunity_date")
    @classmethod
    def not_in_future(cls, v):
        if v > date.today():
            raise ValueError(f"Opportunity date {v.isoformat()} is in the future")
        return v

    @property
    def natural_key(self) -> str:
        return self.external_id

    def to_row(self) -> Dict[str, Any]:
        """Column mapping for the opportunities table"""
        return {
            "source": self.source,
            "external_id": self.external_id,
            "label": self.label,
            "address": self.address,
            "zip_code": self.zip_code,
            "department": self.department,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "opportunity_date": self.opportunity_date,
            "contact_data": self.contact_data,
            "extra_data": self.extra_data,
        }
