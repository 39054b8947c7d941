"""
Shared values and parsing helpers for record transformers.

Transformers are pure: they take a raw record and a ``TransformContext``
and return either a ``CanonicalOpportunity`` or a ``Rejected`` value.
They never perform I/O and never raise for bad input.
"""

import enum
import math
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Any, Optional, Protocol, Tuple, Union

from pydantic import ValidationError

from schemas.opportunity import CanonicalOpportunity, Coordinates


class RejectCode(str, enum.Enum):
    MISSING_FIELD = "missing_field"
    INVALID_VALUE = "invalid_value"
    MISSING_COORDINATES = "missing_coordinates"
    MISSING_DATE = "missing_date"
    OUT_OF_RANGE = "out_of_range"


@dataclass(frozen=True)
class Rejected:
    reason: str
    code: RejectCode = RejectCode.INVALID_VALUE


@dataclass(frozen=True)
class TransformContext:
    """
    Run-level inputs to a transform.

    ``coordinates``, ``contact_data`` and ``opportunity_date`` let values
    resolved by I/O stages (geocoding, directory lookups, the enclosing
    BODACC row) re-enter a pure transform.
    """

    department: Optional[str]
    reference_date: date
    coordinates: Optional[Coordinates] = None
    contact_data: Optional[Dict[str, Any]] = None
    opportunity_date: Optional[date] = None

    def with_coordinates(self, coordinates: Coordinates) -> "TransformContext":
        return TransformContext(
            department=self.department,
            reference_date=self.reference_date,
            coordinates=coordinates,
            contact_data=self.contact_data,
            opportunity_date=self.opportunity_date,
        )


TransformResult = Union[CanonicalOpportunity, Rejected]


class RecordTransformer(Protocol):
    """One implementation per source, selected by source identifier."""

    def transform(self, raw: Dict[str, Any], context: TransformContext) -> TransformResult:
        ...

    def natural_key(self, raw: Dict[str, Any]) -> Optional[str]:
        ...

    def geocoding_query(self, raw: Dict[str, Any]) -> Optional[str]:
        ...


# ============================================================================
# Parsing helpers
# ============================================================================

def text(raw: Dict[str, Any], key: str) -> Optional[str]:
    """Stripped string value, None when absent or blank."""
    value = raw.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_geopoint(value: str) -> Optional[Tuple[float, float]]:
    """``"lat,lon"`` to a (lat, lon) tuple, None if either part is not a number."""
    parts = value.split(",")
    if len(parts) != 2:
        return None
    latitude, longitude = parse_float(parts[0]), parse_float(parts[1])
    if latitude is None or longitude is None:
        return None
    return latitude, longitude


def parse_date(value: Optional[str]) -> Optional[date]:
    """Accepts ``YYYY-MM-DD`` (optionally followed by a time) and ``YYYYMMDD``."""
    if not value:
        return None
    value = value.strip()
    try:
        if re.fullmatch(r"\d{8}", value):
            return datetime.strptime(value, "%Y%m%d").date()
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


def in_wgs84_range(latitude: float, longitude: float) -> bool:
    return -90 <= latitude <= 90 and -180 <= longitude <= 180


def valid_zip(zip_code: Optional[str]) -> bool:
    return bool(zip_code) and len(zip_code) == 5 and zip_code.isdigit() and int(zip_code) > 0


def department_from_zip(zip_code: str) -> str:
    """
    Department code from a postal code.

    Overseas codes keep three digits (971..976) and Corsican 20xxx codes
    map to 2A (200xx-201xx) or 2B (202xx-206xx).
    """
    if zip_code.startswith("97"):
        return zip_code[:3]
    if zip_code.startswith("20"):
        return "2A" if zip_code[:3] in ("200", "201") else "2B"
    return zip_code[:2]


def department_from_insee(code: str) -> Optional[str]:
    """Department code from an INSEE commune code."""
    code = code.strip().upper()
    if len(code) < 2:
        return None
    if code.startswith("97"):
        return code[:3] if len(code) >= 3 else None
    if code[:2] in ("2A", "2B"):
        return code[:2]
    if not code[:2].isdigit():
        return None
    return code[:2]


def build_opportunity(**fields) -> TransformResult:
    """Construct the canonical record, turning schema violations into a rejection."""
    try:
        return CanonicalOpportunity(**fields)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first.get("loc", ()))
        return Rejected(f"Invalid {location}: {first.get('msg')}", RejectCode.INVALID_VALUE)
