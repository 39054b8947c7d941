"""
Death registry transformer: INSEE death row to canonical opportunity.

Coordinates are the centre of the commune of death and must be resolved
before the transform; mairie contact data is optional.
"""

from typing import Dict, Any, Optional, Tuple

from models.base import SourceKind
from ingestion.extractors.csv_stream import compute_age
from ingestion.transformers.base import (
    Rejected,
    RejectCode,
    TransformContext,
    TransformResult,
    text,
    parse_date,
    in_wgs84_range,
    valid_zip,
    department_from_insee,
    build_opportunity,
)


def split_person_name(nomprenom: str) -> Tuple[str, str]:
    """``"DUPONT*JEAN PIERRE/"`` to ``("Dupont", "Jean Pierre")``."""
    cleaned = nomprenom.strip().rstrip("/")
    last, _, first = cleaned.partition("*")
    return last.strip().title(), first.replace("*", " ").strip().title()


def clean_person_name(nomprenom: str) -> str:
    last, first = split_person_name(nomprenom)
    return " ".join(part for part in (last, first) if part)


def zip_from_insee(code: str) -> str:
    """Approximate postal code from an INSEE commune code (Corsica uses 20xxx)."""
    code = code.strip().upper()
    if code.startswith("2A"):
        return "200" + code[-2:]
    if code.startswith("2B"):
        return "202" + code[-2:]
    return code[:5]


class DeathRegistryTransformer:

    source = SourceKind.DEATH_REGISTRY

    def natural_key(self, raw: Dict[str, Any]) -> Optional[str]:
        lieu, date_deces = text(raw, "lieudeces"), text(raw, "datedeces")
        if not lieu or not date_deces:
            return None
        return f"{lieu}_{date_deces}_{text(raw, 'actedeces') or ''}"

    def geocoding_query(self, raw: Dict[str, Any]) -> Optional[str]:
        return text(raw, "lieudeces")

    def transform(self, raw: Dict[str, Any], context: TransformContext) -> TransformResult:
        nomprenom = text(raw, "nomprenom")
        lieu = text(raw, "lieudeces")
        date_deces = text(raw, "datedeces")
        if not nomprenom or not lieu or not date_deces:
            return Rejected(
                "Missing required fields: nomprenom, datedeces, or lieudeces",
                RejectCode.MISSING_FIELD
            )

        key = self.natural_key(raw)

        department = department_from_insee(lieu)
        if department is None:
            return Rejected(f"Invalid INSEE code: {lieu}", RejectCode.INVALID_VALUE)

        zip_code = zip_from_insee(lieu)
        if not valid_zip(zip_code):
            return Rejected(f"No postal code for INSEE code {lieu}", RejectCode.INVALID_VALUE)

        if context.coordinates is None:
            return Rejected(f"No coordinates for commune {lieu}", RejectCode.MISSING_COORDINATES)
        latitude, longitude = context.coordinates.latitude, context.coordinates.longitude
        if not in_wgs84_range(latitude, longitude):
            return Rejected(f"Coordinates out of range for commune {lieu}", RejectCode.OUT_OF_RANGE)

        opportunity_date = parse_date(date_deces)
        if opportunity_date is None:
            return Rejected(f"Invalid date format: {date_deces}", RejectCode.INVALID_VALUE)
        if opportunity_date > context.reference_date:
            return Rejected(f"Future date of death: {date_deces}", RejectCode.OUT_OF_RANGE)

        last_name, first_name = split_person_name(nomprenom)
        label = clean_person_name(nomprenom)
        if not label:
            return Rejected(f"Empty name for {key}", RejectCode.MISSING_FIELD)

        contact = context.contact_data or {}
        address = contact.get("address") or contact.get("name") or f"Commune {lieu}"

        return build_opportunity(
            source=self.source,
            external_id=key,
            label=label,
            address=address,
            zip_code=zip_code,
            department=department,
            latitude=latitude,
            longitude=longitude,
            opportunity_date=opportunity_date,
            contact_data=context.contact_data,
            extra_data={
                "first_name": first_name,
                "last_name": last_name,
                "birth_date": text(raw, "datenaiss"),
                "age_at_death": compute_age(text(raw, "datenaiss") or "", date_deces),
                "death_act": text(raw, "actedeces"),
                "insee_code": lieu,
            },
        )
