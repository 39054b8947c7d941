"""
Energy sieve transformer: ADEME DPE line to canonical opportunity.
"""

from typing import Dict, Any, Optional

from models.base import SourceKind
from ingestion.transformers.base import (
    Rejected,
    RejectCode,
    TransformContext,
    TransformResult,
    text,
    parse_geopoint,
    parse_date,
    parse_float,
    in_wgs84_range,
    valid_zip,
    department_from_zip,
    build_opportunity,
)


class DpeTransformer:
    """
    Maps one DPE line.

    Requires address, postal code and a ``_geopoint`` of the form
    ``"lat,lon"`` (unless coordinates were resolved upstream). The date
    is the establishment date, falling back to the reception date.
    """

    source = SourceKind.ENERGY_SIEVES

    def natural_key(self, raw: Dict[str, Any]) -> Optional[str]:
        return text(raw, "numero_dpe")

    def geocoding_query(self, raw: Dict[str, Any]) -> Optional[str]:
        parts = [text(raw, "adresse_ban"), text(raw, "code_postal_ban"), text(raw, "nom_commune_ban")]
        query = " ".join(p for p in parts if p)
        return query or None

    def transform(self, raw: Dict[str, Any], context: TransformContext) -> TransformResult:
        numero = self.natural_key(raw)
        if not numero:
            return Rejected("Missing DPE number", RejectCode.MISSING_FIELD)

        address = text(raw, "adresse_ban")
        zip_code = text(raw, "code_postal_ban")
        if not address or not zip_code:
            return Rejected(f"Missing address or postal code for {numero}", RejectCode.MISSING_FIELD)

        if not valid_zip(zip_code):
            return Rejected(f"Invalid postal code for {numero}: {zip_code}", RejectCode.INVALID_VALUE)

        if context.coordinates is not None:
            latitude, longitude = context.coordinates.latitude, context.coordinates.longitude
        else:
            geopoint = text(raw, "_geopoint")
            if not geopoint:
                return Rejected(f"Missing geopoint for {numero}", RejectCode.MISSING_COORDINATES)
            parsed = parse_geopoint(geopoint)
            if parsed is None:
                return Rejected(f"Invalid coordinates for {numero}: {geopoint}", RejectCode.INVALID_VALUE)
            latitude, longitude = parsed

        if not in_wgs84_range(latitude, longitude):
            return Rejected(f"Coordinates out of range for {numero}", RejectCode.OUT_OF_RANGE)

        date_str = text(raw, "date_etablissement_dpe") or text(raw, "date_reception_dpe")
        if not date_str:
            return Rejected(f"Missing opportunity date for {numero}", RejectCode.MISSING_DATE)
        opportunity_date = parse_date(date_str)
        if opportunity_date is None:
            return Rejected(f"Invalid date for {numero}: {date_str}", RejectCode.INVALID_VALUE)
        if opportunity_date > context.reference_date:
            return Rejected(f"Future date for {numero}: {date_str}", RejectCode.OUT_OF_RANGE)

        department = text(raw, "code_departement_ban") or context.department or department_from_zip(zip_code)

        return build_opportunity(
            source=self.source,
            external_id=numero,
            label=address or text(raw, "nom_commune_ban"),
            address=address,
            zip_code=zip_code,
            department=department,
            latitude=latitude,
            longitude=longitude,
            opportunity_date=opportunity_date,
            extra_data={
                "energy_class": text(raw, "etiquette_dpe"),
                "ges_class": text(raw, "etiquette_ges"),
                "building_type": text(raw, "type_batiment"),
                "construction_year": raw.get("annee_construction"),
                "living_surface": parse_float(raw.get("surface_habitable_logement")),
                "city": text(raw, "nom_commune_ban"),
            },
        )
