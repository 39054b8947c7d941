"""
Failing company transformer: one establishment of a company under a
collective proceeding to canonical opportunity.

The raw record is an establishment from the company directory annotated
with ``company_name``, ``siren`` and the BODACC fields of the notice
(``dateparution``, ``typeavis_lib``, ``denomination``).
"""

import re
from typing import Dict, Any, Optional

from models.base import SourceKind
from ingestion.transformers.base import (
    Rejected,
    RejectCode,
    TransformContext,
    TransformResult,
    text,
    parse_float,
    parse_date,
    in_wgs84_range,
    valid_zip,
    department_from_zip,
    build_opportunity,
)


class FailingCompanyTransformer:

    source = SourceKind.FAILING_COMPANIES

    def natural_key(self, raw: Dict[str, Any]) -> Optional[str]:
        siret = text(raw, "siret")
        return re.sub(r"\s", "", siret) if siret else None

    def geocoding_query(self, raw: Dict[str, Any]) -> Optional[str]:
        parts = [text(raw, "adresse"), text(raw, "code_postal"), text(raw, "libelle_commune")]
        query = " ".join(p for p in parts if p)
        return query or None

    def transform(self, raw: Dict[str, Any], context: TransformContext) -> TransformResult:
        siret = self.natural_key(raw)
        if not siret:
            return Rejected("Missing SIRET", RejectCode.MISSING_FIELD)
        if not re.fullmatch(r"\d{14}", siret):
            return Rejected(f"Invalid SIRET: {siret}", RejectCode.INVALID_VALUE)

        address = text(raw, "adresse")
        zip_code = text(raw, "code_postal")
        if not address or not zip_code:
            return Rejected(f"Missing address or postal code for {siret}", RejectCode.MISSING_FIELD)
        if not valid_zip(zip_code):
            return Rejected(f"Invalid postal code for {siret}: {zip_code}", RejectCode.INVALID_VALUE)

        if context.coordinates is not None:
            latitude, longitude = context.coordinates.latitude, context.coordinates.longitude
        else:
            latitude, longitude = parse_float(raw.get("latitude")), parse_float(raw.get("longitude"))
            if latitude is None or longitude is None:
                return Rejected(f"Missing coordinates for {siret}", RejectCode.MISSING_COORDINATES)

        if not in_wgs84_range(latitude, longitude):
            return Rejected(f"Coordinates out of range for {siret}", RejectCode.OUT_OF_RANGE)

        opportunity_date = context.opportunity_date or parse_date(text(raw, "dateparution"))
        if opportunity_date is None:
            return Rejected(f"Missing publication date for {siret}", RejectCode.MISSING_DATE)
        if opportunity_date > context.reference_date:
            return Rejected(f"Future date for {siret}: {opportunity_date}", RejectCode.OUT_OF_RANGE)

        company_name = text(raw, "company_name") or text(raw, "denomination")
        city = text(raw, "libelle_commune")

        return build_opportunity(
            source=self.source,
            external_id=siret,
            label=company_name or address,
            address=address,
            zip_code=zip_code,
            department=department_from_zip(zip_code),
            latitude=latitude,
            longitude=longitude,
            opportunity_date=opportunity_date,
            contact_data={
                "company_name": company_name,
                "siret": siret,
                "address": f"{address}, {zip_code} {city}" if city else address,
            },
            extra_data={
                "siren": text(raw, "siren") or siret[:9],
                "city": city,
                "notice_type": text(raw, "typeavis_lib"),
                "head_office": bool(raw.get("est_siege")),
            },
        )
