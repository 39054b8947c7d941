"""
ADEME energy-performance diagnostics (DPE) extractor.

Queries the ``dpe03existant`` dataset of the data-fair API for poorly
rated dwellings in one department, page by page.
"""

import logging
from datetime import date
from typing import Dict, Any, List, Optional

from core.config import settings
from ingestion.extractors.fetcher import RateLimitedFetcher
from ingestion.extractors.pagination import PageCollector
from ingestion.sources import ADEME_DPE_URL

logger = logging.getLogger(__name__)

DPE_FIELDS = [
    "numero_dpe",
    "adresse_ban",
    "code_postal_ban",
    "nom_commune_ban",
    "code_departement_ban",
    "etiquette_dpe",
    "etiquette_ges",
    "_geopoint",
    "date_etablissement_dpe",
    "date_reception_dpe",
    "type_batiment",
    "annee_construction",
    "surface_habitable_logement",
]


def build_dpe_where(
    department: str,
    energy_classes: List[str],
    since: date,
    until: Optional[date] = None
) -> str:
    """
    Data-fair ``where`` clause, e.g.
    ``code_departement_ban="75" AND (etiquette_dpe="F" OR etiquette_dpe="G") AND date_etablissement_dpe>="2024-01-01"``
    """
    classes = " OR ".join(f'etiquette_dpe="{c}"' for c in energy_classes)
    clause = (
        f'code_departement_ban="{department.zfill(2)}" AND ({classes}) '
        f'AND date_etablissement_dpe>="{since.isoformat()}"'
    )
    if until is not None:
        clause += f' AND date_etablissement_dpe<="{until.isoformat()}"'
    return clause


class AdemeDpeExtractor:
    """Builds the page collector for one department and date window."""

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        page_size: int = 1000,
        energy_classes: Optional[List[str]] = None,
        url: str = ADEME_DPE_URL
    ):
        self.fetcher = fetcher
        self.page_size = page_size
        self.energy_classes = energy_classes or settings.energy_classes
        self.url = url

    def collector(
        self,
        department: str,
        since: date,
        until: Optional[date] = None,
        cancel_event=None,
        log: Optional[logging.LoggerAdapter] = None
    ) -> PageCollector:
        where = build_dpe_where(department, self.energy_classes, since, until)
        select = ",".join(DPE_FIELDS)

        def build_params(page: int, size: int) -> Dict[str, Any]:
            return {"size": size, "page": page, "select": select, "where": where}

        (log or logger).info(
            f"Collecting DPE records for department {department} since {since.isoformat()} "
            f"(classes {', '.join(self.energy_classes)})"
        )
        return PageCollector(
            self.fetcher,
            self.url,
            build_params,
            page_size=self.page_size,
            cancel_event=cancel_event,
            log=log
        )
