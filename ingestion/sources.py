"""
Static per-source configuration.

The conflict policy is declared here for every source rather than
inferred from entity naming: energy diagnostics and death records are
immutable once seen, liquidation records refresh status and address.
"""

from dataclasses import dataclass
from typing import Dict

from core.config import settings
from core.exceptions import SourceConfigurationError
from models.base import SourceKind, ConflictPolicy

# Upstream endpoints
ADEME_DPE_URL = "https://data.ademe.fr/data-fair/api/v1/datasets/dpe03existant/lines"
BODACC_EXPORT_URL = (
    "https://bodacc-datadila.opendatasoft.com/api/explore/v2.1/catalog/datasets/"
    "annonces-commerciales/exports/csv"
)
RECHERCHE_ENTREPRISES_URL = "https://recherche-entreprises.api.gouv.fr/search"
ADDRESS_GEOCODING_URL = "https://api-adresse.data.gouv.fr/search/"
GEO_COMMUNES_URL = "https://geo.api.gouv.fr/communes"
ANNUAIRE_URL = (
    "https://api-lannuaire.service-public.fr/api/explore/v2.1/catalog/datasets/"
    "api-lannuaire-administration/records"
)
INSEE_DEATHS_INDEX_URL = "https://www.insee.fr/fr/information/4190491"


@dataclass(frozen=True)
class SourceConfig:
    kind: SourceKind
    natural_key: str
    conflict_policy: ConflictPolicy
    page_size: int = 0
    requires_department: bool = True


SOURCE_CONFIGS: Dict[SourceKind, SourceConfig] = {
    SourceKind.ENERGY_SIEVES: SourceConfig(
        kind=SourceKind.ENERGY_SIEVES,
        natural_key="numero_dpe",
        conflict_policy=ConflictPolicy.SKIP,
        page_size=1000,
    ),
    SourceKind.FAILING_COMPANIES: SourceConfig(
        kind=SourceKind.FAILING_COMPANIES,
        natural_key="siret",
        conflict_policy=ConflictPolicy.UPDATE,
    ),
    SourceKind.DEATH_REGISTRY: SourceConfig(
        kind=SourceKind.DEATH_REGISTRY,
        natural_key="lieudeces_datedeces_actedeces",
        conflict_policy=ConflictPolicy.SKIP,
        requires_department=False,
    ),
}


def get_source_config(source) -> SourceConfig:
    """Look up a source by kind or by its string value."""
    try:
        kind = SourceKind(source)
    except ValueError as e:
        raise SourceConfigurationError(
            f"Unknown source: {source}",
            context={"source": str(source)},
            original_exception=e
        )
    return SOURCE_CONFIGS[kind]


def host_min_intervals() -> Dict[str, float]:
    """Minimum seconds between two requests, keyed by upstream host."""
    return {
        "data.ademe.fr": settings.ADEME_MIN_INTERVAL,
        "bodacc-datadila.opendatasoft.com": settings.BODACC_MIN_INTERVAL,
        "recherche-entreprises.api.gouv.fr": settings.RECHERCHE_ENTREPRISES_MIN_INTERVAL,
        "api-adresse.data.gouv.fr": settings.GEOCODING_MIN_INTERVAL,
        "geo.api.gouv.fr": settings.GEO_API_MIN_INTERVAL,
        "api-lannuaire.service-public.fr": settings.GEO_API_MIN_INTERVAL,
        "www.insee.fr": settings.INSEE_MIN_INTERVAL,
    }
