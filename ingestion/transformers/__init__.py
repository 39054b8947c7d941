"""
Per-source record transformers.

Each source has its own pure transformer; ``get_transformer`` selects one
by source identifier when a run is built.
"""

from typing import Dict

from core.exceptions import SourceConfigurationError
from models.base import SourceKind
from ingestion.transformers.base import (
    RecordTransformer,
    Rejected,
    RejectCode,
    TransformContext,
    TransformResult,
)
from ingestion.transformers.dpe import DpeTransformer
from ingestion.transformers.failing_company import FailingCompanyTransformer
from ingestion.transformers.death_registry import DeathRegistryTransformer

TRANSFORMERS: Dict[SourceKind, RecordTransformer] = {
    SourceKind.ENERGY_SIEVES: DpeTransformer(),
    SourceKind.FAILING_COMPANIES: FailingCompanyTransformer(),
    SourceKind.DEATH_REGISTRY: DeathRegistryTransformer(),
}


def get_transformer(source) -> RecordTransformer:
    try:
        return TRANSFORMERS[SourceKind(source)]
    except ValueError as e:
        raise SourceConfigurationError(
            f"No transformer for source {source}",
            context={"source": str(source)},
            original_exception=e
        )


__all__ = [
    "RecordTransformer",
    "Rejected",
    "RejectCode",
    "TransformContext",
    "TransformResult",
    "DpeTransformer",
    "FailingCompanyTransformer",
    "DeathRegistryTransformer",
    "get_transformer",
]
