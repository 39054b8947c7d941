"""
Immutable run counters.

Each pipeline stage returns a new ``ProcessingStats`` value instead of
mutating a shared object; the runner folds them together.
"""

from dataclasses import dataclass, fields, replace, asdict
from typing import Dict


@dataclass(frozen=True)
class ProcessingStats:
    total_fetched: int = 0
    valid_transformed: int = 0
    invalid_rejected: int = 0
    geocoding_attempts: int = 0
    geocoding_successes: int = 0
    inserted_count: int = 0
    error_count: int = 0
    filtered_out: int = 0

    def incremented(self, **deltas: int) -> "ProcessingStats":
        """Return a copy with the named counters increased."""
        for name, delta in deltas.items():
            if name not in _FIELD_NAMES:
                raise AttributeError(f"Unknown counter: {name}")
            if delta < 0:
                raise ValueError(f"Counters only increase: {name}={delta}")
        return replace(self, **{name: getattr(self, name) + delta for name, delta in deltas.items()})

    def merge(self, other: "ProcessingStats") -> "ProcessingStats":
        return ProcessingStats(**{
            name: getattr(self, name) + getattr(other, name) for name in _FIELD_NAMES
        })

    def __add__(self, other):
        if not isinstance(other, ProcessingStats):
            return NotImplemented
        return self.merge(other)

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


_FIELD_NAMES = frozenset(f.name for f in fields(ProcessingStats))
