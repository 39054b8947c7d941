from sqlalchemy.orm import declarative_base
import enum

Base = declarative_base()


# ============================================================================
# ENUMS
# ============================================================================

class SourceKind(str, enum.Enum):
    """Upstream datasets feeding the opportunities table"""
    ENERGY_SIEVES = "energy_sieves"
    FAILING_COMPANIES = "failing_companies"
    DEATH_REGISTRY = "death_registry"


class ConflictPolicy(str, enum.Enum):
    """What an upsert does when the natural key already exists"""
    SKIP = "skip"      # first write wins
    UPDATE = "update"  # refresh mutable fields, keep the natural key


class OpportunityStatus(str, enum.Enum):
    """Review status of an opportunity"""
    PENDING_REVIEW = "pending_review"
    ACTIVE = "active"
    ARCHIVED = "archived"
