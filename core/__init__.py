"""
Shared infrastructure for the opportunity sourcing pipeline.

Modules:
    config: settings read from the environment (rate limits, batch size, paths)
    database: async engine and session factory for PostgreSQL
    exceptions: error taxonomy (transient, rejected, batch failure, fatal)
    logging: root logging setup and per-run logger adapters

Usage:
    from core.config import settings
    from core.exceptions import FetchError, ValidationRejected
    from core.logging import setup_logging, get_run_logger

    setup_logging()
    log = get_run_logger("energy_sieves", "run-1")
    log.info("Fetching page %d", 1)
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    "get_run_logger",
    # Exceptions
    "ETLException",
    "ExtractionError",
    "FetchError",
    "RateLimited",
    "NetworkError",
    "FetchTimeout",
    "UpstreamError",
    "PaginationLimitReached",
    "SourceFileUnavailable",
    "TransformationError",
    "ValidationRejected",
    "GeocodingMiss",
    "LoadError",
    "PersistenceBatchFailure",
    "FatalSourceFailure",
    "SourceConfigurationError",
    "ArtifactStoreError",
    "RetryableError",
    "NonRetryableError",
]
