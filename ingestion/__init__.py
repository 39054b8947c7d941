"""
Ingestion pipeline for public opportunity sources.

Modules:
    runner: IngestionRunner orchestrating one source run into a RunSummary
    scheduler: APScheduler integration for periodic runs
    context: RunContext threaded through every stage (logger, cancellation)
    sources: per-source configuration, including the conflict policy
    stats: immutable ProcessingStats
    failure_sink: failed-row accumulation and report writing

Subpackages:
    extractors: paced fetch client, page collector, link discovery,
        streaming CSV parser, per-source extractors
    transformers: one pure transformer per source
    enrichment: geocoding and mairie contact lookups
    loaders: batch upserter, PostgreSQL store, artifact store

Architecture:
    fetch -> transform -> (geocode) -> batch upsert, with rejects routed
    to the failure sink at every stage.

    1. Extract - paced requests with retry on 429/5xx/timeouts
    2. Transform - pure per-source validation, Rejected values instead of exceptions
    3. Load - ordered batches with ON CONFLICT on (source, external_id)

    Per-record and per-batch failures never abort a run; only
    FatalSourceFailure does.

Example:
    runner = IngestionRunner(PostgresOpportunityStore(), LocalArtifactStore())
    summary = await runner.run(IngestionRequest(
        source=SourceKind.ENERGY_SIEVES,
        source_params=SourceParams(department_or_region="75", since_date="2024-01-01"),
    ))
    print(summary.stats.inserted_count)
"""

__all__ = [
    "IngestionRunner",
    "IngestionScheduler",
    "RunContext",
    "ProcessingStats",
    "FailureSink",
]
