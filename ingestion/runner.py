# ============================================================================
# File: ingestion/runner.py
# Description: Ingestion orchestrator with per-record and per-batch isolation
# ============================================================================
"""
Ingestion Runner - orchestrates fetch, transform, enrich and load for one source.

This module provides:
- One flow per source (energy sieves, failing companies, death registry)
- Per-record rejection routed to the failure sink, never aborting the run
- Geocoding fallback when a record lacks coordinates
- Batched idempotent upserts with per-batch failure isolation
- Cooperative cancellation between pages, lookups, files and batches
- A RunSummary returned for every completed or cancelled run

Only FatalSourceFailure (first-page fetch failure, bad configuration,
artifact store unavailability) escapes ``run``.
"""

import asyncio
import re
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional, Tuple, Iterable, AsyncIterator, Callable, Awaitable

import httpx
import pandas as pd

from core.config import settings
from core.exceptions import (
    FetchError,
    GeocodingMiss,
    FatalSourceFailure,
    SourceConfigurationError,
    SourceFileUnavailable,
    ArtifactStoreError,
)
from ingestion.context import RunContext
from ingestion.enrichment.contacts import MairieContactResolver
from ingestion.enrichment.geocoding import (
    GeocodingResolver,
    AddressGeocoder,
    CommuneCentreGeocoder,
)
from ingestion.extractors.ademe_extractor import AdemeDpeExtractor
from ingestion.extractors.bodacc_extractor import (
    BodaccExtractor,
    CompanyDirectory,
    read_bodacc_rows,
    unique_sirens,
)
from ingestion.extractors.csv_stream import StreamingRecordParser
from ingestion.extractors.fetcher import RateLimitedFetcher, PacerRegistry
from ingestion.extractors.insee_extractor import (
    InseeDeathFileExtractor,
    death_registry_options,
    raw_artifact_key,
)
from ingestion.extractors.link_discovery import LinkDiscoverer, FileMetadata, DEFAULT_ANCHOR_CLASS
from ingestion.failure_sink import FailureSink, failed_report_key
from ingestion.loaders.artifact_store import ArtifactStore
from ingestion.loaders.batch_upserter import BatchUpserter, OpportunityStore
from ingestion.sources import (
    SourceConfig,
    get_source_config,
    host_min_intervals,
    INSEE_DEATHS_INDEX_URL,
)
from ingestion.stats import ProcessingStats
from ingestion.transformers import get_transformer, RecordTransformer, Rejected, RejectCode, TransformContext
from ingestion.transformers.base import parse_date
from models.base import SourceKind
from schemas.opportunity import CanonicalOpportunity
from schemas.request import IngestionRequest

ContextEnricher = Callable[[Dict[str, Any], TransformContext], Awaitable[TransformContext]]


@dataclass(frozen=True)
class RunSummary:
    """
    Outcome of one run.

    ``status`` is ``success`` when nothing was rejected or lost,
    ``partial_success`` when some records failed or collection was
    truncated, and ``cancelled`` when the run was stopped early.
    """

    source: str
    status: str
    stats: ProcessingStats
    failure_artifact_locators: Tuple[str, ...] = ()
    warnings: Tuple[str, ...] = ()
    cancelled: bool = False

    @property
    def failure_artifact_locator(self) -> Optional[str]:
        return self.failure_artifact_locators[0] if self.failure_artifact_locators else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status,
            "stats": self.stats.to_dict(),
            "failure_artifact_locator": self.failure_artifact_locator,
            "failure_artifact_locators": list(self.failure_artifact_locators),
            "warnings": list(self.warnings),
            "cancelled": self.cancelled,
        }


@dataclass
class _RunState:
    """Mutable bookkeeping local to one run; stats themselves stay immutable."""

    stats: ProcessingStats = field(default_factory=ProcessingStats)
    warnings: List[str] = field(default_factory=list)
    locators: List[str] = field(default_factory=list)


def _status(stats: ProcessingStats, warnings: List[str], cancelled: bool) -> str:
    if cancelled:
        return "cancelled"
    if stats.invalid_rejected or stats.error_count or warnings:
        return "partial_success"
    return "success"


def _month_index(value: str) -> int:
    match = re.fullmatch(r"(\d{4})-(\d{2})", str(value).strip())
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise SourceConfigurationError(
            f"Invalid month filter {value!r}, expected YYYY-MM",
            context={"value": value}
        )
    return int(match.group(1)) * 12 + (int(match.group(2)) - 1)


class IngestionRunner:
    """
    Ingestion orchestrator.

    Responsibilities:
    - Validate the trigger input against the source configuration
    - Pick the source transformer from the registry
    - Thread the run context (logger, cancellation, reference date) through each stage
    - Fold the stats returned by each stage into the run summary
    """

    def __init__(
        self,
        store: OpportunityStore,
        artifacts: ArtifactStore,
        client: Optional[httpx.AsyncClient] = None,
        pacers: Optional[PacerRegistry] = None,
        sleep=asyncio.sleep,
        deaths_index_url: str = INSEE_DEATHS_INDEX_URL,
        anchor_class: str = DEFAULT_ANCHOR_CLASS
    ):
        self.store = store
        self.artifacts = artifacts
        self.client = client
        self.pacers = pacers or PacerRegistry(host_min_intervals())
        self.sleep = sleep
        self.deaths_index_url = deaths_index_url
        self.anchor_class = anchor_class
        self.parser = StreamingRecordParser()

    async def run(self, request: IngestionRequest, context: Optional[RunContext] = None) -> RunSummary:
        config = get_source_config(request.source)
        params = request.source_params
        if config.requires_department and not params.department_or_region:
            raise SourceConfigurationError(
                f"{config.kind.value} requires a department",
                context={"source": config.kind.value}
            )

        context = context or RunContext.create(config.kind.value)
        log = context.logger
        batch_size = request.batch_size or settings.ETL_BATCH_SIZE

        log.info(
            f"Starting run: department={params.department_or_region} "
            f"since={params.since_date.isoformat()} batch_size={batch_size}"
        )

        flows = {
            SourceKind.ENERGY_SIEVES: self._run_energy_sieves,
            SourceKind.FAILING_COMPANIES: self._run_failing_companies,
            SourceKind.DEATH_REGISTRY: self._run_death_registry,
        }

        state = _RunState()
        try:
            async with self._http_client() as client:
                fetcher = RateLimitedFetcher(client, self.pacers, sleep=self.sleep, log=log)
                await flows[config.kind](fetcher, request, context, config, batch_size, state)
        except FatalSourceFailure as e:
            log.error(f"Run failed: {e}")
            raise

        summary = RunSummary(
            source=config.kind.value,
            status=_status(state.stats, state.warnings, context.cancelled),
            stats=state.stats,
            failure_artifact_locators=tuple(state.locators),
            warnings=tuple(state.warnings),
            cancelled=context.cancelled,
        )
        log.info(f"Run finished with status {summary.status}: {summary.stats.to_dict()}")
        return summary

    @asynccontextmanager
    async def _http_client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self.client is not None:
            yield self.client
            return
        async with httpx.AsyncClient(timeout=settings.REQUEST_TIMEOUT, follow_redirects=True) as client:
            yield client

    # ========================================================================
    # Source flows
    # ========================================================================

    async def _run_energy_sieves(
        self,
        fetcher: RateLimitedFetcher,
        request: IngestionRequest,
        context: RunContext,
        config: SourceConfig,
        batch_size: int,
        state: _RunState
    ):
        params = request.source_params
        department = params.department_or_region
        log = context.logger

        extractor = AdemeDpeExtractor(
            fetcher,
            page_size=config.page_size,
            energy_classes=params.source_specific_filters.get("energy_classes"),
        )
        collector = extractor.collector(
            department,
            params.since_date,
            params.until_date,
            cancel_event=context.cancel_event,
            log=log
        )

        report_key = failed_report_key(f"energy-sieves/{department}/{params.since_date.isoformat()}.csv")
        sink = FailureSink(self.artifacts, report_key, log=log)
        transformer = get_transformer(config.kind)
        resolver = GeocodingResolver(AddressGeocoder(fetcher), log=log)
        base_context = TransformContext(department=department, reference_date=context.today)

        valid = []
        try:
            async for raw in collector.collect_all():
                state.stats = state.stats.incremented(total_fetched=1)
                result = await self._transform_one(raw, transformer, base_context, resolver, state, sink, context)
                if result is not None:
                    valid.append(result)
        except FatalSourceFailure:
            self._flush(sink, state)
            raise

        for warning in collector.warnings:
            state.warnings.append(warning.message)

        await self._persist(valid, config, batch_size, sink, context, state)
        self._flush(sink, state)

    async def _run_failing_companies(
        self,
        fetcher: RateLimitedFetcher,
        request: IngestionRequest,
        context: RunContext,
        config: SourceConfig,
        batch_size: int,
        state: _RunState
    ):
        params = request.source_params
        department = params.department_or_region
        log = context.logger

        payload = await BodaccExtractor(fetcher).download(department, params.since_date, params.until_date)
        log.info(f"Fetched BODACC export: {len(payload)} bytes")

        source_key = f"failing-companies/{department}/{params.since_date.isoformat()}.csv"
        source_locator = self.artifacts.put(source_key, payload)
        sink = FailureSink(self.artifacts, failed_report_key(source_key), log=log)

        try:
            pairs, unreadable = unique_sirens(read_bodacc_rows(self.artifacts.get(source_locator)), log)
        except (pd.errors.ParserError, UnicodeDecodeError) as e:
            raise FatalSourceFailure(
                "BODACC export is not a readable CSV",
                context={"locator": source_locator},
                original_exception=e
            )

        for row, reason in unreadable:
            state.stats = state.stats.incremented(invalid_rejected=1)
            sink.record(row, reason)

        directory = CompanyDirectory(fetcher)
        transformer = get_transformer(config.kind)
        resolver = GeocodingResolver(AddressGeocoder(fetcher), log=log)

        valid = []
        for index, (siren, row) in enumerate(pairs):
            if context.cancelled:
                log.warning(f"Cancelled after {index}/{len(pairs)} SIREN lookups")
                break

            log.debug(f"Processing SIREN {index + 1}/{len(pairs)}: {siren}")
            try:
                establishments = await directory.establishments(siren)
            except FetchError as e:
                state.stats = state.stats.incremented(error_count=1)
                sink.record(row, f"Company lookup failed: {e.message}")
                log.error(f"Error processing SIREN {siren}: {e.message}")
                continue

            if not establishments:
                log.warning(f"No establishments found for SIREN {siren}")
                state.stats = state.stats.incremented(error_count=1)
                sink.record(row, "No establishments found")
                continue

            notice_context = TransformContext(
                department=department,
                reference_date=context.today,
                opportunity_date=parse_date(row.get("dateparution")),
            )
            for etablissement in establishments:
                raw = {
                    **etablissement,
                    "dateparution": row.get("dateparution"),
                    "typeavis_lib": row.get("typeavis_lib"),
                    "denomination": row.get("denomination"),
                }
                state.stats = state.stats.incremented(total_fetched=1)
                result = await self._transform_one(raw, transformer, notice_context, resolver, state, sink, context)
                if result is not None:
                    valid.append(result)

        await self._persist(valid, config, batch_size, sink, context, state)
        self._flush(sink, state)

        if not context.cancelled:
            try:
                self.artifacts.delete(source_locator)
                log.info(f"Deleted source file: {source_locator}")
            except ArtifactStoreError as e:
                log.error(f"Could not delete source file {source_locator}: {e.message}")
                state.warnings.append(f"Source file not deleted: {source_locator}")

    async def _run_death_registry(
        self,
        fetcher: RateLimitedFetcher,
        request: IngestionRequest,
        context: RunContext,
        config: SourceConfig,
        batch_size: int,
        state: _RunState
    ):
        params = request.source_params
        filters = params.source_specific_filters
        log = context.logger

        known = await self.store.existing_natural_keys(config.kind)
        discoverer = LinkDiscoverer(
            fetcher,
            anchor_class=filters.get("anchor_class", self.anchor_class),
            log=log
        )
        files = await discoverer.discover_new_files(self.deaths_index_url, known, today=context.today)
        files = self._within_months(files, filters.get("since_month"), filters.get("until_month"))
        if filters.get("max_files"):
            files = files[:int(filters["max_files"])]

        extractor = InseeDeathFileExtractor(fetcher)
        transformer = get_transformer(config.kind)
        resolver = GeocodingResolver(CommuneCentreGeocoder(fetcher), log=log)
        contacts = MairieContactResolver(fetcher, log=log)
        options = death_registry_options(filters.get("min_age"))

        async def add_mairie_contact(raw: Dict[str, Any], tctx: TransformContext) -> TransformContext:
            contact = await contacts.lookup(raw["lieudeces"])
            return TransformContext(
                department=tctx.department,
                reference_date=tctx.reference_date,
                coordinates=tctx.coordinates,
                contact_data=contact,
            )

        base_context = TransformContext(department=None, reference_date=context.today)

        for file in files:
            if context.cancelled:
                log.warning(f"Cancelled before {file.file_name}")
                break

            log.info(f"Processing {file.file_name} ({file.year}-{file.month:02d})")
            try:
                archive = await extractor.download(file)
                member = extractor.read_member(archive)
            except SourceFileUnavailable as e:
                log.error(f"Skipping {file.file_name}: {e.message}")
                state.stats = state.stats.incremented(error_count=1)
                state.warnings.append(f"File skipped: {file.file_name}")
                continue

            raw_key = raw_artifact_key(file)
            raw_locator = self.artifacts.put(raw_key, member)
            sink = FailureSink(self.artifacts, failed_report_key(raw_key, folder="deaths/failed"), log=log)

            valid = []
            readable = True
            with extractor.open_member(archive) as stream:
                rows = self.parser.parse(stream, options)
                try:
                    for raw in rows:
                        if context.cancelled:
                            break
                        state.stats = state.stats.incremented(total_fetched=1)
                        result = await self._transform_one(
                            raw, transformer, base_context, resolver, state, sink, context,
                            enrich=add_mairie_contact
                        )
                        if result is not None:
                            valid.append(result)
                except pd.errors.ParserError as e:
                    # rows read before the fault are still loaded
                    readable = False
                    log.error(f"Stopped reading {file.file_name}: {e}")
                    state.stats = state.stats.incremented(error_count=1)
                    state.warnings.append(f"File partially read: {file.file_name}")

            state.stats = state.stats.incremented(filtered_out=rows.stats.discarded)
            log.info(
                f"Parsed {file.file_name}: {rows.stats.yielded} rows kept, "
                f"{rows.stats.discarded} discarded, header skipped={bool(rows.stats.header_skipped)}"
            )

            outcome = await self._persist(valid, config, batch_size, sink, context, state)
            self._flush(sink, state)

            if context.cancelled or outcome.failures or not readable:
                continue

            await self.store.record_natural_key(config.kind, file.file_name)
            processed_key = raw_key.replace("/raw/", "/processed/")
            self.artifacts.put(processed_key, self.artifacts.get(raw_locator))
            self.artifacts.delete(raw_locator)
            log.info(f"Archived {raw_key} to {processed_key}")

    # ========================================================================
    # Shared stages
    # ========================================================================

    async def _transform_one(
        self,
        raw: Dict[str, Any],
        transformer: RecordTransformer,
        tctx: TransformContext,
        resolver: Optional[GeocodingResolver],
        state: _RunState,
        sink: FailureSink,
        context: RunContext,
        enrich: Optional[ContextEnricher] = None
    ) -> Optional[CanonicalOpportunity]:
        """Transform one raw record, geocoding once if coordinates are missing."""
        result = transformer.transform(raw, tctx)

        if isinstance(result, Rejected) and result.code == RejectCode.MISSING_COORDINATES and resolver is not None:
            query = transformer.geocoding_query(raw)
            try:
                coordinates, state.stats = await resolver.resolve(query, state.stats)
            except FetchError as e:
                state.stats = state.stats.incremented(invalid_rejected=1)
                sink.record(raw, f"Geocoding lookup failed: {e.message}")
                context.logger.warning(f"Geocoding lookup failed for {query!r}: {e.message}")
                return None

            if coordinates is None:
                miss = GeocodingMiss(
                    f"Geocoding failed for {transformer.natural_key(raw) or query}",
                    context={"query": query}
                )
                result = Rejected(miss.reason, RejectCode.MISSING_COORDINATES)
            else:
                retry_context = tctx.with_coordinates(coordinates)
                if enrich is not None:
                    retry_context = await enrich(raw, retry_context)
                result = transformer.transform(raw, retry_context)

        if isinstance(result, Rejected):
            state.stats = state.stats.incremented(invalid_rejected=1)
            sink.record(raw, result.reason)
            context.logger.debug(f"Rejected record: {result.reason}")
            return None

        state.stats = state.stats.incremented(valid_transformed=1)
        return result

    async def _persist(
        self,
        records: List[CanonicalOpportunity],
        config: SourceConfig,
        batch_size: int,
        sink: FailureSink,
        context: RunContext,
        state: _RunState
    ):
        upserter = BatchUpserter(
            self.store,
            config.kind,
            config.conflict_policy,
            batch_size=batch_size,
            failure_sink=sink,
            cancel_event=context.cancel_event,
            log=context.logger
        )
        outcome = await upserter.upsert(records)
        state.stats = state.stats + outcome.stats
        for failure in outcome.failures:
            state.warnings.append(failure.message)
        return outcome

    def _flush(self, sink: FailureSink, state: _RunState):
        locator = sink.flush()
        if locator is not None:
            state.locators.append(locator)

    @staticmethod
    def _within_months(
        files: Iterable[FileMetadata],
        since_month: Optional[str],
        until_month: Optional[str]
    ) -> List[FileMetadata]:
        """
        Restrict monthly files to an explicit ``YYYY-MM`` window.

        Without one, every file inside the retention window that is not in
        the ledger is kept: month M is published during month M+1, so the
        request's since_date says nothing about which files are due.
        """
        since_index = _month_index(since_month) if since_month else None
        until_index = _month_index(until_month) if until_month else None
        return [
            f for f in files
            if (since_index is None or f.month_index >= since_index)
            and (until_index is None or f.month_index <= until_index)
        ]
