"""
Failure scenarios across a whole run: fatal upstream errors, failing
batches, an unavailable report store and cancellation.
"""

from datetime import date

import httpx
import pytest

from core.exceptions import FatalSourceFailure, SourceConfigurationError
from ingestion.context import RunContext
from ingestion.extractors.fetcher import PacerRegistry
from ingestion.runner import IngestionRunner
from models.base import SourceKind
from schemas.request import IngestionRequest
from tests.conftest import mock_client
from tests.fakes import FakeClock, InMemoryOpportunityStore, InMemoryArtifactStore
from tests.integration.test_ingestion_runs import dpe, energy_handler, energy_request

TODAY = date(2024, 6, 1)


def context():
    return RunContext.create("energy_sieves", today=TODAY)


class TestFatalFailures:
    """Test failures that abort the run"""

    @pytest.mark.asyncio
    async def test_first_page_server_error(self, store, artifacts):
        clock = FakeClock()
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        async with mock_client(handler) as client:
            runner = IngestionRunner(store, artifacts, client=client, pacers=PacerRegistry(), sleep=clock.sleep)
            with pytest.raises(FatalSourceFailure) as exc_info:
                await runner.run(energy_request(), context())

        assert "first page" in exc_info.value.message
        assert len(calls) == 3
        assert clock.sleeps == [2.0, 4.0]
        assert store.calls == 0

    @pytest.mark.asyncio
    async def test_first_page_rejected(self, store, artifacts):
        async with mock_client(energy_handler([400])) as client:
            runner = IngestionRunner(store, artifacts, client=client, pacers=PacerRegistry())
            with pytest.raises(FatalSourceFailure):
                await runner.run(energy_request(), context())

    @pytest.mark.asyncio
    async def test_department_required(self, store, artifacts):
        request = IngestionRequest(source=SourceKind.ENERGY_SIEVES, source_params={"since_date": "2024-01-01"})

        with pytest.raises(SourceConfigurationError):
            await IngestionRunner(store, artifacts, client=None, pacers=PacerRegistry()).run(request)


class TestPartialFailures:
    """Test failures that degrade the run without stopping it"""

    @pytest.mark.asyncio
    async def test_failed_batch_is_isolated(self, artifacts):
        store = InMemoryOpportunityStore(fail_on_calls={0})
        request = energy_request()
        request = request.model_copy(update={"batch_size": 1})

        async with mock_client(energy_handler([[dpe(1), dpe(2)]])) as client:
            runner = IngestionRunner(store, artifacts, client=client, pacers=PacerRegistry())
            summary = await runner.run(request, context())

        assert summary.stats.inserted_count == 1
        assert summary.stats.error_count == 1
        assert summary.status == "partial_success"
        assert summary.warnings == ("Batch 1/2 failed",)
        assert list(store.rows) == [(SourceKind.ENERGY_SIEVES, "2475E00000002")]
        report = artifacts.blobs["energy-sieves/75/2024-01-01_failed.csv"].decode("utf-8")
        assert "Persistence failed" in report
        assert "2475E00000001" in report

    @pytest.mark.asyncio
    async def test_unwritable_failure_report_does_not_fail_run(self, store):
        artifacts = InMemoryArtifactStore(fail_put_suffix="_failed.csv")

        async with mock_client(energy_handler([[dpe(1), dpe(2, code_postal_ban=None)]])) as client:
            runner = IngestionRunner(store, artifacts, client=client, pacers=PacerRegistry())
            summary = await runner.run(energy_request(), context())

        assert summary.stats.inserted_count == 1
        assert summary.stats.invalid_rejected == 1
        assert summary.failure_artifact_locator is None
        assert summary.status == "partial_success"

    @pytest.mark.asyncio
    async def test_geocoding_miss_is_a_rejection(self, store, artifacts):
        def handler(request):
            if request.url.host == "api-adresse.data.gouv.fr":
                return httpx.Response(200, json={"features": []})
            return httpx.Response(200, json={"results": [dpe(1, _geopoint="")]})

        async with mock_client(handler) as client:
            runner = IngestionRunner(store, artifacts, client=client, pacers=PacerRegistry())
            summary = await runner.run(energy_request(), context())

        assert summary.stats.geocoding_attempts == 1
        assert summary.stats.geocoding_successes == 0
        assert summary.stats.invalid_rejected == 1
        report = artifacts.blobs["energy-sieves/75/2024-01-01_failed.csv"].decode("utf-8")
        assert "Geocoding failed for 2475E00000001" in report


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, store, artifacts):
        run_context = context()
        run_context.cancel()

        async with mock_client(energy_handler([[dpe(1)]])) as client:
            runner = IngestionRunner(store, artifacts, client=client, pacers=PacerRegistry())
            summary = await runner.run(energy_request(), run_context)

        assert summary.status == "cancelled"
        assert summary.cancelled is True
        assert summary.stats.total_fetched == 0
        assert store.calls == 0
