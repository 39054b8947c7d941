"""
Unit tests for source extractors
"""

import json
from datetime import date

import httpx
import pytest

from core.exceptions import FatalSourceFailure, NetworkError, UpstreamError, SourceFileUnavailable
from ingestion.extractors.ademe_extractor import AdemeDpeExtractor, build_dpe_where, DPE_FIELDS
from ingestion.extractors.bodacc_extractor import (
    BodaccExtractor,
    CompanyDirectory,
    build_bodacc_params,
    extract_siren,
    read_bodacc_rows,
    unique_sirens,
)
from ingestion.extractors.insee_extractor import InseeDeathFileExtractor, raw_artifact_key
from ingestion.extractors.link_discovery import FileMetadata
from tests.conftest import bodacc_csv, personnes, zip_bytes, insee_csv


class StubFetcher:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    async def fetch(self, url, params=None, headers=None):
        self.calls.append((url, params))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class TestAdemeDpeExtractor:
    """Test DPE query construction"""

    def test_where_clause(self):
        where = build_dpe_where("75", ["F", "G"], date(2024, 1, 1))

        assert where == (
            'code_departement_ban="75" AND (etiquette_dpe="F" OR etiquette_dpe="G") '
            'AND date_etablissement_dpe>="2024-01-01"'
        )

    def test_where_clause_with_upper_bound_and_padding(self):
        where = build_dpe_where("5", ["G"], date(2024, 1, 1), date(2024, 3, 31))

        assert where.startswith('code_departement_ban="05"')
        assert where.endswith('date_etablissement_dpe<="2024-03-31"')

    @pytest.mark.asyncio
    async def test_collector_sends_paged_query(self):
        fetcher = StubFetcher([httpx.Response(200, json={"results": [{"numero_dpe": "X"}]})])
        extractor = AdemeDpeExtractor(fetcher, page_size=50, energy_classes=["G"])

        collector = extractor.collector("75", date(2024, 1, 1))
        records = [r async for r in collector.collect_all()]

        assert records == [{"numero_dpe": "X"}]
        url, params = fetcher.calls[0]
        assert params["page"] == 1
        assert params["size"] == 50
        assert params["select"] == ",".join(DPE_FIELDS)
        assert 'etiquette_dpe="G"' in params["where"]


class TestExtractSiren:
    """Test SIREN extraction from listepersonnes"""

    def test_json_array(self):
        assert extract_siren(personnes("123456789")) == "123456789"

    def test_json_object_with_spaces(self):
        value = json.dumps({"personne": {"numeroImmatriculation": {"numeroIdentification": "123 456 789"}}})
        assert extract_siren(value) == "123456789"

    def test_skips_entries_without_valid_siren(self):
        value = json.dumps([
            {"personne": {"numeroImmatriculation": {"numeroIdentification": "1234"}}},
            {"personne": {}},
            {"personne": {"numeroImmatriculation": {"numeroIdentification": "987654321"}}},
        ])
        assert extract_siren(value) == "987654321"

    def test_no_valid_siren(self):
        assert extract_siren(personnes("12345678")) is None

    def test_empty(self):
        assert extract_siren(None) is None
        assert extract_siren("") is None

    def test_invalid_json_falls_back_to_digits(self):
        assert extract_siren("RCS Paris 552 100 554 / 552100554") == "552100554"

    def test_invalid_json_without_digits_raises(self):
        with pytest.raises(ValueError):
            extract_siren("{not json")


class TestBodaccRows:
    def test_params(self):
        params = build_bodacc_params("75", date(2024, 1, 1))

        assert params["limit"] == -1
        assert params["delimiter"] == ";"
        assert 'familleavis:"collective"' in params["where"]
        assert "numerodepartement:75" in params["where"]
        assert 'dateparution>="2024-01-01"' in params["where"]

    def test_read_rows_keeps_strings(self):
        payload = bodacc_csv([
            {"numerodepartement": "01", "dateparution": "2024-03-04", "listepersonnes": personnes("012345678")},
        ])

        rows = list(read_bodacc_rows(payload, chunksize=1))

        assert rows[0]["numerodepartement"] == "01"
        assert rows[0]["denomination"] == ""
        assert extract_siren(rows[0]["listepersonnes"]) == "012345678"

    def test_read_rows_in_chunks(self):
        payload = bodacc_csv([{"denomination": f"Company {i}"} for i in range(5)])

        rows = list(read_bodacc_rows(payload, chunksize=2))

        assert [r["denomination"] for r in rows] == [f"Company {i}" for i in range(5)]

    def test_empty_payload(self):
        assert list(read_bodacc_rows(b"")) == []

    def test_unique_sirens_first_row_wins(self):
        rows = [
            {"listepersonnes": personnes("111111111"), "denomination": "first"},
            {"listepersonnes": personnes("111111111"), "denomination": "second"},
            {"listepersonnes": "", "denomination": "empty"},
            {"listepersonnes": "{broken", "denomination": "broken"},
            {"listepersonnes": personnes("222222222"), "denomination": "other"},
        ]

        pairs, unreadable = unique_sirens(iter(rows))

        assert [(siren, row["denomination"]) for siren, row in pairs] == [
            ("111111111", "first"),
            ("222222222", "other"),
        ]
        assert [row["denomination"] for row, _ in unreadable] == ["empty", "broken"]


class TestBodaccExtractor:
    @pytest.mark.asyncio
    async def test_download(self):
        fetcher = StubFetcher([httpx.Response(200, content=b"a;b\n1;2\n")])

        payload = await BodaccExtractor(fetcher).download("75", date(2024, 1, 1))

        assert payload == b"a;b\n1;2\n"

    @pytest.mark.asyncio
    async def test_404_is_empty_export(self):
        fetcher = StubFetcher([httpx.Response(404)])

        assert await BodaccExtractor(fetcher).download("75", date(2024, 1, 1)) == b""

    @pytest.mark.asyncio
    async def test_download_failure_is_fatal(self):
        fetcher = StubFetcher([UpstreamError("Server error 503", status_code=503)])

        with pytest.raises(FatalSourceFailure):
            await BodaccExtractor(fetcher).download("75", date(2024, 1, 1))


class TestCompanyDirectory:
    """Test establishment lookup per SIREN"""

    @pytest.mark.asyncio
    async def test_head_office_and_matching_establishments(self):
        company = {
            "nom_complet": "ACME",
            "siege": {"siret": "12345678900012", "adresse": "1 rue A"},
            "matching_etablissements": [
                {"siret": "12345678900012", "adresse": "1 rue A"},
                {"siret": "12345678900020", "adresse": "2 rue B"},
            ],
        }
        fetcher = StubFetcher([httpx.Response(200, json={"results": [company]})])

        establishments = await CompanyDirectory(fetcher).establishments("123456789")

        assert [e["siret"] for e in establishments] == ["12345678900012", "12345678900020"]
        assert all(e["company_name"] == "ACME" for e in establishments)
        assert all(e["siren"] == "123456789" for e in establishments)
        assert fetcher.calls[0][1] == {"q": "123456789"}

    @pytest.mark.asyncio
    async def test_falls_back_to_legal_name(self):
        company = {"nom_raison_sociale": "ACME SAS", "siege": {"siret": "12345678900012"}}
        fetcher = StubFetcher([httpx.Response(200, json={"results": [company]})])

        establishments = await CompanyDirectory(fetcher).establishments("123456789")

        assert establishments[0]["company_name"] == "ACME SAS"

    @pytest.mark.asyncio
    async def test_not_found(self):
        fetcher = StubFetcher([httpx.Response(404), httpx.Response(200, json={"results": []})])
        directory = CompanyDirectory(fetcher)

        assert await directory.establishments("123456789") == []
        assert await directory.establishments("123456789") == []

    @pytest.mark.asyncio
    async def test_invalid_siren_not_queried(self):
        fetcher = StubFetcher([])

        assert await CompanyDirectory(fetcher).establishments("12AB") == []
        assert fetcher.calls == []

    @pytest.mark.asyncio
    async def test_fetch_errors_propagate(self):
        fetcher = StubFetcher([NetworkError("refused")])

        with pytest.raises(NetworkError):
            await CompanyDirectory(fetcher).establishments("123456789")

    @pytest.mark.asyncio
    async def test_maintenance_page_is_upstream_error(self):
        fetcher = StubFetcher([httpx.Response(200, text="<html>Service indisponible</html>")])

        with pytest.raises(UpstreamError):
            await CompanyDirectory(fetcher).establishments("123456789")


class TestInseeDeathFileExtractor:
    """Test archive download and member access"""

    FILE = FileMetadata("deces-2024-m01.zip", "https://www.insee.fr/f/deces-2024-m01.zip", 2024, 1)

    def test_raw_artifact_key(self):
        assert raw_artifact_key(self.FILE) == "deaths/raw/deces-2024-01.csv"

    def test_open_member_streams_csv(self):
        payload = insee_csv([["DUPONT*JEAN/", "1", "19400101", "75056", "PARIS", "", "20240110", "75056", "1"]])
        archive = zip_bytes("Deces_2024_M01.csv", payload)

        with InseeDeathFileExtractor.open_member(archive) as stream:
            assert stream.read() == payload

    def test_txt_member_accepted(self):
        archive = zip_bytes("deces-2024-m01.txt", b"x")

        assert InseeDeathFileExtractor(StubFetcher([])).read_member(archive) == b"x"

    def test_not_a_zip(self):
        with pytest.raises(SourceFileUnavailable):
            with InseeDeathFileExtractor.open_member(b"not a zip"):
                pass

    def test_no_data_member(self):
        archive = zip_bytes("readme.md", b"hello")

        with pytest.raises(SourceFileUnavailable):
            with InseeDeathFileExtractor.open_member(archive):
                pass

    @pytest.mark.asyncio
    async def test_download(self):
        fetcher = StubFetcher([httpx.Response(200, content=b"PK...")])

        assert await InseeDeathFileExtractor(fetcher).download(self.FILE) == b"PK..."

    @pytest.mark.asyncio
    async def test_missing_archive_is_unavailable(self):
        fetcher = StubFetcher([httpx.Response(404)])

        with pytest.raises(SourceFileUnavailable):
            await InseeDeathFileExtractor(fetcher).download(self.FILE)

    @pytest.mark.asyncio
    async def test_failed_download_is_unavailable(self):
        fetcher = StubFetcher([UpstreamError("Service Unavailable", status_code=503)])

        with pytest.raises(SourceFileUnavailable) as exc_info:
            await InseeDeathFileExtractor(fetcher).download(self.FILE)

        assert isinstance(exc_info.value.__cause__, UpstreamError)
