"""
Unit tests for monthly file discovery on an HTML index page
"""

import logging
from datetime import date

import httpx
import pytest

from core.exceptions import FatalSourceFailure, NetworkError
from ingestion.extractors.link_discovery import LinkDiscoverer, FileMetadata

INDEX_URL = "https://www.insee.fr/fr/information/4190491"

INDEX_HTML = """
<html><body>
  <ul>
    <li><a class="fr-link fr-link--download" href="/fr/statistiques/fichier/4190491/deces-2024-m03.zip">Mars 2024</a></li>
    <li><a class="fr-link fr-link--download" href="/fr/statistiques/fichier/4190491/deces-2024-m01.zip">Janvier 2024</a></li>
    <li><a class="fr-link fr-link--download" href="/fr/statistiques/fichier/4190491/deces-2023-m06.zip">Juin 2023</a></li>
    <li><a class="fr-link fr-link--download" href="/fr/statistiques/fichier/4190491/deces-2023-m05.zip">Mai 2023</a></li>
    <li><a class="fr-link fr-link--download" href="/fr/statistiques/fichier/4190491/deces-2024-m03.zip">Mars 2024 (copie)</a></li>
    <li><a class="fr-link fr-link--download" href="/fr/statistiques/fichier/4190491/notice.zip">Notice</a></li>
    <li><a class="fr-link fr-link--download" href="/fr/statistiques/fichier/4190491/deces-2024-m02.pdf">PDF</a></li>
    <li><a class="fr-link" href="/fr/statistiques/fichier/4190491/deces-2024-m02.zip">Sans classe</a></li>
  </ul>
</body></html>
"""


class StubFetcher:
    def __init__(self, outcome):
        self.outcome = outcome
        self.urls = []

    async def fetch(self, url, params=None, headers=None):
        self.urls.append(url)
        if isinstance(self.outcome, Exception):
            raise self.outcome
        return self.outcome


def discoverer(fetcher=None, **kwargs):
    return LinkDiscoverer(fetcher or StubFetcher(None), retention_months=12, **kwargs)


class TestLinkDiscoverer:
    """Test link extraction, recency and novelty filters"""

    def test_extracts_absolute_links_with_year_and_month(self):
        links = discoverer().extract_links(INDEX_HTML, INDEX_URL)

        names = [link.file_name for link in links]
        assert "deces-2024-m01.zip" in names
        assert all(link.url.startswith("https://www.insee.fr/fr/statistiques/fichier/4190491/") for link in links)
        january = next(link for link in links if link.file_name == "deces-2024-m01.zip")
        assert (january.year, january.month) == (2024, 1)

    def test_ignores_other_extensions_and_anchors_without_class(self):
        names = [link.file_name for link in discoverer().extract_links(INDEX_HTML, INDEX_URL)]

        assert "deces-2024-m02.pdf" not in names
        assert "deces-2024-m02.zip" not in names

    def test_link_without_year_month_is_warned_and_dropped(self, caplog):
        caplog.set_level(logging.WARNING)

        names = [link.file_name for link in discoverer().extract_links(INDEX_HTML, INDEX_URL)]

        assert "notice.zip" not in names
        assert "notice.zip" in caplog.text

    def test_selects_new_files_oldest_first(self):
        files = discoverer().select_new_files(
            INDEX_HTML,
            INDEX_URL,
            known_identifiers={"deces-2024-m01.zip"},
            today=date(2024, 6, 15)
        )

        # 2023-05 is 13 months old, 2024-01 already ingested, 2024-03 listed twice
        assert [f.file_name for f in files] == ["deces-2023-m06.zip", "deces-2024-m03.zip"]

    def test_nothing_new(self):
        files = discoverer().select_new_files(
            INDEX_HTML,
            INDEX_URL,
            known_identifiers={"deces-2024-m01.zip", "deces-2024-m03.zip", "deces-2023-m06.zip"},
            today=date(2024, 6, 15)
        )

        assert files == []

    def test_custom_anchor_class(self):
        html = '<a class="download" href="/files/Deces_2024_M04.zip">x</a>'
        files = discoverer(anchor_class="download").select_new_files(
            html, "https://example.org/index", set(), today=date(2024, 5, 1)
        )

        assert files == [
            FileMetadata("Deces_2024_M04.zip", "https://example.org/files/Deces_2024_M04.zip", 2024, 4)
        ]

    def test_invalid_month_token_is_dropped(self):
        html = '<a class="fr-link--download" href="/f/deces-2024-m13.zip">x</a>'
        files = discoverer().select_new_files(html, INDEX_URL, set(), today=date(2024, 5, 1))

        assert files == []

    @pytest.mark.asyncio
    async def test_discover_fetches_index_page(self):
        fetcher = StubFetcher(httpx.Response(200, text=INDEX_HTML))

        files = await discoverer(fetcher).discover_new_files(INDEX_URL, set(), today=date(2024, 6, 15))

        assert fetcher.urls == [INDEX_URL]
        assert files[0].file_name == "deces-2023-m06.zip"
        assert files[-1].file_name == "deces-2024-m03.zip"

    @pytest.mark.asyncio
    async def test_missing_index_page_yields_nothing(self):
        fetcher = StubFetcher(httpx.Response(404))

        assert await discoverer(fetcher).discover_new_files(INDEX_URL, set()) == []

    @pytest.mark.asyncio
    async def test_index_fetch_failure_is_fatal(self):
        fetcher = StubFetcher(NetworkError("refused"))

        with pytest.raises(FatalSourceFailure):
            await discoverer(fetcher).discover_new_files(INDEX_URL, set())


class TestFileMetadata:
    def test_month_index_orders_chronologically(self):
        december = FileMetadata("a.zip", "u", 2023, 12)
        january = FileMetadata("b.zip", "u", 2024, 1)

        assert january.month_index - december.month_index == 1
        assert december.identifier == "a.zip"
