"""
Discovery of downloadable monthly files on an HTML index page.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import List, Optional, Iterable
from urllib.parse import urljoin, urlparse, unquote

from bs4 import BeautifulSoup

from core.config import settings
from core.exceptions import FatalSourceFailure, FetchError
from ingestion.extractors.fetcher import RateLimitedFetcher

logger = logging.getLogger(__name__)

# deces-2024-m01.zip, Deces_2024_M01.zip, deces-2024-01.zip
YEAR_MONTH_PATTERN = re.compile(r"(\d{4})[-_]m?(\d{2})", re.IGNORECASE)

DEFAULT_ANCHOR_CLASS = "fr-link--download"


@dataclass(frozen=True)
class FileMetadata:
    file_name: str
    url: str
    year: int
    month: int

    @property
    def identifier(self) -> str:
        return self.file_name

    @property
    def month_index(self) -> int:
        return self.year * 12 + (self.month - 1)


class LinkDiscoverer:
    """
    Finds files not yet ingested on an index page.

    Candidate links are anchors carrying ``anchor_class`` whose href ends
    with ``extension``. Files older than ``retention_months`` and files
    whose name is already known are dropped; the rest are returned
    oldest-first so backfills run chronologically.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        anchor_class: str = DEFAULT_ANCHOR_CLASS,
        extension: str = ".zip",
        retention_months: Optional[int] = None,
        log: Optional[logging.LoggerAdapter] = None
    ):
        self.fetcher = fetcher
        self.anchor_class = anchor_class
        self.extension = extension.lower()
        self.retention_months = (
            settings.LINK_RETENTION_MONTHS if retention_months is None else retention_months
        )
        self.log = log or logger

    async def discover_new_files(
        self,
        index_url: str,
        known_identifiers: Iterable[str],
        today: Optional[date] = None
    ) -> List[FileMetadata]:
        try:
            response = await self.fetcher.fetch(index_url)
        except FetchError as e:
            raise FatalSourceFailure(
                f"Could not fetch index page {index_url}",
                context={"url": index_url},
                original_exception=e
            )

        if response.status_code == 404:
            self.log.warning(f"Index page {index_url} not found")
            return []

        return self.select_new_files(response.text, index_url, known_identifiers, today)

    def select_new_files(
        self,
        html: str,
        base_url: str,
        known_identifiers: Iterable[str],
        today: Optional[date] = None
    ) -> List[FileMetadata]:
        """Apply link extraction, recency and novelty filters to a page body."""
        today = today or date.today()
        current_index = today.year * 12 + (today.month - 1)
        known = frozenset(known_identifiers)

        selected = {}
        too_old = 0
        already_known = 0

        for candidate in self.extract_links(html, base_url):
            if current_index - candidate.month_index > self.retention_months:
                too_old += 1
                continue
            if candidate.file_name in known:
                already_known += 1
                continue
            selected.setdefault(candidate.file_name, candidate)

        files = sorted(selected.values(), key=lambda f: (f.month_index, f.file_name))
        self.log.info(
            f"Discovered {len(files)} new files "
            f"({too_old} outside retention, {already_known} already ingested)"
        )
        return files

    def extract_links(self, html: str, base_url: str) -> List[FileMetadata]:
        soup = BeautifulSoup(html, "html.parser")
        links = []

        for anchor in soup.find_all("a", class_=self.anchor_class, href=True):
            url = urljoin(base_url, anchor["href"].strip())
            file_name = unquote(urlparse(url).path.rsplit("/", 1)[-1])
            if not file_name.lower().endswith(self.extension):
                continue

            match = YEAR_MONTH_PATTERN.search(file_name)
            if not match or not 1 <= int(match.group(2)) <= 12:
                self.log.warning(f"Skipping link without year/month token: {file_name}")
                continue

            links.append(FileMetadata(
                file_name=file_name,
                url=url,
                year=int(match.group(1)),
                month=int(match.group(2))
            ))

        return links
