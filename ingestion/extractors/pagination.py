"""
Page-by-page collection of upstream records.
"""

import logging
from typing import Dict, Any, List, Optional, Callable, AsyncIterator

from core.exceptions import (
    FetchError,
    UpstreamError,
    PaginationLimitReached,
    FatalSourceFailure,
)
from ingestion.extractors.fetcher import RateLimitedFetcher

logger = logging.getLogger(__name__)

ParamsBuilder = Callable[[int, int], Dict[str, Any]]


def results_key(payload: Any) -> List[Dict[str, Any]]:
    """Default record extraction: ``{"results": [...]}`` or a bare list."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        return payload.get("results") or []
    return []


class PageCollector:
    """
    Drives repeated fetches with an increasing page number.

    Collection stops when a page is shorter than ``page_size``, when the
    upstream answers 404, or when the run is cancelled. An HTTP 400 after
    at least one record has been collected is treated as the upstream
    pagination ceiling: the records so far are kept and a
    ``PaginationLimitReached`` warning is recorded. Any other failure is
    fatal, since a partial result of unknown completeness cannot be
    accepted silently.

    The sequence is lazy and can only be consumed once.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        url: str,
        build_params: ParamsBuilder,
        page_size: int = 1000,
        extract_records: Callable[[Any], List[Dict[str, Any]]] = results_key,
        first_page: int = 1,
        cancel_event=None,
        log: Optional[logging.LoggerAdapter] = None
    ):
        self.fetcher = fetcher
        self.url = url
        self.build_params = build_params
        self.page_size = page_size
        self.extract_records = extract_records
        self.first_page = first_page
        self.cancel_event = cancel_event
        self.log = log or logger

        self.pages_fetched = 0
        self.records_collected = 0
        self.warnings: List[PaginationLimitReached] = []
        self._consumed = False

    @property
    def limit_reached(self) -> bool:
        return bool(self.warnings)

    async def collect_all(self) -> AsyncIterator[Dict[str, Any]]:
        if self._consumed:
            raise RuntimeError("PageCollector sequences cannot be restarted")
        self._consumed = True

        page = self.first_page
        while True:
            if self.cancel_event is not None and self.cancel_event.is_set():
                self.log.info(f"Cancelled before page {page}")
                return

            try:
                response = await self.fetcher.fetch(self.url, params=self.build_params(page, self.page_size))
            except UpstreamError as e:
                if e.status_code == 400 and self.records_collected > 0:
                    warning = PaginationLimitReached(
                        f"Upstream pagination ceiling reached at page {page}",
                        context={
                            "url": self.url,
                            "page": page,
                            "records_collected": self.records_collected
                        },
                        original_exception=e
                    )
                    self.warnings.append(warning)
                    self.log.warning(
                        f"Pagination limit reached at page {page}; "
                        f"keeping {self.records_collected} records"
                    )
                    return
                raise self._fatal(page, e)
            except FetchError as e:
                raise self._fatal(page, e)

            self.pages_fetched += 1

            if response.status_code == 404:
                self.log.info(f"Page {page} returned 404, no more results")
                return

            try:
                records = self.extract_records(response.json())
            except ValueError as e:
                raise self._fatal(page, e)

            self.log.debug(f"Fetched {len(records)} records from page {page}")
            self.records_collected += len(records)
            for record in records:
                yield record

            if len(records) < self.page_size:
                self.log.info(
                    f"Collected {self.records_collected} records "
                    f"over {self.pages_fetched} pages"
                )
                return

            page += 1

    def _fatal(self, page: int, error: Exception) -> FatalSourceFailure:
        where = "first page" if page == self.first_page else f"page {page}"
        return FatalSourceFailure(
            f"Fetch failed on {where} of {self.url}",
            context={
                "url": self.url,
                "page": page,
                "records_collected": self.records_collected
            },
            original_exception=error
        )
