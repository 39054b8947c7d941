"""
Geocoding fallbacks for records without coordinates.

Lookups:
- AddressGeocoder: free-text address on api-adresse.data.gouv.fr
- CommuneCentreGeocoder: INSEE commune code on geo.api.gouv.fr

A lookup returns None for "no match". Fetch errors propagate so the
caller can record the affected row as failed.
"""

import logging
from typing import Any, Optional, Protocol, Tuple

from pydantic import ValidationError

from core.config import settings
from ingestion.extractors.fetcher import RateLimitedFetcher, json_object
from ingestion.sources import ADDRESS_GEOCODING_URL, GEO_COMMUNES_URL
from ingestion.stats import ProcessingStats
from schemas.opportunity import Coordinates

logger = logging.getLogger(__name__)


class CoordinateLookup(Protocol):
    async def lookup(self, query: str) -> Optional[Coordinates]:
        ...


def _coordinates(longitude: Any, latitude: Any) -> Optional[Coordinates]:
    """GeoJSON order is [lon, lat]."""
    try:
        return Coordinates(latitude=latitude, longitude=longitude)
    except (ValidationError, TypeError, ValueError):
        return None


class AddressGeocoder:
    """Best match from the national address base, if its score is high enough."""

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        min_score: Optional[float] = None,
        url: str = ADDRESS_GEOCODING_URL
    ):
        self.fetcher = fetcher
        self.min_score = settings.GEOCODING_MIN_SCORE if min_score is None else min_score
        self.url = url

    async def lookup(self, query: str) -> Optional[Coordinates]:
        response = await self.fetcher.fetch(self.url, params={"q": query, "limit": 1})
        if response.status_code == 404:
            return None

        features = json_object(response, self.url).get("features") or []
        if not features:
            return None

        best = features[0]
        score = (best.get("properties") or {}).get("score") or 0
        if score < self.min_score:
            logger.debug(f"Geocoding score {score} below {self.min_score} for {query!r}")
            return None

        coordinates = (best.get("geometry") or {}).get("coordinates") or []
        if len(coordinates) != 2:
            return None
        return _coordinates(coordinates[0], coordinates[1])


class CommuneCentreGeocoder:
    """
    Centre of a commune by INSEE code.

    Consecutive death rows usually share a commune, so the result for the
    previous code is kept and reused.
    """

    def __init__(self, fetcher: RateLimitedFetcher, url: str = GEO_COMMUNES_URL):
        self.fetcher = fetcher
        self.url = url
        self._last: Optional[Tuple[str, Optional[Coordinates]]] = None

    async def lookup(self, query: str) -> Optional[Coordinates]:
        if self._last is not None and self._last[0] == query:
            return self._last[1]

        response = await self.fetcher.fetch(f"{self.url}/{query}", params={"fields": "centre"})
        result = None
        if response.status_code != 404:
            centre = json_object(response, f"{self.url}/{query}").get("centre") or {}
            coordinates = centre.get("coordinates") or []
            if len(coordinates) == 2:
                result = _coordinates(coordinates[0], coordinates[1])

        self._last = (query, result)
        return result


class GeocodingResolver:
    """
    Fills missing coordinates through a lookup and counts attempts.

    Every call increments ``geocoding_attempts``; a match also increments
    ``geocoding_successes``. Stats are returned, never mutated.
    """

    def __init__(self, lookup: CoordinateLookup, log: Optional[logging.LoggerAdapter] = None):
        self.lookup = lookup
        self.log = log or logger

    async def resolve(
        self,
        query: Optional[str],
        stats: ProcessingStats
    ) -> Tuple[Optional[Coordinates], ProcessingStats]:
        stats = stats.incremented(geocoding_attempts=1)
        if not query:
            return None, stats

        coordinates = await self.lookup.lookup(query)
        if coordinates is None:
            self.log.warning(f"No geocoding match for {query!r}")
            return None, stats

        return coordinates, stats.incremented(geocoding_successes=1)
