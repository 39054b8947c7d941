"""
Town hall (mairie) contact lookup on the service-public directory.
"""

import json
import logging
from typing import Dict, Any, Optional, Tuple

from core.exceptions import FetchError
from ingestion.extractors.fetcher import RateLimitedFetcher, json_object
from ingestion.sources import ANNUAIRE_URL

logger = logging.getLogger(__name__)


def _first_value(value: Any) -> Optional[str]:
    """Directory fields are either plain strings or JSON lists of {"valeur": ...}."""
    if value is None:
        return None
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped.startswith("["):
            return stripped or None
        try:
            value = json.loads(stripped)
        except ValueError:
            return stripped
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict) and item.get("valeur"):
                return str(item["valeur"]).strip()
            if isinstance(item, str) and item.strip():
                return item.strip()
        return None
    return str(value)


class MairieContactResolver:
    """
    Contact data of the town hall of a commune.

    The data is optional: a missing entry or a failed lookup gives None.
    The result for the previous commune code is reused.
    """

    def __init__(
        self,
        fetcher: RateLimitedFetcher,
        url: str = ANNUAIRE_URL,
        log: Optional[logging.LoggerAdapter] = None
    ):
        self.fetcher = fetcher
        self.url = url
        self.log = log or logger
        self._last: Optional[Tuple[str, Optional[Dict[str, Any]]]] = None

    async def lookup(self, insee_code: str) -> Optional[Dict[str, Any]]:
        if self._last is not None and self._last[0] == insee_code:
            return self._last[1]

        params = {
            "where": f"code_insee_commune='{insee_code}' AND pivot LIKE 'mairie%'",
            "limit": 1,
        }
        try:
            response = await self.fetcher.fetch(self.url, params=params)
            payload = {} if response.status_code == 404 else json_object(response, self.url)
        except FetchError as e:
            self.log.warning(f"Mairie lookup failed for {insee_code}: {e.message}")
            return None

        contact = None
        results = payload.get("results") or []
        if results:
            mairie = results[0]
            contact = {
                "name": mairie.get("nom") or "Mairie",
                "telephone": _first_value(mairie.get("telephone")) or _first_value(mairie.get("telephone_accueil")),
                "email": _first_value(mairie.get("email")) or _first_value(mairie.get("adresse_courriel")),
            }
        else:
            self.log.debug(f"No mairie found for commune {insee_code}")

        self._last = (insee_code, contact)
        return contact
