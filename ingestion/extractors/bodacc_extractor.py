"""
Failing companies extractor.

Two upstreams are involved:
- BODACC "annonces commerciales" CSV export, filtered on collective
  proceedings (liquidation, receivership) for one department
- recherche-entreprises directory, queried per SIREN for the head office
  and matching establishments
"""

import io
import json
import logging
import re
from datetime import date
from typing import Dict, Any, List, Optional, Iterator, Tuple

import pandas as pd

from core.exceptions import FatalSourceFailure, FetchError
from ingestion.extractors.fetcher import RateLimitedFetcher, json_object
from ingestion.sources import BODACC_EXPORT_URL, RECHERCHE_ENTREPRISES_URL

logger = logging.getLogger(__name__)

SIREN_PATTERN = re.compile(r"\b\d{9}\b")


def build_bodacc_params(department: str, since: date, until: Optional[date] = None) -> Dict[str, Any]:
    where = (
        f'familleavis:"collective" AND numerodepartement:{department} '
        f'AND dateparution>="{since.isoformat()}"'
    )
    if until is not None:
        where += f' AND dateparution<="{until.isoformat()}"'
    return {"where": where, "limit": -1, "delimiter": ";"}


def read_bodacc_rows(payload: bytes, chunksize: int = 500) -> Iterator[Dict[str, str]]:
    """Yield export rows as string dictionaries, reading the CSV in chunks."""
    if not payload.strip():
        return

    reader = pd.read_csv(
        io.BytesIO(payload),
        sep=";",
        dtype=str,
        keep_default_na=False,
        skip_blank_lines=True,
        on_bad_lines="skip",
        chunksize=chunksize,
    )
    for chunk in reader:
        chunk.columns = [str(c).strip() for c in chunk.columns]
        for row in chunk.to_dict(orient="records"):
            yield {k: (v.strip() if isinstance(v, str) else v) for k, v in row.items()}


def extract_siren(listepersonnes: Optional[str]) -> Optional[str]:
    """
    SIREN of the first person in a ``listepersonnes`` JSON field.

    The field holds either one object or an array of ``{"personne": ...}``
    objects. When it is not valid JSON the first 9-digit token is used.

    Raises:
        ValueError: the field is neither JSON nor contains a 9-digit token
    """
    if not listepersonnes:
        return None

    try:
        data = json.loads(listepersonnes)
    except ValueError as e:
        match = SIREN_PATTERN.search(listepersonnes)
        if match:
            return match.group(0)
        raise ValueError(f"Failed to parse listepersonnes JSON: {e}")

    entries = data if isinstance(data, list) else [data]
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        personne = entry.get("personne") or {}
        immatriculation = personne.get("numeroImmatriculation") or {}
        number = immatriculation.get("numeroIdentification")
        if not number:
            continue
        siren = re.sub(r"\s", "", str(number))
        if re.fullmatch(r"\d{9}", siren):
            return siren
        logger.debug(f"Invalid SIREN format: {siren} (expected 9 digits)")

    return None


def unique_sirens(
    rows: Iterator[Dict[str, str]],
    log: Optional[logging.LoggerAdapter] = None
) -> Tuple[List[Tuple[str, Dict[str, str]]], List[Tuple[Dict[str, str], str]]]:
    """
    Deduplicate rows on SIREN, first row wins.

    Returns:
        (siren, row) pairs in file order, and (row, reason) pairs for rows
        whose SIREN could not be read
    """
    log = log or logger
    seen: Dict[str, Dict[str, str]] = {}
    unreadable = []
    total = 0

    for index, row in enumerate(rows):
        total += 1
        try:
            siren = extract_siren(row.get("listepersonnes"))
        except ValueError as e:
            log.warning(f"Failed to extract SIREN from row {index + 1}: {e}")
            unreadable.append((row, str(e)))
            continue
        if siren is None:
            unreadable.append((row, "No SIREN in listepersonnes"))
            continue
        seen.setdefault(siren, row)

    log.info(f"Extracted {len(seen)} unique SIREN(s) from {total} rows ({len(unreadable)} unreadable)")
    return list(seen.items()), unreadable


class BodaccExtractor:
    """Single-shot download of the BODACC CSV export."""

    def __init__(self, fetcher: RateLimitedFetcher, url: str = BODACC_EXPORT_URL):
        self.fetcher = fetcher
        self.url = url

    async def download(self, department: str, since: date, until: Optional[date] = None) -> bytes:
        try:
            response = await self.fetcher.fetch(self.url, params=build_bodacc_params(department, since, until))
        except FetchError as e:
            raise FatalSourceFailure(
                "BODACC export download failed",
                context={"url": self.url, "department": department},
                original_exception=e
            )
        if response.status_code == 404:
            return b""
        return response.content


class CompanyDirectory:
    """Establishment lookup on recherche-entreprises."""

    def __init__(self, fetcher: RateLimitedFetcher, url: str = RECHERCHE_ENTREPRISES_URL):
        self.fetcher = fetcher
        self.url = url

    async def establishments(self, siren: str) -> List[Dict[str, Any]]:
        """
        Head office plus matching establishments for a SIREN.

        Each establishment dict is annotated with ``company_name`` and
        ``siren``. A 404 or an empty result gives an empty list; fetch
        errors propagate so the caller can record the SIREN as failed.
        """
        if not re.fullmatch(r"\d{9}", siren):
            return []

        response = await self.fetcher.fetch(self.url, params={"q": siren})
        if response.status_code == 404:
            return []

        results = json_object(response, self.url).get("results") or []
        if not results:
            return []

        company = results[0]
        company_name = company.get("nom_complet") or company.get("nom_raison_sociale")

        establishments = []
        if company.get("siege"):
            establishments.append(company["siege"])
        establishments.extend(company.get("matching_etablissements") or [])

        seen_sirets = set()
        annotated = []
        for etablissement in establishments:
            siret = etablissement.get("siret")
            if siret in seen_sirets:
                continue
            seen_sirets.add(siret)
            annotated.append({**etablissement, "company_name": company_name, "siren": siren})
        return annotated
