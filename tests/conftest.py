"""
Pytest configuration and fixtures
"""

import csv
import io
import json
import zipfile
from datetime import date
from typing import List, Dict, Any

import httpx
import pytest

from ingestion.transformers.base import TransformContext
from tests.fakes import FakeClock, InMemoryOpportunityStore, InMemoryArtifactStore

INSEE_HEADER = [
    "nomprenom", "sexe", "datenaiss", "lieunaiss", "commnaiss",
    "paysnaiss", "datedeces", "lieudeces", "actedeces",
]


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryOpportunityStore()


@pytest.fixture
def artifacts():
    return InMemoryArtifactStore()


@pytest.fixture
def transform_context():
    return TransformContext(department="75", reference_date=date(2024, 6, 1))


@pytest.fixture
def dpe_record():
    """A complete ADEME DPE line"""
    return {
        "numero_dpe": "2475E0123456A",
        "adresse_ban": "12 Rue de la Paix 75002 Paris",
        "code_postal_ban": "75002",
        "nom_commune_ban": "Paris",
        "code_departement_ban": "75",
        "etiquette_dpe": "G",
        "etiquette_ges": "F",
        "_geopoint": "48.8686,2.3314",
        "date_etablissement_dpe": "2024-02-10",
        "date_reception_dpe": "2024-02-12",
        "type_batiment": "appartement",
        "annee_construction": 1930,
        "surface_habitable_logement": 42.5,
    }


@pytest.fixture
def establishment():
    """A company-directory establishment annotated with its BODACC notice"""
    return {
        "siret": "12345678900012",
        "adresse": "5 Avenue Victor Hugo",
        "code_postal": "75016",
        "libelle_commune": "PARIS",
        "latitude": "48.8698",
        "longitude": "2.2846",
        "est_siege": True,
        "company_name": "ACME BOULANGERIE",
        "siren": "123456789",
        "dateparution": "2024-03-04",
        "typeavis_lib": "Jugement d'ouverture de liquidation judiciaire",
        "denomination": "ACME",
    }


@pytest.fixture
def death_row():
    """A parsed INSEE death row"""
    return dict(zip(INSEE_HEADER, [
        "DUPONT*JEAN PIERRE/", "1", "19400315", "75056", "PARIS",
        "", "20240110", "75056", "123",
    ]))


def insee_csv(rows: List[List[str]], header: bool = True) -> bytes:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=";", quoting=csv.QUOTE_ALL, lineterminator="\n")
    if header:
        writer.writerow(INSEE_HEADER)
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def zip_bytes(member_name: str, payload: bytes) -> bytes:
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        zf.writestr(member_name, payload)
    return buffer.getvalue()


def bodacc_csv(rows: List[Dict[str, Any]]) -> bytes:
    columns = ["numerodepartement", "dateparution", "typeavis_lib", "denomination", "listepersonnes"]
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=columns, delimiter=";", lineterminator="\n")
    writer.writeheader()
    for row in rows:
        writer.writerow({c: row.get(c, "") for c in columns})
    return buffer.getvalue().encode("utf-8")


def personnes(siren: str) -> str:
    return json.dumps([{"personne": {"numeroImmatriculation": {"numeroIdentification": siren}}}])


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
