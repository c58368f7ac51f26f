"""Test fixtures and utilities."""

from pathlib import Path

import pytest

from invoice_reconciler.config import Config, DriveConfig, ExtractionConfig
from invoice_reconciler.schemas import Scope

# Text layer of a French supplier invoice
SAMPLE_INVOICE_TEXT_FR = """
Acme Fournitures
12 rue des Lilas
75011 Paris

Facture N° FA-2026-0042
Date : 12 mars 2026

Désignation                         Qté      Prix
Ramette papier A4                     10     8,50
Cartouches encre                       2    18,94

Sous-total HT : 102,88 €
TVA 20 % : 20,57 €
Total TTC : 123,45 €

Conditions de paiement : 30 jours
"""

# Text layer of an English SaaS invoice
SAMPLE_INVOICE_TEXT_EN = """
Globex Corporation
500 Market Street
San Francisco, CA

Invoice #INV-10234
Invoice date: January 5, 2026

Description                     Amount
Team plan (annual)            1,000.00
Subtotal:                     1,000.00
VAT (20%): 200.00
Amount due: $1,200.00
"""


@pytest.fixture
def sample_invoice_fr() -> str:
    """French invoice text."""
    return SAMPLE_INVOICE_TEXT_FR


@pytest.fixture
def sample_invoice_en() -> str:
    """English invoice text."""
    return SAMPLE_INVOICE_TEXT_EN


@pytest.fixture
def temp_db(tmp_path) -> Path:
    """Temporary database path for testing."""
    return tmp_path / "test_state.db"


@pytest.fixture
def personal_scope() -> Scope:
    return Scope(user_id=1)


@pytest.fixture
def company_scope() -> Scope:
    return Scope(user_id=1, company_id=7)


@pytest.fixture
def config(temp_db) -> Config:
    """Config pointing at a temp DB, with local OCR off so tests never shell out."""
    return Config(
        drive=DriveConfig(base_url="http://drive.test/drive/v3", token="test-token"),
        extraction=ExtractionConfig(local_ocr_enabled=False),
        state_db_path=temp_db,
    )
