"""Shared fixtures: a fresh SQLite-backed ledger per test."""

import asyncio

import pytest

from payout_ledger.db.connection import SQLiteConnector
from payout_ledger.db.repository import Repository
from payout_ledger.ledger import StockLedger
from payout_ledger.models import Credential


def make_ledger(tmp_path, initialize: bool = True) -> StockLedger:
    connector = SQLiteConnector(str(tmp_path / "ledger.db"), busy_timeout=30.0)
    ledger = StockLedger(repository=Repository(connector))
    if initialize:
        asyncio.run(ledger.initialize())
    return ledger


def credentials(*emails: str):
    return [Credential(email=email, secret=f"pw-{email}") for email in emails]


@pytest.fixture
def ledger(tmp_path) -> StockLedger:
    return make_ledger(tmp_path)
