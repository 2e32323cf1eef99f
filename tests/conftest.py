"""Shared pytest fixtures for Penny Coach tests.

Provides reusable fixtures for:
- tmp_project_dir: A temporary directory initialized with the default
  project structure (config files and output directory).
- sample_transactions: A small ledger of realistic Transaction objects with
  monthly subscriptions, groceries, fuel, an inflow, and a duplicate charge.
- sample_rules: Rules indexed by merchant key.
- make_txn: Factory fixture for one-off transactions.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from penny_coach.config import initialize
from penny_coach.merchants import normalize_merchant
from penny_coach.models import MerchantRule, Transaction, generate_transaction_id


def _make_txn(
    txn_date: date,
    merchant: str,
    amount: str | Decimal,
    category: str = "Misc",
    row_ordinal: int = 0,
    is_subscription: bool = False,
) -> Transaction:
    """Helper to build a Transaction with a deterministic ID."""
    amount = Decimal(amount)
    return Transaction(
        transaction_id=generate_transaction_id(
            source="test.csv",
            txn_date=txn_date,
            merchant=merchant,
            amount=amount,
            row_ordinal=row_ordinal,
        ),
        date=txn_date,
        merchant=merchant,
        merchant_key=normalize_merchant(merchant),
        amount=amount,
        category=category,
        is_subscription=is_subscription,
        source_file="test.csv",
    )


@pytest.fixture
def make_txn():
    """Factory for single transactions: ``make_txn(date, merchant, amount, ...)``."""
    return _make_txn


@pytest.fixture
def tmp_project_dir(tmp_path: Path) -> Path:
    """Create a temporary directory with the default project structure.

    Returns the Path to the temporary project root.
    """
    project = tmp_path / "penny-project"
    initialize(project)
    return project


@pytest.fixture
def sample_transactions() -> list[Transaction]:
    """A ledger of 12 transactions spanning January to March 2026.

    Includes:
    - Netflix on the 5th of each month (raw merchant text varies)
    - Spotify on the 12th of February and March
    - Groceries at Costco on irregular dates
    - Two identical Shell charges in March
    - A salary deposit (inflow)
    """
    return [
        _make_txn(date(2026, 1, 5), "NETFLIX.COM #8812", "15.49", "Subscriptions", 0),
        _make_txn(date(2026, 2, 5), "Netflix.com", "15.49", "Subscriptions", 1),
        _make_txn(date(2026, 3, 5), "NETFLIX.COM PENDING", "15.49", "Subscriptions", 2),
        _make_txn(date(2026, 2, 12), "SPOTIFY", "9.99", "Subscriptions", 3),
        _make_txn(date(2026, 3, 12), "Spotify", "9.99", "Subscriptions", 4),
        _make_txn(date(2026, 1, 3), "COSTCO WHSE #4821", "89.12", "Groceries", 5),
        _make_txn(date(2026, 1, 9), "COSTCO WHSE #4821", "61.96", "Groceries", 6),
        _make_txn(date(2026, 3, 2), "Costco Whse   #4821", "120.40", "Groceries", 7),
        _make_txn(date(2026, 3, 10), "Costco Whse #4821", "104.60", "Groceries", 8),
        _make_txn(date(2026, 3, 8), "SHELL OIL 5744", "42.10", "Fuel", 9),
        _make_txn(date(2026, 3, 9), "SHELL OIL 5744", "42.10", "Fuel", 10),
        _make_txn(date(2026, 3, 1), "ACME PAYROLL", "-2500.00", "Income", 11),
    ]


@pytest.fixture
def sample_rules() -> dict[str, MerchantRule]:
    """Rules indexed by merchant key."""
    rules = [
        MerchantRule(merchant_key="Netflix.com", category="Subscriptions", is_subscription=True),
        MerchantRule(merchant_key="Costco whse", category="Groceries"),
        MerchantRule(merchant_key="Shell oil 5744", category="Fuel"),
    ]
    return {r.merchant_key: r for r in rules}
