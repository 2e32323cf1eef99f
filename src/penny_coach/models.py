"""Core data models for Penny Coach.

This module defines all dataclasses and utility functions used throughout the
engine. It has zero internal imports -- everything depends on it, but it
depends on nothing within the package.

Sign convention: a positive ``amount`` is an outflow (money spent), a negative
``amount`` is an inflow (refund, deposit, salary).
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal


def generate_transaction_id(
    source: str,
    txn_date: date,
    merchant: str,
    amount: Decimal,
    row_ordinal: int,
) -> str:
    """Generate a deterministic transaction ID from uniqueness components.

    The ID is a 12-character hex string derived from a SHA-256 hash of the
    pipe-delimited concatenation of: source name (as-is), ISO date, uppercased
    and stripped raw merchant string, amount as string, and 0-based row
    ordinal.

    This ensures that:
    - The same CSV row always produces the same ID, so re-importing a file
      does not duplicate ledger rows.
    - Two identical purchases on the same day at the same merchant are
      distinguished by their row ordinal in the source file.

    Args:
        source: Name of the import source, usually the CSV file name.
        txn_date: Transaction date.
        merchant: Raw merchant string (will be stripped and uppercased).
        amount: Transaction amount as Decimal.
        row_ordinal: 0-based row index within the source CSV file.

    Returns:
        A 12-character lowercase hex string.
    """
    raw = f"{source}|{txn_date.isoformat()}|{merchant.strip().upper()}|{amount}|{row_ordinal}"
    return hashlib.sha256(raw.encode()).hexdigest()[:12]


@dataclass
class Transaction:
    """A single bank transaction as seen by the engine.

    Attributes:
        transaction_id: Deterministic 12-char hex hash identifying this
            transaction uniquely.
        date: Calendar day of the charge (no time component).
        merchant: Raw merchant/description text as the bank reported it.
        merchant_key: Normalized merchant identity derived from
            ``merchant``.  Filled in by the import and edit paths.
        amount: Signed decimal amount. Positive means outflow, negative
            means inflow.
        category: Category name, or the configured default bucket.
        is_subscription: True if a rule flagged this merchant as a
            subscription.
        source_file: Name of the CSV the row came from (for debugging).
    """

    transaction_id: str
    date: date
    merchant: str
    amount: Decimal
    merchant_key: str = ""
    category: str = "Misc"
    is_subscription: bool = False
    source_file: str = ""

    @property
    def is_outflow(self) -> bool:
        return self.amount > 0


@dataclass
class MappedRow:
    """A CSV row after header matching and value parsing.

    Attributes:
        date: Parsed transaction date.
        merchant: Merchant/description text, stripped.
        amount: Amount in the bank's own sign convention (debit columns
            negative, credit columns positive).
        category: Bank-provided category, or empty string if the file has
            no category column.
    """

    date: date
    merchant: str
    amount: Decimal
    category: str = ""


@dataclass
class Budget:
    """A monthly spending limit for one category.

    Attributes:
        category: Category name the limit applies to.
        month: Budget month as ``"YYYY-MM"``.
        limit: Spending limit for the month.
    """

    category: str
    month: str
    limit: Decimal


@dataclass
class Subscription:
    """A confirmed subscription record owned by the persistence layer.

    Attributes:
        merchant: Merchant name as stored (normalized when auto-added).
        amount: Approximate charge amount.
        last_charge: Date of the most recent charge, or ``None`` if unknown.
        active: False once the user has cancelled or dismissed it.
        match_count: Number of matching charges when it was detected.
    """

    merchant: str
    amount: Decimal
    last_charge: date | None = None
    active: bool = True
    match_count: int = 0


@dataclass
class MerchantRule:
    """A user-confirmed merchant-to-category mapping.

    Rules are keyed by the normalized merchant key; at most one rule exists
    per key and saving again replaces the previous rule.

    Attributes:
        merchant_key: Normalized merchant key the rule applies to.
        category: Category assigned to matching transactions.
        is_subscription: Whether matching transactions are subscriptions.
    """

    merchant_key: str
    category: str
    is_subscription: bool = False


@dataclass
class RecurrenceFinding:
    """A merchant whose charges look like a monthly subscription.

    Findings are recomputed on every analysis pass and never persisted by the
    engine itself.
    """

    merchant_key: str
    occurrence_count: int
    average_amount: Decimal
    last_charge_date: date
    is_monthly: bool = True


@dataclass
class SubscriptionView:
    """A persisted subscription annotated with the current detection data."""

    merchant: str
    amount: Decimal
    last_charge: date | None
    matches: int
    active: bool


@dataclass
class Insight:
    """A budget-pacing or anomaly message for the user.

    Attributes:
        kind: ``"overspend"``, ``"under_pace"`` or ``"duplicate"``.
        title: Short headline.
        detail: One-sentence explanation.
        category: Category the insight is about (overspend only).
        figures: The raw numbers behind the message, e.g. ``over`` and
            ``daily_cap`` for an overspend, ``count`` and ``amount`` for a
            duplicate.
    """

    kind: str
    title: str
    detail: str
    category: str = ""
    figures: dict[str, Decimal] = field(default_factory=dict)


@dataclass
class StageResult:
    """Return type for the import stages.

    Each stage processes what it can and reports what it could not.

    Attributes:
        transactions: The list of transactions after this stage's
            processing.
        warnings: Non-fatal issues encountered during processing, such
            as skipped malformed rows.
        errors: Fatal issues for whole files, such as unreadable files.
            The stage still returns whatever it could process successfully.
    """

    transactions: list[Transaction] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


@dataclass
class AnalysisResult:
    """Everything one analysis pass derives from a snapshot.

    Attributes:
        findings: Recurrence findings, most recent first.
        upserts: New subscription records proposed for persistence.
        subscriptions: Merged view of persisted subscriptions.
        insights: Pacing and anomaly insights, at most ``max_insights``.
    """

    findings: list[RecurrenceFinding] = field(default_factory=list)
    upserts: list[Subscription] = field(default_factory=list)
    subscriptions: list[SubscriptionView] = field(default_factory=list)
    insights: list[Insight] = field(default_factory=list)


@dataclass
class AppConfig:
    """Top-level application configuration loaded from config.toml.

    Attributes:
        output_dir: Directory holding the transaction ledger CSV.
            Default: "output".
        default_category: Category assigned when no rule matches and the
            bank supplies none. Default: "Misc".
        bank_outflow_negative: True if imported bank amounts use negative
            numbers for spending, which the importer flips into the
            engine's outflow-positive convention. Default: True.
        lookback_days: How far back recurrence detection looks.
            Default: 120.
        display_limit: Maximum number of findings shown. Default: 12.
        max_insights: Maximum number of insights returned. Default: 5.
        overspend_slack: Absolute amount a category may run ahead of pace
            before an overspend insight fires. Default: 10.
        under_pace_slack: Absolute amount total spend must trail pace by
            before an under-pace insight fires. Default: 20.
    """

    output_dir: str = "output"
    default_category: str = "Misc"
    bank_outflow_negative: bool = True
    lookback_days: int = 120
    display_limit: int = 12
    max_insights: int = 5
    overspend_slack: Decimal = Decimal("10")
    under_pace_slack: Decimal = Decimal("20")
