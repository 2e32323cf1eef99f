"""Recurring charge detection.

This module scans a window of transactions to identify merchants that are
charged on a roughly monthly cadence, likely indicating subscriptions.

Detection algorithm:
- Only outflows inside the lookback window are considered
- Transactions are grouped by normalized merchant; groups with fewer than
  2 charges are dropped
- A group is monthly if any single gap between consecutive charges is
  25-35 days, or, with 3+ charges, if the mean gap is 25-35 days with a
  population standard deviation of at most 6 days

One ~30-day gap is enough to flag a merchant even when its other gaps are
irregular.

Findings are not persisted here.  ``plan_subscription_upserts`` and
``merge_subscription_view`` reconcile them with stored subscriptions for the
persistence and presentation layers.
"""

from __future__ import annotations

import logging
import statistics
from collections import defaultdict
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from penny_coach.merchants import normalize_merchant
from penny_coach.models import (
    RecurrenceFinding,
    Subscription,
    SubscriptionView,
    Transaction,
)

logger = logging.getLogger(__name__)

MIN_MONTHLY_GAP = 25
MAX_MONTHLY_GAP = 35
MAX_GAP_STDDEV = 6.0
DEFAULT_LOOKBACK_DAYS = 120
DEFAULT_DISPLAY_LIMIT = 12

_CENTS = Decimal("0.01")


def is_monthly_pattern(dates: list[date]) -> bool:
    """Decide whether a set of charge dates looks monthly.

    Args:
        dates: Charge dates for one merchant, in any order.

    Returns:
        True if any consecutive gap is within 25-35 days, or if there are
        at least two gaps whose mean is within 25-35 days and whose
        population standard deviation is at most 6 days.
    """
    if len(dates) < 2:
        return False

    ordered = sorted(dates, reverse=True)
    gaps = [abs((newer - older).days) for newer, older in zip(ordered, ordered[1:])]

    if any(MIN_MONTHLY_GAP <= gap <= MAX_MONTHLY_GAP for gap in gaps):
        return True

    if len(gaps) >= 2:
        mean = statistics.fmean(gaps)
        spread = statistics.pstdev(gaps)
        if MIN_MONTHLY_GAP <= mean <= MAX_MONTHLY_GAP and spread <= MAX_GAP_STDDEV:
            return True

    return False


def detect_recurring(
    transactions: list[Transaction],
    today: date,
    lookback_days: int = DEFAULT_LOOKBACK_DAYS,
) -> list[RecurrenceFinding]:
    """Find merchants with a monthly charge pattern.

    Args:
        transactions: Snapshot of transactions, in any order.
        today: Reference date the lookback window ends on.
        lookback_days: Only transactions on or after
            ``today - lookback_days`` are considered.

    Returns:
        One finding per monthly merchant, ordered by last charge date
        (newest first), then by average amount (largest first).  The list
        is not reconciled with persisted subscriptions.
    """
    since = today - timedelta(days=lookback_days)

    by_merchant: dict[str, list[Transaction]] = defaultdict(list)
    for txn in transactions:
        if txn.date < since or txn.amount <= 0:
            continue
        by_merchant[normalize_merchant(txn.merchant)].append(txn)

    findings: list[RecurrenceFinding] = []
    for merchant_key, charges in by_merchant.items():
        if len(charges) < 2:
            continue
        if not is_monthly_pattern([t.date for t in charges]):
            continue

        total = sum((t.amount for t in charges), Decimal("0"))
        findings.append(
            RecurrenceFinding(
                merchant_key=merchant_key,
                occurrence_count=len(charges),
                average_amount=total / len(charges),
                last_charge_date=max(t.date for t in charges),
            )
        )

    findings.sort(key=lambda f: (f.last_charge_date, f.average_amount), reverse=True)
    logger.debug(
        "Recurrence scan: %d merchants since %s, %d monthly",
        len(by_merchant),
        since.isoformat(),
        len(findings),
    )
    return findings


def rank_findings(
    findings: list[RecurrenceFinding],
    limit: int = DEFAULT_DISPLAY_LIMIT,
) -> list[RecurrenceFinding]:
    """Return the first *limit* findings for display.

    *findings* must already be in :func:`detect_recurring` order.
    """
    return findings[:limit]


def plan_subscription_upserts(
    findings: list[RecurrenceFinding],
    subscriptions: list[Subscription],
) -> list[Subscription]:
    """Propose new subscription records for merchants not yet tracked.

    A finding is skipped when an *active* stored subscription normalizes to
    the same merchant key.  A finding whose merchant only has a paused
    record is proposed again; applying it reactivates that record without
    touching its amount or last charge date.

    Args:
        findings: Output of :func:`detect_recurring`.
        subscriptions: Subscriptions currently persisted.

    Returns:
        New :class:`Subscription` records, one per untracked finding, in
        finding order.
    """
    tracked = {normalize_merchant(s.merchant) for s in subscriptions if s.active}

    upserts: list[Subscription] = []
    for finding in findings:
        if finding.merchant_key in tracked:
            continue
        upserts.append(
            Subscription(
                merchant=finding.merchant_key,
                amount=finding.average_amount.quantize(_CENTS, rounding=ROUND_HALF_UP),
                last_charge=finding.last_charge_date,
                active=True,
                match_count=finding.occurrence_count,
            )
        )
        tracked.add(finding.merchant_key)
    return upserts


def merge_subscription_view(
    subscriptions: list[Subscription],
    findings: list[RecurrenceFinding],
) -> list[SubscriptionView]:
    """Combine stored subscriptions with the current findings for display.

    Stored subscriptions are the source of truth.  Each one is annotated with
    the match count of the finding for the same merchant key (0 if none),
    and falls back to the finding's last charge date when the record has
    none of its own.

    Returns:
        Views sorted by match count (descending), then merchant name.
    """
    by_key = {f.merchant_key: f for f in findings}

    views: list[SubscriptionView] = []
    for sub in subscriptions:
        finding = by_key.get(normalize_merchant(sub.merchant))
        last_charge = sub.last_charge
        if last_charge is None and finding is not None:
            last_charge = finding.last_charge_date
        views.append(
            SubscriptionView(
                merchant=sub.merchant,
                amount=sub.amount,
                last_charge=last_charge,
                matches=finding.occurrence_count if finding is not None else 0,
                active=sub.active,
            )
        )

    views.sort(key=lambda v: (-v.matches, v.merchant))
    return views
