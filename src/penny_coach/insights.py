"""Budget pacing and anomaly insights.

Compares month-to-date spending per category against budget limits
pro-rated by how much of the month has elapsed, and flags charges that look
like duplicates.

Insight order:

1. One overspend insight per budgeted category running more than
   ``overspend_slack`` ahead of pace, in budget order.
2. A single under-pace insight when total spending trails the pro-rated
   total budget by more than ``under_pace_slack``.
3. One duplicate insight per (merchant, amount) pair charged 2+ times this
   month, in first-seen order.  Dates are not compared, so two legitimate
   monthly charges of the same amount in one month are also reported.

The combined list is truncated to ``max_insights``.
"""

from __future__ import annotations

import calendar
import logging
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from penny_coach.merchants import normalize_merchant
from penny_coach.models import Budget, Insight, Transaction

logger = logging.getLogger(__name__)

DEFAULT_MAX_INSIGHTS = 5
DEFAULT_OVERSPEND_SLACK = Decimal("10")
DEFAULT_UNDER_PACE_SLACK = Decimal("20")

# Static suggestion shown with the under-pace insight; not derived from the gap.
SAVINGS_HINT = (Decimal("50"), Decimal("100"))

_CENTS = Decimal("0.01")
_ZERO = Decimal("0")


def build_insights(
    spend_by_category: dict[str, Decimal],
    budgets: dict[str, Decimal],
    month_transactions: list[Transaction],
    day_of_month: int,
    days_in_month: int,
    *,
    max_insights: int = DEFAULT_MAX_INSIGHTS,
    overspend_slack: Decimal = DEFAULT_OVERSPEND_SLACK,
    under_pace_slack: Decimal = DEFAULT_UNDER_PACE_SLACK,
) -> list[Insight]:
    """Build pacing and duplicate-charge insights for the current month.

    Args:
        spend_by_category: Month-to-date outflow per category.
        budgets: Monthly limit per category, iterated in this order.
        month_transactions: This month's transactions; only outflows are
            checked for duplicates.
        day_of_month: Today's day of the month, 1-based.
        days_in_month: Number of days in the current month.
        max_insights: Maximum number of insights returned.
        overspend_slack: Absolute amount a category may run ahead of its
            pro-rated limit before it is flagged.
        under_pace_slack: Absolute amount total spending must trail the
            pro-rated total budget by before it is flagged.

    Returns:
        Insights in the order overspend, under-pace, duplicates, at most
        *max_insights* long.
    """
    pace = Decimal(day_of_month) / Decimal(days_in_month)
    days_left = max(1, days_in_month - day_of_month)

    insights: list[Insight] = []

    for category, limit in budgets.items():
        if limit <= 0:
            continue
        spent = spend_by_category.get(category, _ZERO)
        expected = limit * pace
        if spent > expected + overspend_slack:
            over = spent - expected
            daily_cap = max(_ZERO, (limit - spent) / days_left)
            insights.append(
                Insight(
                    kind="overspend",
                    title=f"{category} is ahead of pace",
                    detail=(
                        f"Spent {_money(spent)} against {_money(expected)} expected by "
                        f"day {day_of_month}, {_money(over)} over. Keep to "
                        f"{_money(daily_cap)} a day for the rest of the month."
                    ),
                    category=category,
                    figures={
                        "spent": spent,
                        "expected": expected,
                        "over": over,
                        "daily_cap": daily_cap,
                    },
                )
            )

    total_spent = sum(spend_by_category.values(), _ZERO)
    total_budget = sum(budgets.values(), _ZERO)
    if total_spent < total_budget * pace - under_pace_slack:
        low, high = SAVINGS_HINT
        insights.append(
            Insight(
                kind="under_pace",
                title="Spending under pace",
                detail=(
                    f"You have spent {_money(total_spent)} of a "
                    f"{_money(total_budget)} budget. Consider moving "
                    f"{_money(low)}-{_money(high)} to savings."
                ),
                figures={"total_spent": total_spent, "total_budget": total_budget},
            )
        )

    insights.extend(_duplicate_insights(month_transactions))

    if len(insights) > max_insights:
        logger.debug("Truncating %d insights to %d", len(insights), max_insights)
    return insights[:max_insights]


def _duplicate_insights(transactions: list[Transaction]) -> list[Insight]:
    """One insight per (merchant, amount) outflow seen two or more times."""
    counts: dict[tuple[str, Decimal], int] = {}
    for txn in transactions:
        if txn.amount <= 0:
            continue
        key = (normalize_merchant(txn.merchant), txn.amount.quantize(_CENTS, rounding=ROUND_HALF_UP))
        counts[key] = counts.get(key, 0) + 1

    insights: list[Insight] = []
    for (merchant, amount), count in counts.items():
        if count < 2:
            continue
        insights.append(
            Insight(
                kind="duplicate",
                title="Possible duplicate charge",
                detail=f"{count} charges of {_money(amount)} at {merchant} this month.",
                figures={"count": Decimal(count), "amount": amount},
            )
        )
    return insights


def spend_by_category(transactions: list[Transaction]) -> dict[str, Decimal]:
    """Total outflow per category, in first-seen category order."""
    totals: dict[str, Decimal] = {}
    for txn in transactions:
        if txn.amount <= 0:
            continue
        totals[txn.category] = totals.get(txn.category, _ZERO) + txn.amount
    return totals


def budgets_for_month(budgets: list[Budget], month: str) -> dict[str, Decimal]:
    """Limits for *month* keyed by category, in budget order.

    If a category has more than one limit for the month the last one wins.
    """
    limits: dict[str, Decimal] = {}
    for budget in budgets:
        if budget.month != month:
            continue
        if budget.category in limits:
            logger.warning(
                "Duplicate budget for %s in %s; using %s", budget.category, month, budget.limit
            )
        limits[budget.category] = budget.limit
    return limits


def transactions_in_month(transactions: list[Transaction], month: str) -> list[Transaction]:
    """Transactions dated within *month* (``"YYYY-MM"``)."""
    return [t for t in transactions if t.date.strftime("%Y-%m") == month]


def month_pace(today: date) -> tuple[int, int]:
    """Return ``(day_of_month, days_in_month)`` for *today*."""
    return today.day, calendar.monthrange(today.year, today.month)[1]


def _money(value: Decimal) -> str:
    return f"{value.quantize(_CENTS, rounding=ROUND_HALF_UP)}"
