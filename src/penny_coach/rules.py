"""Rule engine: merchant-key lookup, rule upsert, and rule application.

A rule is a user-confirmed mapping from a normalized merchant key to a
category and a subscription flag.  Lookup is an exact match on the key; if
no rule exists the caller's fallback category is used and the transaction is
not a subscription.

Rules are applied at two points:

1. **Import** -- :func:`categorize` runs over freshly mapped transactions
   before they are stored.
2. **Edit** -- :func:`edit_merchant` re-normalizes a transaction whose
   merchant text changed and re-derives its category.

Depends on ``models.py`` and ``merchants.py`` only.
"""

from __future__ import annotations

import dataclasses

from penny_coach.merchants import normalize_merchant
from penny_coach.models import MerchantRule, StageResult, Transaction


def rules_by_key(rules: list[MerchantRule]) -> dict[str, MerchantRule]:
    """Index *rules* by merchant key.

    Later rules replace earlier ones with the same key, so the result holds
    at most one rule per merchant.
    """
    return {rule.merchant_key: rule for rule in rules}


def apply_rule(
    merchant_key: str,
    rules: dict[str, MerchantRule],
    fallback_category: str,
) -> tuple[str, bool]:
    """Look up the category and subscription flag for a merchant key.

    Args:
        merchant_key: Normalized merchant key.
        rules: Rules indexed by merchant key (see :func:`rules_by_key`).
        fallback_category: Category to use when no rule exists.

    Returns:
        A ``(category, is_subscription)`` tuple.
    """
    rule = rules.get(merchant_key)
    if rule is None:
        return fallback_category, False
    return rule.category, rule.is_subscription


def save_rule(
    rules: dict[str, MerchantRule],
    merchant: str,
    category: str,
    is_subscription: bool = False,
) -> MerchantRule:
    """Insert or replace the rule for *merchant*.

    The merchant text is normalized first, so ``"NETFLIX.COM *123"`` and
    ``"Netflix.com"`` address the same rule.  A second save for the same
    merchant replaces the first; it never adds a duplicate.

    Args:
        rules: Rules indexed by merchant key.  Updated in place.
        merchant: Raw or normalized merchant text.
        category: Category to assign.
        is_subscription: Whether the merchant is a subscription.

    Returns:
        The stored :class:`MerchantRule`.
    """
    key = normalize_merchant(merchant)
    rule = MerchantRule(merchant_key=key, category=category, is_subscription=is_subscription)
    rules[key] = rule
    return rule


def categorize(
    transactions: list[Transaction],
    rules: dict[str, MerchantRule],
    default_category: str,
) -> StageResult:
    """Apply rules to transactions at import time.

    Each transaction's ``merchant_key`` is (re)derived from its raw merchant
    text.  A matching rule sets the category and subscription flag.
    Otherwise the transaction keeps the category it arrived with (for
    example a bank-supplied category), or gets *default_category* if it has
    none.

    Args:
        transactions: Newly mapped transactions.  Updated in place.
        rules: Rules indexed by merchant key.
        default_category: The configured default bucket, e.g. ``"Misc"``.

    Returns:
        A ``StageResult`` containing the transactions.
    """
    for txn in transactions:
        txn.merchant_key = normalize_merchant(txn.merchant)
        fallback = txn.category or default_category
        txn.category, txn.is_subscription = apply_rule(txn.merchant_key, rules, fallback)

    return StageResult(transactions=transactions)


def edit_merchant(
    txn: Transaction,
    merchant: str,
    rules: dict[str, MerchantRule],
    default_category: str,
) -> Transaction:
    """Return a copy of *txn* with new merchant text and re-derived category.

    If a rule exists for the new merchant key it decides the category and
    subscription flag.  Otherwise the transaction falls back to
    *default_category* and is no longer flagged as a subscription; the old
    category belonged to the old merchant.
    """
    key = normalize_merchant(merchant)
    category, is_subscription = apply_rule(key, rules, default_category)
    return dataclasses.replace(
        txn,
        merchant=merchant.strip(),
        merchant_key=key,
        category=category,
        is_subscription=is_subscription,
    )
