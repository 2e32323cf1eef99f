"""Tests for pipeline orchestration.

Covers:
- import_rows / import_file: mapping, rule application, malformed rows.
- merge_ledger: de-duplication by transaction_id and ordering.
- edit_transaction: merchant edits re-apply rules.
- analyze: a full pass over the sample ledger.
- apply_upserts / count_upserts: new records appended, paused ones reactivated.
- add_transaction / delete_transaction: hand edits to the ledger.
- budget and subscription edits.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from penny_coach.models import AppConfig, Budget, Subscription
from penny_coach.pipeline import (
    MANUAL_SOURCE,
    add_subscription,
    add_transaction,
    analyze,
    apply_upserts,
    count_upserts,
    delete_transaction,
    edit_transaction,
    import_file,
    import_rows,
    merge_ledger,
    remove_budget,
    remove_subscription,
    set_budget,
    set_subscription_active,
)

TODAY = date(2026, 3, 15)


@pytest.fixture
def config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def march_budgets() -> list[Budget]:
    return [
        Budget(category="Groceries", month="2026-03", limit=Decimal("400")),
        Budget(category="Fuel", month="2026-03", limit=Decimal("180")),
        Budget(category="Subscriptions", month="2026-03", limit=Decimal("85")),
        Budget(category="Groceries", month="2026-02", limit=Decimal("50")),
    ]


# ===================================================================
# Import
# ===================================================================


class TestImportRows:
    """Tests for import_rows."""

    def test_rules_applied_to_mapped_rows(self, sample_rules, config):
        rows = [
            {"Date": "2026-03-05", "Description": "NETFLIX.COM PENDING", "Amount": "-15.49"},
            {"Date": "2026-03-06", "Description": "CORNER BAKERY", "Amount": "-6.25"},
        ]
        result = import_rows(rows, "bank.csv", sample_rules, config, TODAY)

        netflix, bakery = result.transactions
        assert netflix.merchant_key == "Netflix.com"
        assert netflix.category == "Subscriptions"
        assert netflix.is_subscription is True
        assert netflix.amount == Decimal("15.49")
        assert bakery.category == "Misc"

    def test_malformed_rows_do_not_abort(self, sample_rules, config):
        rows = [
            {"date": "2026-03-05", "merchant": "", "amount": "-1"},
            {"date": "2026-03-06", "merchant": "SHELL OIL 5744", "amount": "oops"},
            {"date": "2026-03-07", "merchant": "SHELL OIL 5744", "amount": "-42.10"},
        ]
        result = import_rows(rows, "bank.csv", sample_rules, config, TODAY)

        assert len(result.transactions) == 1
        assert result.transactions[0].category == "Fuel"
        assert len(result.warnings) == 2

    def test_default_category_from_config(self, sample_rules):
        config = AppConfig(default_category="Uncategorized")
        rows = [{"date": "2026-03-05", "merchant": "CORNER BAKERY", "amount": "-6.25"}]
        result = import_rows(rows, "bank.csv", sample_rules, config, TODAY)
        assert result.transactions[0].category == "Uncategorized"


class TestImportFile:
    """Tests for import_file."""

    def test_import_file(self, tmp_path: Path, sample_rules, config):
        path = tmp_path / "march.csv"
        path.write_text(
            "Date,Description,Amount\n"
            "2026-03-02,COSTCO WHSE #4821,-120.40\n"
            "2026-03-08,SHELL OIL 5744,-42.10\n",
            encoding="utf-8",
        )
        result = import_file(path, sample_rules, config, TODAY)

        assert [t.category for t in result.transactions] == ["Groceries", "Fuel"]
        assert result.errors == []

    def test_missing_file_reports_error(self, tmp_path: Path, sample_rules, config):
        result = import_file(tmp_path / "missing.csv", sample_rules, config, TODAY)
        assert result.transactions == []
        assert result.errors


class TestMergeLedger:
    """Tests for merge_ledger."""

    def test_reimport_does_not_duplicate(self, sample_transactions):
        merged = merge_ledger(sample_transactions, list(sample_transactions))

        assert len(merged.transactions) == len(sample_transactions)
        assert merged.warnings == [
            f"Skipped {len(sample_transactions)} already-imported transaction(s)"
        ]

    def test_existing_rows_win(self, make_txn):
        stored = make_txn(date(2026, 3, 1), "SHELL", "42.10", category="Travel")
        incoming = make_txn(date(2026, 3, 1), "SHELL", "42.10", category="Fuel")
        assert stored.transaction_id == incoming.transaction_id

        merged = merge_ledger([stored], [incoming])
        assert [t.category for t in merged.transactions] == ["Travel"]

    def test_reverse_chronological(self, make_txn):
        older = make_txn(date(2026, 1, 1), "A", "1")
        newer = make_txn(date(2026, 2, 1), "B", "1")
        merged = merge_ledger([older], [newer])

        assert [t.merchant for t in merged.transactions] == ["B", "A"]
        assert merged.warnings == []


class TestEditTransaction:
    """Tests for edit_transaction."""

    def test_edit_reapplies_rules(self, sample_transactions, sample_rules, config):
        target = sample_transactions[-1]
        ledger = edit_transaction(
            sample_transactions, target.transaction_id, "COSTCO WHSE #1", sample_rules, config
        )

        edited = ledger[-1]
        assert edited.transaction_id == target.transaction_id
        assert edited.merchant_key == "Costco whse"
        assert edited.category == "Groceries"
        assert len(ledger) == len(sample_transactions)
        assert sample_transactions[-1].merchant == "ACME PAYROLL"

    def test_unknown_id(self, sample_transactions, sample_rules, config):
        with pytest.raises(KeyError):
            edit_transaction(sample_transactions, "nope", "X", sample_rules, config)


# ===================================================================
# Analysis
# ===================================================================


class TestAnalyze:
    """Tests for a full analysis pass."""

    def test_sample_ledger(self, sample_transactions, march_budgets, config):
        result = analyze(sample_transactions, march_budgets, [], config, TODAY)

        assert [f.merchant_key for f in result.findings] == ["Spotify", "Netflix.com"]
        assert [u.merchant for u in result.upserts] == ["Spotify", "Netflix.com"]
        assert [v.merchant for v in result.subscriptions] == ["Netflix.com", "Spotify"]

        assert [i.kind for i in result.insights] == ["overspend", "duplicate"]
        assert result.insights[0].category == "Groceries"
        assert "Shell oil 5744" in result.insights[1].detail

    def test_tracked_subscription_not_proposed(self, sample_transactions, march_budgets, config):
        stored = [Subscription(merchant="NETFLIX.COM", amount=Decimal("13.99"))]
        result = analyze(sample_transactions, march_budgets, stored, config, TODAY)

        assert [u.merchant for u in result.upserts] == ["Spotify"]
        netflix = next(v for v in result.subscriptions if v.merchant == "NETFLIX.COM")
        assert netflix.amount == Decimal("13.99")
        assert netflix.matches == 3

    def test_empty_snapshot(self, config):
        result = analyze([], [], [], config, TODAY)
        assert result.findings == []
        assert result.upserts == []
        assert result.subscriptions == []
        assert result.insights == []

    def test_max_insights_from_config(self, sample_transactions, march_budgets):
        config = AppConfig(max_insights=1)
        result = analyze(sample_transactions, march_budgets, [], config, TODAY)
        assert len(result.insights) == 1


class TestApplyUpserts:
    """Tests for apply_upserts."""

    def test_new_records_appended(self):
        stored = [Subscription(merchant="iCloud", amount=Decimal("2.99"))]
        new = [Subscription(merchant="Spotify", amount=Decimal("9.99"))]
        assert [s.merchant for s in apply_upserts(stored, new)] == ["iCloud", "Spotify"]

    def test_paused_record_reactivated(self):
        """A paused subscription that is charged again becomes active."""
        stored = [Subscription(merchant="Spotify", amount=Decimal("4.99"), active=False)]
        new = [Subscription(merchant="SPOTIFY", amount=Decimal("9.99"), match_count=3)]

        merged = apply_upserts(stored, new)
        assert len(merged) == 1
        assert merged[0].merchant == "Spotify"
        assert merged[0].amount == Decimal("4.99")
        assert merged[0].active is True
        assert merged[0].match_count == 3

    def test_active_record_untouched(self):
        stored = [Subscription(merchant="Spotify", amount=Decimal("4.99"), match_count=1)]
        new = [Subscription(merchant="Spotify", amount=Decimal("9.99"), match_count=3)]

        assert apply_upserts(stored, new) == stored

    def test_input_not_mutated(self):
        stored = [Subscription(merchant="Spotify", amount=Decimal("4.99"), active=False)]
        apply_upserts(stored, [Subscription(merchant="Spotify", amount=Decimal("9.99"))])
        assert stored[0].active is False


class TestCountUpserts:
    """Tests for count_upserts."""

    def test_added_and_reactivated(self):
        stored = [
            Subscription(merchant="Spotify", amount=Decimal("9.99"), active=False),
            Subscription(merchant="Hulu", amount=Decimal("7.99")),
        ]
        upserts = [
            Subscription(merchant="SPOTIFY", amount=Decimal("9.99")),
            Subscription(merchant="Netflix.com", amount=Decimal("15.49")),
            Subscription(merchant="Hulu", amount=Decimal("7.99")),
        ]
        assert count_upserts(stored, upserts) == (1, 1)

    def test_nothing_to_do(self):
        assert count_upserts([], []) == (0, 0)


# ===================================================================
# Hand edits
# ===================================================================


class TestAddTransaction:
    """Tests for add_transaction."""

    def test_rules_applied(self, sample_rules, config):
        ledger, txn = add_transaction(
            [], date(2026, 3, 5), " NETFLIX.COM ", Decimal("15.49"), sample_rules, config
        )

        assert ledger == [txn]
        assert txn.merchant == "NETFLIX.COM"
        assert txn.merchant_key == "Netflix.com"
        assert txn.category == "Subscriptions"
        assert txn.is_subscription is True
        assert txn.source_file == MANUAL_SOURCE

    def test_category_overrides_rule(self, sample_rules, config):
        _, txn = add_transaction(
            [], date(2026, 3, 5), "NETFLIX.COM", Decimal("15.49"), sample_rules, config,
            category="Entertainment",
        )
        assert txn.category == "Entertainment"
        assert txn.is_subscription is True

    def test_no_rule_uses_default(self, sample_rules, config):
        _, txn = add_transaction(
            [], date(2026, 3, 5), "Corner bakery", Decimal("6.25"), sample_rules, config
        )
        assert txn.category == config.default_category

    def test_identical_entries_get_distinct_ids(self, sample_rules, config):
        args = (date(2026, 3, 5), "Corner bakery", Decimal("6.25"), sample_rules, config)
        ledger, first = add_transaction([], *args)
        ledger, second = add_transaction(ledger, *args)

        assert first.transaction_id != second.transaction_id
        assert len(ledger) == 2

    def test_ledger_stays_newest_first(self, sample_transactions, sample_rules, config):
        ledger, _ = add_transaction(
            sample_transactions, date(2026, 2, 20), "Corner bakery", Decimal("6.25"), sample_rules, config
        )
        assert [t.date for t in ledger] == sorted((t.date for t in ledger), reverse=True)
        assert len(ledger) == len(sample_transactions) + 1


class TestDeleteTransaction:
    """Tests for delete_transaction."""

    def test_removes_one(self, sample_transactions):
        target = sample_transactions[0].transaction_id
        remaining = delete_transaction(sample_transactions, target)

        assert len(remaining) == len(sample_transactions) - 1
        assert target not in {t.transaction_id for t in remaining}

    def test_unknown_id(self, sample_transactions):
        with pytest.raises(KeyError):
            delete_transaction(sample_transactions, "nope")


# ===================================================================
# Budgets and subscriptions
# ===================================================================


class TestBudgets:
    """Tests for set_budget and remove_budget."""

    def test_set_appends_new(self, march_budgets):
        updated = set_budget(march_budgets, "Dining", "2026-03", Decimal("120"))
        assert updated[-1] == Budget(category="Dining", month="2026-03", limit=Decimal("120"))
        assert len(updated) == len(march_budgets) + 1

    def test_set_replaces_in_place(self, march_budgets):
        updated = set_budget(march_budgets, "Fuel", "2026-03", Decimal("200"))
        assert len(updated) == len(march_budgets)
        assert updated[1] == Budget(category="Fuel", month="2026-03", limit=Decimal("200"))

    def test_set_other_month_is_separate(self, march_budgets):
        updated = set_budget(march_budgets, "Fuel", "2026-04", Decimal("200"))
        assert updated[1].limit == Decimal("180")
        assert len(updated) == len(march_budgets) + 1

    def test_remove(self, march_budgets):
        updated = remove_budget(march_budgets, "Groceries", "2026-02")
        assert [(b.category, b.month) for b in updated] == [
            ("Groceries", "2026-03"),
            ("Fuel", "2026-03"),
            ("Subscriptions", "2026-03"),
        ]

    def test_remove_missing(self, march_budgets):
        with pytest.raises(KeyError):
            remove_budget(march_budgets, "Dining", "2026-03")


class TestSubscriptionEdits:
    """Tests for add_subscription, set_subscription_active and remove_subscription."""

    def test_add_new(self):
        subs = add_subscription([], "  Hulu ", Decimal("7.99"))
        assert subs == [Subscription(merchant="Hulu", amount=Decimal("7.99"))]

    def test_add_existing_updates_amount_and_resumes(self):
        stored = [
            Subscription(
                merchant="Spotify",
                amount=Decimal("4.99"),
                last_charge=date(2026, 2, 12),
                active=False,
                match_count=2,
            )
        ]
        subs = add_subscription(stored, "SPOTIFY", Decimal("9.99"))

        assert len(subs) == 1
        assert subs[0].amount == Decimal("9.99")
        assert subs[0].active is True
        assert subs[0].last_charge == date(2026, 2, 12)
        assert subs[0].match_count == 2

    def test_pause_and_resume(self):
        stored = [Subscription(merchant="Spotify", amount=Decimal("9.99"))]

        paused = set_subscription_active(stored, "spotify", False)
        assert paused[0].active is False
        assert stored[0].active is True

        resumed = set_subscription_active(paused, "Spotify", True)
        assert resumed[0].active is True

    def test_pause_unknown(self):
        with pytest.raises(KeyError):
            set_subscription_active([], "Spotify", False)

    def test_remove(self):
        stored = [
            Subscription(merchant="Spotify", amount=Decimal("9.99")),
            Subscription(merchant="Hulu", amount=Decimal("7.99")),
        ]
        assert remove_subscription(stored, "SPOTIFY") == [stored[1]]

    def test_remove_unknown(self):
        with pytest.raises(KeyError):
            remove_subscription([], "Spotify")
