"""Click CLI entry point for the ``penny`` command.

Handles argument parsing, config loading, and error display. All business
logic is delegated to ``pipeline``, ``rules``, ``config``, and ``export``
modules.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import TypeVar

import click

from penny_coach import __version__

T = TypeVar("T")


def _validate_month(month: str) -> str:
    """Validate that *month* matches ``YYYY-MM`` and represents a real month.

    Returns the validated month string, or raises ``click.BadParameter``.
    """
    if not re.fullmatch(r"\d{4}-\d{2}", month):
        raise click.BadParameter(
            f"Invalid month format: {month!r}. Expected YYYY-MM (e.g. 2026-01)."
        )
    mon_int = int(month.split("-")[1])
    if mon_int < 1 or mon_int > 12:
        raise click.BadParameter(
            f"Invalid month: {month!r}. Month must be between 01 and 12."
        )
    return month


def _parse_amount(value: str, *, allow_negative: bool = True) -> Decimal:
    """Parse a command-line amount, or raise ``click.BadParameter``."""
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise click.BadParameter(f"Invalid amount: {value!r}.") from None
    if not amount.is_finite() or (amount < 0 and not allow_negative):
        raise click.BadParameter(f"Invalid amount: {value!r}.")
    return amount


def _resolve_month(month: str | None) -> str:
    """Validate *month*, defaulting to the current month; exits on error."""
    if month is None:
        return date.today().strftime("%Y-%m")
    try:
        return _validate_month(month)
    except click.BadParameter as exc:
        click.echo(f"Error: {exc.format_message()}", err=True)
        sys.exit(1)


def _configure_logging(verbose: bool, debug: bool) -> None:
    """Set up logging based on verbosity flags."""
    if debug:
        level = logging.DEBUG
    elif verbose:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(levelname)s: %(message)s",
        force=True,
    )


def _resolve_today(today: datetime | None) -> date:
    return today.date() if today is not None else date.today()


def _load(loader: Callable[[Path], T], root: Path, what: str) -> T:
    """Call *loader* on *root*, exiting with a readable error on failure."""
    try:
        return loader(root)
    except FileNotFoundError as exc:
        click.echo(
            f"Error: {exc}. Run 'penny init' to create the project structure.",
            err=True,
        )
        sys.exit(1)
    except Exception as exc:
        click.echo(f"Error loading {what}: {exc}", err=True)
        sys.exit(1)


_today_option = click.option(
    "--today",
    type=click.DateTime(formats=["%Y-%m-%d"]),
    default=None,
    help="Reference date (YYYY-MM-DD). Defaults to the current date.",
)
_verbose_option = click.option(
    "--verbose", is_flag=True, default=False, help="Detailed progress output."
)
_debug_option = click.option(
    "--debug", is_flag=True, default=False, help="Developer-level diagnostics."
)


@click.group()
@click.version_option(version=__version__, prog_name="penny-coach")
def cli() -> None:
    """Spot subscriptions, pace budgets, and flag duplicate charges in bank exports."""


@cli.command("import")
@click.argument("csv_file", type=click.Path(exists=True, dir_okay=False))
@_today_option
@_verbose_option
@_debug_option
def import_(csv_file: str, today: datetime | None, verbose: bool, debug: bool) -> None:
    """Import a bank CSV export into the ledger."""
    _configure_logging(verbose, debug)
    root = Path.cwd()

    from penny_coach.config import load_config, load_rules
    from penny_coach.export import print_import_summary, read_ledger, write_ledger
    from penny_coach.pipeline import import_file, merge_ledger
    from penny_coach.rules import rules_by_key

    config = _load(load_config, root, "configuration")
    rules = rules_by_key(_load(load_rules, root, "rules"))

    try:
        result = import_file(Path(csv_file), rules, config, _resolve_today(today))
        ledger = read_ledger(root / config.output_dir)
        merged = merge_ledger(ledger, result.transactions)
    except Exception as exc:
        click.echo(f"Error importing {csv_file}: {exc}", err=True)
        sys.exit(1)

    result.warnings.extend(merged.warnings)

    try:
        output_path = write_ledger(merged.transactions, root / config.output_dir)
        if verbose:
            click.echo(f"Wrote ledger to {output_path}")
    except Exception as exc:
        click.echo(f"Error writing ledger: {exc}", err=True)
        sys.exit(1)

    print_import_summary(
        result,
        imported=len(merged.transactions) - len(ledger),
        ledger_size=len(merged.transactions),
    )
    if result.errors:
        sys.exit(1)


@cli.command()
@_today_option
@click.option("--save", is_flag=True, default=False, help="Store newly detected subscriptions.")
@_verbose_option
@_debug_option
def subscriptions(today: datetime | None, save: bool, verbose: bool, debug: bool) -> None:
    """Detect recurring charges and show the subscription list."""
    _configure_logging(verbose, debug)
    root = Path.cwd()

    from penny_coach.config import (
        load_budgets,
        load_config,
        load_subscriptions,
        save_subscriptions,
    )
    from penny_coach.export import print_findings, print_subscriptions, read_ledger
    from penny_coach.pipeline import analyze, apply_upserts, count_upserts
    from penny_coach.recurring import rank_findings

    config = _load(load_config, root, "configuration")
    stored = _load(load_subscriptions, root, "subscriptions")
    budgets = _load(load_budgets, root, "budgets")
    ledger = read_ledger(root / config.output_dir)

    result = analyze(ledger, budgets, stored, config, _resolve_today(today))

    print_findings(rank_findings(result.findings, config.display_limit))
    print_subscriptions(result.subscriptions)

    if not result.upserts:
        return

    added, reactivated = count_upserts(stored, result.upserts)
    if not save:
        if added:
            click.echo(f"{added} new subscription(s) detected.")
        if reactivated:
            click.echo(f"{reactivated} paused subscription(s) charged again.")
        click.echo("Re-run with --save to store them.")
        return

    try:
        save_subscriptions(root, apply_upserts(stored, result.upserts))
    except Exception as exc:
        # The analysis above is still valid; only the save failed.
        click.echo(f"Error saving subscriptions: {exc}", err=True)
        sys.exit(1)
    if added:
        click.echo(f"Saved {added} new subscription(s).")
    if reactivated:
        click.echo(f"Reactivated {reactivated} paused subscription(s).")


@cli.command()
@_today_option
@_verbose_option
@_debug_option
def insights(today: datetime | None, verbose: bool, debug: bool) -> None:
    """Show budget pacing and duplicate-charge insights for the current month."""
    _configure_logging(verbose, debug)
    root = Path.cwd()

    from penny_coach.config import load_budgets, load_config, load_subscriptions
    from penny_coach.export import print_insights, read_ledger
    from penny_coach.pipeline import analyze

    config = _load(load_config, root, "configuration")
    budgets = _load(load_budgets, root, "budgets")
    stored = _load(load_subscriptions, root, "subscriptions")
    ledger = read_ledger(root / config.output_dir)

    result = analyze(ledger, budgets, stored, config, _resolve_today(today))
    print_insights(result.insights)


@cli.command()
@click.argument("merchant")
@click.argument("category")
@click.option("--subscription", is_flag=True, default=False, help="Mark the merchant as a subscription.")
def rule(merchant: str, category: str, subscription: bool) -> None:
    """Save a rule mapping MERCHANT to CATEGORY (replaces any existing rule)."""
    root = Path.cwd()

    from penny_coach.config import load_rules, save_rules
    from penny_coach.rules import rules_by_key, save_rule

    rules = rules_by_key(_load(load_rules, root, "rules"))
    saved = save_rule(rules, merchant, category, is_subscription=subscription)

    try:
        save_rules(root, list(rules.values()))
    except Exception as exc:
        click.echo(f"Error saving rule: {exc}", err=True)
        sys.exit(1)

    flag = " (subscription)" if saved.is_subscription else ""
    click.echo(f"Rule saved: {saved.merchant_key} -> {saved.category}{flag}")


@cli.command()
@click.argument("transaction_id")
@click.option("--merchant", required=True, help="New merchant text.")
def edit(transaction_id: str, merchant: str) -> None:
    """Change a transaction's merchant and re-apply rules."""
    root = Path.cwd()

    from penny_coach.config import load_config, load_rules
    from penny_coach.export import read_ledger, write_ledger
    from penny_coach.pipeline import edit_transaction
    from penny_coach.rules import rules_by_key

    config = _load(load_config, root, "configuration")
    rules = rules_by_key(_load(load_rules, root, "rules"))
    ledger = read_ledger(root / config.output_dir)

    try:
        ledger = edit_transaction(ledger, transaction_id, merchant, rules, config)
    except KeyError:
        click.echo(f"Error: no transaction with id {transaction_id!r}", err=True)
        sys.exit(1)

    try:
        write_ledger(ledger, root / config.output_dir)
    except Exception as exc:
        click.echo(f"Error writing ledger: {exc}", err=True)
        sys.exit(1)

    edited = next(t for t in ledger if t.transaction_id == transaction_id)
    click.echo(f"Updated {transaction_id}: {edited.merchant_key} -> {edited.category}")


@cli.command()
@click.argument("txn_date", metavar="DATE", type=click.DateTime(formats=["%Y-%m-%d"]))
@click.argument("merchant")
@click.argument("amount")
@click.option("--category", default="", help="Category to use instead of the rule's.")
def add(txn_date: datetime, merchant: str, amount: str, category: str) -> None:
    """Add a transaction by hand.

    AMOUNT is positive for spending. Put ``--`` before a negative refund.
    """
    root = Path.cwd()

    try:
        value = _parse_amount(amount)
    except click.BadParameter as exc:
        click.echo(f"Error: {exc.format_message()}", err=True)
        sys.exit(1)
    if not merchant.strip():
        click.echo("Error: merchant must not be empty.", err=True)
        sys.exit(1)

    from penny_coach.config import load_config, load_rules
    from penny_coach.export import read_ledger, write_ledger
    from penny_coach.pipeline import add_transaction
    from penny_coach.rules import rules_by_key

    config = _load(load_config, root, "configuration")
    rules = rules_by_key(_load(load_rules, root, "rules"))
    ledger = read_ledger(root / config.output_dir)

    ledger, txn = add_transaction(
        ledger, txn_date.date(), merchant, value, rules, config, category=category.strip()
    )

    try:
        write_ledger(ledger, root / config.output_dir)
    except Exception as exc:
        click.echo(f"Error writing ledger: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Added {txn.transaction_id}: {txn.merchant_key} {txn.amount} -> {txn.category}")


@cli.command()
@click.argument("transaction_id")
def delete(transaction_id: str) -> None:
    """Remove a transaction from the ledger."""
    root = Path.cwd()

    from penny_coach.config import load_config
    from penny_coach.export import read_ledger, write_ledger
    from penny_coach.pipeline import delete_transaction

    config = _load(load_config, root, "configuration")
    ledger = read_ledger(root / config.output_dir)

    try:
        ledger = delete_transaction(ledger, transaction_id)
    except KeyError:
        click.echo(f"Error: no transaction with id {transaction_id!r}", err=True)
        sys.exit(1)

    try:
        write_ledger(ledger, root / config.output_dir)
    except Exception as exc:
        click.echo(f"Error writing ledger: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Deleted {transaction_id}")


_month_option = click.option(
    "--month", default=None, help="Budget month (YYYY-MM). Defaults to the current month."
)


@cli.group()
def budget() -> None:
    """Set, remove, and list monthly category budgets."""


@budget.command("set")
@click.argument("category")
@click.argument("limit")
@_month_option
def budget_set(category: str, limit: str, month: str | None) -> None:
    """Set the LIMIT for CATEGORY (replaces any existing limit for the month)."""
    root = Path.cwd()
    month = _resolve_month(month)
    try:
        value = _parse_amount(limit, allow_negative=False)
    except click.BadParameter as exc:
        click.echo(f"Error: {exc.format_message()}", err=True)
        sys.exit(1)

    from penny_coach.config import load_budgets, save_budgets
    from penny_coach.pipeline import set_budget

    budgets = _load(load_budgets, root, "budgets")

    try:
        save_budgets(root, set_budget(budgets, category, month, value))
    except Exception as exc:
        click.echo(f"Error saving budgets: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Budget set: {category} {month} = {value:,.2f}")


@budget.command("remove")
@click.argument("category")
@_month_option
def budget_remove(category: str, month: str | None) -> None:
    """Remove the limit for CATEGORY."""
    root = Path.cwd()
    month = _resolve_month(month)

    from penny_coach.config import load_budgets, save_budgets
    from penny_coach.pipeline import remove_budget

    budgets = _load(load_budgets, root, "budgets")

    try:
        budgets = remove_budget(budgets, category, month)
    except KeyError:
        click.echo(f"Error: no budget for {category} in {month}", err=True)
        sys.exit(1)

    try:
        save_budgets(root, budgets)
    except Exception as exc:
        click.echo(f"Error saving budgets: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Budget removed: {category} {month}")


@budget.command("list")
@_month_option
def budget_list(month: str | None) -> None:
    """Show the limits set for a month."""
    root = Path.cwd()
    month = _resolve_month(month)

    from penny_coach.config import load_budgets
    from penny_coach.export import print_budgets

    print_budgets(_load(load_budgets, root, "budgets"), month)


@cli.group()
def sub() -> None:
    """Add, pause, resume, and remove stored subscriptions."""


def _update_subscriptions(update: Callable[[list], list], merchant: str) -> None:
    """Load subscriptions, apply *update*, and save; exits on error."""
    root = Path.cwd()

    from penny_coach.config import load_subscriptions, save_subscriptions

    stored = _load(load_subscriptions, root, "subscriptions")
    try:
        updated = update(stored)
    except KeyError:
        click.echo(f"Error: no subscription for {merchant!r}", err=True)
        sys.exit(1)

    try:
        save_subscriptions(root, updated)
    except Exception as exc:
        click.echo(f"Error saving subscriptions: {exc}", err=True)
        sys.exit(1)


@sub.command("add")
@click.argument("merchant")
@click.argument("amount")
def sub_add(merchant: str, amount: str) -> None:
    """Track MERCHANT as a subscription costing AMOUNT."""
    try:
        value = _parse_amount(amount, allow_negative=False)
    except click.BadParameter as exc:
        click.echo(f"Error: {exc.format_message()}", err=True)
        sys.exit(1)
    if not merchant.strip():
        click.echo("Error: merchant must not be empty.", err=True)
        sys.exit(1)

    from penny_coach.pipeline import add_subscription

    _update_subscriptions(lambda subs: add_subscription(subs, merchant, value), merchant)
    click.echo(f"Subscription saved: {merchant.strip()} {value:,.2f}")


@sub.command("pause")
@click.argument("merchant")
def sub_pause(merchant: str) -> None:
    """Mark MERCHANT's subscription inactive."""
    from penny_coach.pipeline import set_subscription_active

    _update_subscriptions(lambda subs: set_subscription_active(subs, merchant, False), merchant)
    click.echo(f"Paused {merchant}")


@sub.command("resume")
@click.argument("merchant")
def sub_resume(merchant: str) -> None:
    """Mark MERCHANT's subscription active again."""
    from penny_coach.pipeline import set_subscription_active

    _update_subscriptions(lambda subs: set_subscription_active(subs, merchant, True), merchant)
    click.echo(f"Resumed {merchant}")


@sub.command("remove")
@click.argument("merchant")
def sub_remove(merchant: str) -> None:
    """Stop tracking MERCHANT."""
    from penny_coach.pipeline import remove_subscription

    _update_subscriptions(lambda subs: remove_subscription(subs, merchant), merchant)
    click.echo(f"Removed {merchant}")


@cli.command()
@click.option(
    "--dir", "target_dir", default=".", type=click.Path(), help="Directory to initialize."
)
def init(target_dir: str) -> None:
    """Initialize a new data directory with the standard structure."""
    from penny_coach.config import initialize

    target = Path(target_dir).resolve()

    try:
        initialize(target)
    except Exception as exc:
        click.echo(f"Error initializing project: {exc}", err=True)
        sys.exit(1)

    click.echo(f"Initialized penny coach project in {target}")
