"""Configuration loading, writing, and project initialization.

Reads TOML files using stdlib ``tomllib`` and writes them using
``tomli_w``.  Besides ``config.toml`` this module owns the small data files
that persist user decisions between runs:

* ``rules.toml`` -- one table per merchant key.
* ``budgets.toml`` -- one table per month, category to limit.
* ``subscriptions.toml`` -- an array of subscription tables.

Amounts are written as strings so ``Decimal`` values round-trip exactly.
Depends only on ``models.py``.
"""

from __future__ import annotations

import sys
from datetime import date
from decimal import Decimal
from pathlib import Path

if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomllib
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

import tomli_w

from penny_coach.models import AppConfig, Budget, MerchantRule, Subscription

# ---------------------------------------------------------------------------
# Default file content
# ---------------------------------------------------------------------------

_DEFAULT_CONFIG_TOML = """\
# Penny Coach configuration

[general]
output_dir = "output"
default_category = "Misc"       # Category used when no rule matches

[import]
bank_outflow_negative = true    # Bank CSVs show spending as negative amounts

[detection]
lookback_days = 120
display_limit = 12

[insights]
max_insights = 5
overspend_slack = "10"          # Amount a category may run ahead of pace
under_pace_slack = "20"         # Amount total spend must trail pace by
"""

_DEFAULT_RULES_TOML = """\
# Merchant rules, one table per normalized merchant key.
# Saving a rule for a merchant that already has one replaces it.

# Examples:
# ["Netflix.com"]
# category = "Subscriptions"
# subscription = true
"""

_DEFAULT_BUDGETS_TOML = """\
# Monthly budgets: one table per month, category = limit.

# Examples:
# ["2026-01"]
# Groceries = "450"
# Fuel = "180"
"""

_DEFAULT_SUBSCRIPTIONS_TOML = """\
# Confirmed subscriptions.  New detections are appended by
# `penny subscriptions --save`; edit amounts or set active = false freely.
"""

# Directories that ``initialize`` creates.
_INIT_DIRS = ["output"]


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(root: Path) -> AppConfig:
    """Load ``config.toml`` from *root* and return an :class:`AppConfig`.

    Args:
        root: Project root directory containing ``config.toml``.

    Returns:
        A fully-populated :class:`AppConfig` instance.  Missing keys take
        their defaults.

    Raises:
        FileNotFoundError: If ``config.toml`` does not exist.
    """
    data = _read_toml(root / "config.toml")
    defaults = AppConfig()

    general = data.get("general", {})
    import_section = data.get("import", {})
    detection = data.get("detection", {})
    insights = data.get("insights", {})

    return AppConfig(
        output_dir=general.get("output_dir", defaults.output_dir),
        default_category=general.get("default_category", defaults.default_category),
        bank_outflow_negative=import_section.get(
            "bank_outflow_negative", defaults.bank_outflow_negative
        ),
        lookback_days=detection.get("lookback_days", defaults.lookback_days),
        display_limit=detection.get("display_limit", defaults.display_limit),
        max_insights=insights.get("max_insights", defaults.max_insights),
        overspend_slack=_decimal(insights.get("overspend_slack", defaults.overspend_slack)),
        under_pace_slack=_decimal(insights.get("under_pace_slack", defaults.under_pace_slack)),
    )


def load_rules(root: Path) -> list[MerchantRule]:
    """Load ``rules.toml`` and return its rules in file order.

    Args:
        root: Project root directory containing ``rules.toml``.

    Returns:
        A list of :class:`MerchantRule` objects, at most one per key.

    Raises:
        FileNotFoundError: If ``rules.toml`` does not exist.
    """
    data = _read_toml(root / "rules.toml")
    return [
        MerchantRule(
            merchant_key=key,
            category=section["category"],
            is_subscription=bool(section.get("subscription", False)),
        )
        for key, section in data.items()
        if isinstance(section, dict)
    ]


def save_rules(root: Path, rules: list[MerchantRule]) -> None:
    """Rewrite ``rules.toml`` with *rules*.

    The header comment block of the existing file is preserved; every rule
    table below it is replaced.

    Args:
        root: Project root directory containing ``rules.toml``.
        rules: The complete list of rules to write.
    """
    table = {
        rule.merchant_key: {"category": rule.category, "subscription": rule.is_subscription}
        for rule in rules
    }
    _write_with_header(root / "rules.toml", _DEFAULT_RULES_TOML, table)


def load_budgets(root: Path) -> list[Budget]:
    """Load ``budgets.toml`` and return a flat list of budgets.

    Raises:
        FileNotFoundError: If ``budgets.toml`` does not exist.
    """
    data = _read_toml(root / "budgets.toml")
    budgets: list[Budget] = []
    for month, limits in data.items():
        if not isinstance(limits, dict):
            continue
        for category, limit in limits.items():
            budgets.append(Budget(category=category, month=month, limit=_decimal(limit)))
    return budgets


def save_budgets(root: Path, budgets: list[Budget]) -> None:
    """Rewrite ``budgets.toml`` with *budgets*, grouped by month."""
    table: dict[str, dict[str, str]] = {}
    for budget in budgets:
        table.setdefault(budget.month, {})[budget.category] = str(budget.limit)
    _write_with_header(root / "budgets.toml", _DEFAULT_BUDGETS_TOML, table)


def load_subscriptions(root: Path) -> list[Subscription]:
    """Load ``subscriptions.toml``.

    Raises:
        FileNotFoundError: If ``subscriptions.toml`` does not exist.
    """
    data = _read_toml(root / "subscriptions.toml")
    return [
        Subscription(
            merchant=entry["merchant"],
            amount=_decimal(entry["amount"]),
            last_charge=_date_or_none(entry.get("last_charge")),
            active=bool(entry.get("active", True)),
            match_count=int(entry.get("match_count", 0)),
        )
        for entry in data.get("subscriptions", [])
    ]


def save_subscriptions(root: Path, subscriptions: list[Subscription]) -> None:
    """Rewrite ``subscriptions.toml`` with *subscriptions*."""
    entries = []
    for sub in subscriptions:
        entry: dict[str, object] = {
            "merchant": sub.merchant,
            "amount": str(sub.amount),
            "active": sub.active,
            "match_count": sub.match_count,
        }
        if sub.last_charge is not None:
            entry["last_charge"] = sub.last_charge
        entries.append(entry)
    table = {"subscriptions": entries} if entries else {}
    _write_with_header(root / "subscriptions.toml", _DEFAULT_SUBSCRIPTIONS_TOML, table)


def initialize(target_dir: Path) -> None:
    """Create the standard directory structure and default config files.

    Idempotent: existing directories are left alone and existing files
    are **not** overwritten.

    Args:
        target_dir: The directory in which to create the project structure.
    """
    target_dir = Path(target_dir)
    target_dir.mkdir(parents=True, exist_ok=True)

    for d in _INIT_DIRS:
        (target_dir / d).mkdir(parents=True, exist_ok=True)

    _write_if_missing(target_dir / "config.toml", _DEFAULT_CONFIG_TOML)
    _write_if_missing(target_dir / "rules.toml", _DEFAULT_RULES_TOML)
    _write_if_missing(target_dir / "budgets.toml", _DEFAULT_BUDGETS_TOML)
    _write_if_missing(target_dir / "subscriptions.toml", _DEFAULT_SUBSCRIPTIONS_TOML)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _read_toml(path: Path) -> dict:
    """Read and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _decimal(value: object) -> Decimal:
    """Convert a TOML string, integer, or float to Decimal."""
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)  # type: ignore[arg-type]


def _date_or_none(value: object) -> date | None:
    """Accept a TOML date or an ISO ``YYYY-MM-DD`` string."""
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _write_with_header(path: Path, default_text: str, table: dict) -> None:
    """Write *table* to *path* below the file's leading comment block.

    Leading ``#`` comment and blank lines of the existing file (or of
    *default_text* if the file is missing) are kept verbatim.
    """
    original_text = path.read_text(encoding="utf-8") if path.exists() else default_text

    header_lines: list[str] = []
    for line in original_text.splitlines():
        if line.strip() and not line.lstrip().startswith("#"):
            break
        header_lines.append(line)
    header = "\n".join(header_lines).rstrip() + "\n"

    body = tomli_w.dumps(table) if table else ""
    path.write_text(header + ("\n" + body if body else ""), encoding="utf-8")


def _write_if_missing(path: Path, content: str) -> None:
    """Write *content* to *path* only if the file does not already exist."""
    if not path.exists():
        path.write_text(content, encoding="utf-8")
