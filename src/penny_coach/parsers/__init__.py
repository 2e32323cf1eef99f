"""CSV import boundary.

Turns loosely-formatted bank CSV rows into typed transactions.  All header
guessing lives here so the engine only ever sees validated
:class:`~penny_coach.models.Transaction` objects.
"""

from __future__ import annotations

from penny_coach.parsers.generic import (
    MalformedRowError,
    map_row,
    parse,
    read_rows,
    to_transactions,
)

__all__ = ["MalformedRowError", "map_row", "parse", "read_rows", "to_transactions"]
