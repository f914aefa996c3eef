"""Detect repeated raw ledger lines.

A re-run import can leave the same GL line twice in the raw store, which
inflates every aggregate built on top of it. These helpers only report; they
never delete anything.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Sequence

import pandas as pd

from pnl_pipeline.models import RawLedgerLine

log = logging.getLogger(__name__)

LINE_FIELDS = ["category", "subcategory", "gl_account"]


def lines_frame(lines: Sequence[RawLedgerLine]) -> pd.DataFrame:
    """Flatten raw lines into a frame; missing subcategories become ""."""
    records = [
        {
            "month": l.month,
            "category": l.category,
            "subcategory": l.subcategory or "",
            "gl_account": l.gl_account,
            "amount": l.amount,
            "import_id": l.import_id or "",
        }
        for l in lines
    ]
    return pd.DataFrame(
        records, columns=["month"] + LINE_FIELDS + ["amount", "import_id"]
    )


def find_duplicate_lines(lines: Sequence[RawLedgerLine]) -> pd.DataFrame:
    """Group exact duplicates on (month, category, subcategory, gl_account, amount).

    Returns:
        DataFrame with the grouping columns plus `count` (> 1),
        `extra_amount` (amount counted more than once) and `import_ids`,
        ordered by largest `extra_amount` first.
    """
    columns = ["month"] + LINE_FIELDS + ["amount", "count", "extra_amount", "import_ids"]
    df = lines_frame(lines)
    if df.empty:
        return pd.DataFrame(columns=columns)

    keys = ["month"] + LINE_FIELDS + ["amount"]
    grouped = (
        df.groupby(keys, sort=False)
        .agg(
            count=("import_id", "size"),
            import_ids=("import_id", lambda s: ", ".join(sorted({i for i in s if i}))),
        )
        .reset_index()
    )
    dupes = grouped[grouped["count"] > 1].copy()
    dupes["extra_amount"] = [
        Decimal(a) * (c - 1) for a, c in zip(dupes["amount"], dupes["count"])
    ]
    dupes["_abs"] = [abs(v) for v in dupes["extra_amount"]]
    dupes = dupes.sort_values(["_abs", "month"], ascending=[False, True])

    log.info("Found %d duplicate group(s) in %d lines", len(dupes), len(df))
    return dupes[columns].reset_index(drop=True)


def find_amount_conflicts(lines: Sequence[RawLedgerLine]) -> pd.DataFrame:
    """Accounts booked more than once in a month with differing amounts."""
    columns = ["month"] + LINE_FIELDS + ["count", "amounts"]
    df = lines_frame(lines)
    if df.empty:
        return pd.DataFrame(columns=columns)

    grouped = (
        df.groupby(["month"] + LINE_FIELDS, sort=True)
        .agg(
            count=("amount", "size"),
            amounts=("amount", lambda s: sorted(set(s))),
        )
        .reset_index()
    )
    conflicts = grouped[
        (grouped["count"] > 1) & (grouped["amounts"].map(len) > 1)
    ]
    return conflicts[columns].reset_index(drop=True)


def extra_records(duplicates: pd.DataFrame) -> int:
    """Number of rows that would disappear if every duplicate group kept one."""
    if duplicates.empty:
        return 0
    return int((duplicates["count"] - 1).sum())


def lines_per_month(lines: Sequence[RawLedgerLine]) -> dict[int, int]:
    counts: dict[int, int] = {}
    for l in lines:
        counts[l.month] = counts.get(l.month, 0) + 1
    return dict(sorted(counts.items()))
