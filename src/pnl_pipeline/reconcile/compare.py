"""Compare aggregated P&L figures with accountant-supplied expectations.

Expected figures are a small table (one row per month) with the revenue and
result the accountant reported. The comparison is read-only: it produces a
pandas DataFrame with per-month deltas and a status, and a summary with
portfolio-level counts and totals.

Status per month:

- ``exact``: both deltas within `exact_margin` euro (rounding noise).
- ``minor``: both deltas within `tolerance` (fraction of the expected value).
- ``major``: anything else.
- ``missing``: no aggregated figures exist for the month.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

import pandas as pd

from pnl_pipeline.errors import ConfigurationError
from pnl_pipeline.models import AggregatedPeriod

log = logging.getLogger(__name__)

EXPECTED_COLUMNS = ["month", "revenue", "resultaat"]
DEFAULT_TOLERANCE = 0.025
DEFAULT_EXACT_MARGIN = 1.0

EXACT = "exact"
MINOR = "minor"
MAJOR = "major"
MISSING = "missing"


@dataclass(frozen=True)
class ReconciliationSummary:
    """Portfolio-level view of a comparison.

    Attributes:
        months: Number of expected months compared.
        exact / minor / major / missing: Month counts per status.
        expected_revenue / actual_revenue: Totals over months with data.
        expected_resultaat / actual_resultaat: Totals over months with data.
        tolerance: Fraction used for the minor/major boundary.
    """
    months: int
    exact: int
    minor: int
    major: int
    missing: int
    expected_revenue: float
    actual_revenue: float
    expected_resultaat: float
    actual_resultaat: float
    tolerance: float

    @property
    def acceptable(self) -> int:
        return self.exact + self.minor

    @property
    def revenue_delta(self) -> float:
        return self.actual_revenue - self.expected_revenue

    @property
    def resultaat_delta(self) -> float:
        return self.actual_resultaat - self.expected_resultaat


def load_expected(path: Path) -> pd.DataFrame:
    """Read expected monthly figures from a CSV or JSON file.

    Args:
        path: File with at least `month`, `revenue` and `resultaat` columns
            (JSON: a list of records).

    Raises:
        ConfigurationError: unreadable file or missing columns.
    """
    if not path.exists():
        raise ConfigurationError(f"Expected figures file not found: {path}")

    if path.suffix.lower() == ".json":
        df = pd.read_json(path, orient="records")
    else:
        df = pd.read_csv(path)

    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in EXPECTED_COLUMNS if c not in df.columns]
    if missing:
        raise ConfigurationError(
            f"{path} is missing column(s): {', '.join(missing)}"
        )

    df = df[EXPECTED_COLUMNS].copy()
    df["month"] = df["month"].astype(int)
    df["revenue"] = df["revenue"].astype(float)
    df["resultaat"] = df["resultaat"].astype(float)
    return df.sort_values("month").reset_index(drop=True)


def periods_to_frame(periods: Sequence[AggregatedPeriod]) -> pd.DataFrame:
    """Flatten aggregated periods into a (month, revenue_total, resultaat) frame."""
    records = [
        {
            "month": p.month,
            "revenue_total": float(p.revenue_total),
            "resultaat": float(p.resultaat),
        }
        for p in periods
    ]
    return pd.DataFrame(records, columns=["month", "revenue_total", "resultaat"])


def delta_pct(delta: float, expected: float) -> float:
    """Absolute delta as a percentage of the expected value."""
    if expected == 0:
        return 0.0 if delta == 0 else math.inf
    return abs(delta) / abs(expected) * 100.0


def _status(row: pd.Series, tolerance: float, exact_margin: float) -> str:
    if pd.isna(row["actual_revenue"]) or pd.isna(row["actual_resultaat"]):
        return MISSING
    if abs(row["revenue_delta"]) <= exact_margin and abs(row["resultaat_delta"]) <= exact_margin:
        return EXACT
    limit = tolerance * 100.0
    if row["revenue_delta_pct"] <= limit and row["resultaat_delta_pct"] <= limit:
        return MINOR
    return MAJOR


def compare_periods(
    actual: Sequence[AggregatedPeriod] | pd.DataFrame,
    expected: pd.DataFrame,
    tolerance: float = DEFAULT_TOLERANCE,
    exact_margin: float = DEFAULT_EXACT_MARGIN,
) -> pd.DataFrame:
    """Join actual and expected figures per month and grade each month.

    Args:
        actual: Aggregated periods for one location/year, or a frame with
            `month`, `revenue_total` and `resultaat` columns.
        expected: Output of `load_expected`.
        tolerance: Fraction of the expected value still counted as minor.
        exact_margin: Absolute euro difference still counted as exact.

    Returns:
        DataFrame with one row per expected month: expected/actual values,
        absolute and percentage deltas, and `status`.
    """
    if tolerance < 0 or exact_margin < 0:
        raise ConfigurationError("tolerance and exact_margin must be non-negative")

    actual_df = actual if isinstance(actual, pd.DataFrame) else periods_to_frame(actual)
    actual_df = actual_df[["month", "revenue_total", "resultaat"]].rename(
        columns={"revenue_total": "actual_revenue", "resultaat": "actual_resultaat"}
    ).astype({"month": int, "actual_revenue": float, "actual_resultaat": float})
    expected_df = expected[EXPECTED_COLUMNS].rename(
        columns={"revenue": "expected_revenue", "resultaat": "expected_resultaat"}
    )

    out = expected_df.merge(actual_df, on="month", how="left")
    out["revenue_delta"] = out["actual_revenue"] - out["expected_revenue"]
    out["resultaat_delta"] = out["actual_resultaat"] - out["expected_resultaat"]
    out["revenue_delta_pct"] = [
        delta_pct(d, e) if not pd.isna(d) else math.nan
        for d, e in zip(out["revenue_delta"], out["expected_revenue"])
    ]
    out["resultaat_delta_pct"] = [
        delta_pct(d, e) if not pd.isna(d) else math.nan
        for d, e in zip(out["resultaat_delta"], out["expected_resultaat"])
    ]
    if out.empty:
        out["status"] = pd.Series(dtype="object")
    else:
        out["status"] = out.apply(_status, axis=1, args=(tolerance, exact_margin))

    return out[
        [
            "month",
            "expected_revenue",
            "actual_revenue",
            "revenue_delta",
            "revenue_delta_pct",
            "expected_resultaat",
            "actual_resultaat",
            "resultaat_delta",
            "resultaat_delta_pct",
            "status",
        ]
    ].sort_values("month").reset_index(drop=True)


def summarize_comparison(
    df: pd.DataFrame, tolerance: float = DEFAULT_TOLERANCE
) -> ReconciliationSummary:
    """Count statuses and total the figures of a `compare_periods` frame."""
    counts = df["status"].value_counts()
    log.info("Compared %d month(s): %s", len(df), counts.to_dict())
    present = df[df["status"] != MISSING]
    return ReconciliationSummary(
        months=len(df),
        exact=int(counts.get(EXACT, 0)),
        minor=int(counts.get(MINOR, 0)),
        major=int(counts.get(MAJOR, 0)),
        missing=int(counts.get(MISSING, 0)),
        expected_revenue=float(present["expected_revenue"].sum()),
        actual_revenue=float(present["actual_revenue"].sum()),
        expected_resultaat=float(present["expected_resultaat"].sum()),
        actual_resultaat=float(present["actual_resultaat"].sum()),
        tolerance=tolerance,
    )


def render_report(df: pd.DataFrame, summary: ReconciliationSummary, title: str = "") -> str:
    """Format a comparison as a plain-text table plus summary lines."""
    table = df.to_string(
        index=False,
        float_format=lambda v: f"{v:,.2f}",
        na_rep="-",
    )
    lines = []
    if title:
        lines += [title, "=" * len(title)]
    lines += [
        table,
        "",
        f"Months compared: {summary.months} "
        f"(exact={summary.exact} minor={summary.minor} "
        f"major={summary.major} missing={summary.missing}, "
        f"tolerance={summary.tolerance * 100:.1f}%)",
        f"Revenue:   expected {summary.expected_revenue:,.2f}  "
        f"actual {summary.actual_revenue:,.2f}  delta {summary.revenue_delta:,.2f}",
        f"Resultaat: expected {summary.expected_resultaat:,.2f}  "
        f"actual {summary.actual_resultaat:,.2f}  delta {summary.resultaat_delta:,.2f}",
    ]
    return "\n".join(lines)
