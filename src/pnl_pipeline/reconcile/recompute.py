"""Recompute P&L period totals straight from raw ledger documents.

Used by `reconcile --source raw` to check the aggregated store independently
of it: raw documents are loaded into a Dask DataFrame, each line is bucketed
with the same classifier the aggregator uses, and amounts are summed per
(location, year, month, bucket). The result is pivoted into one row per
period with the aggregated column names, so it can be fed directly to
`compare_periods`.

Amounts are floats here. The aggregated store stays the source of truth for
exact Decimal figures.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping
from typing import cast, Any as TypingAny

import dask.dataframe as dd
import pandas as pd

from pnl_pipeline.aggregate.classify import Bucket, classify
from pnl_pipeline.stores import line_from_document

log = logging.getLogger(__name__)

KEY_COLUMNS = ["location_id", "year", "month"]
LINE_COLUMNS = KEY_COLUMNS + ["category", "subcategory", "gl_account", "amount"]
PARTITION_ROWS = 200_000

# bucket -> (aggregated column, sign applied to the signed ledger sum)
BUCKET_COLUMNS: dict[Bucket, tuple[str, int]] = {
    Bucket.REVENUE: ("revenue_total", 1),
    Bucket.COST_OF_SALES: ("cost_of_sales_total", -1),
    Bucket.LABOR: ("labor_total", -1),
    Bucket.DEPRECIATION: ("depreciation_total", -1),
    Bucket.OTHER_OPEX: ("other_costs_total", -1),
    Bucket.RECEIVABLES_INCOME: ("receivables_income", 1),
    Bucket.FINANCIAL: ("financial_income_expense", 1),
}


def raw_frame(docs: Iterable[Mapping[str, Any]]) -> pd.DataFrame:
    """Normalize raw documents into a pandas frame with canonical columns.

    Raises:
        UpstreamFetchError: a document does not fit the raw line schema.
    """
    records = []
    for doc in docs:
        line = line_from_document(doc)
        records.append(
            {
                "location_id": line.location_id,
                "year": line.year,
                "month": line.month,
                "category": line.category,
                "subcategory": line.subcategory or "",
                "gl_account": line.gl_account,
                "amount": float(line.amount),
            }
        )
    return pd.DataFrame(records, columns=LINE_COLUMNS).astype(
        {"year": int, "month": int, "amount": float}
    )


def load_raw_ddf(docs: Iterable[Mapping[str, Any]], partition_rows: int = PARTITION_ROWS) -> Any:
    """Load raw documents into a Dask DataFrame.

    Args:
        docs: Raw store documents (field names resolved via `FIELD_ALIASES`).
        partition_rows: Approximate rows per Dask partition.

    Returns:
        Dask DataFrame with columns `LINE_COLUMNS`.
    """
    pdf = raw_frame(docs)
    nparts = max(1, len(pdf) // partition_rows)
    log.info("Loaded %d raw lines into %d Dask partitions", len(pdf), nparts)

    dd_mod = cast(TypingAny, dd)
    return dd_mod.from_pandas(pdf, npartitions=nparts)


def _bucket_partition(pdf: pd.DataFrame) -> pd.DataFrame:
    out = pdf.copy()
    out["bucket"] = [
        classify(c, s or None, g).value
        for c, s, g in zip(out["category"], out["subcategory"], out["gl_account"])
    ]
    return out


def bucket_ddf(ddf: Any) -> Any:
    """Add a `bucket` column holding the classifier result for each line."""
    meta = ddf._meta.assign(bucket=pd.Series(dtype="object"))
    return ddf.map_partitions(_bucket_partition, meta=meta)


def bucket_sums(ddf: Any) -> pd.DataFrame:
    """Signed ledger sum and line count per (location, year, month, bucket)."""
    grouped = (
        bucket_ddf(ddf)
        .groupby(KEY_COLUMNS + ["bucket"])
        .agg({"amount": "sum", "category": "count"})
        .reset_index()
        .rename(columns={"category": "lines"})
    )
    return grouped.compute()


def recompute_from_raw(ddf: Any) -> pd.DataFrame:
    """Rebuild aggregated headline figures per period from raw lines.

    Args:
        ddf: Dask DataFrame as produced by `load_raw_ddf`.

    Returns:
        pandas DataFrame with one row per period: key columns, the seven
        bucket totals, `total_costs`, `resultaat`, `row_count` and
        `excluded_row_count`.
    """
    value_columns = [col for col, _ in BUCKET_COLUMNS.values()]
    out_columns = KEY_COLUMNS + value_columns + [
        "total_costs", "resultaat", "row_count", "excluded_row_count",
    ]

    sums = bucket_sums(ddf)
    if sums.empty:
        return pd.DataFrame(columns=out_columns)

    wide = sums.pivot_table(
        index=KEY_COLUMNS, columns="bucket", values="amount", aggfunc="sum", fill_value=0.0
    )
    counts = sums.pivot_table(
        index=KEY_COLUMNS, columns="bucket", values="lines", aggfunc="sum", fill_value=0
    )

    out = pd.DataFrame(index=wide.index)
    for bucket, (column, sign) in BUCKET_COLUMNS.items():
        out[column] = sign * wide[bucket.value] if bucket.value in wide.columns else 0.0

    out["total_costs"] = (
        out["cost_of_sales_total"]
        + out["labor_total"]
        + out["depreciation_total"]
        + out["other_costs_total"]
    )
    out["resultaat"] = (
        out["revenue_total"]
        - out["total_costs"]
        + out["receivables_income"]
        + out["financial_income_expense"]
    )
    out["row_count"] = counts.sum(axis=1).astype(int)
    net = Bucket.NET_RESULT.value
    out["excluded_row_count"] = counts[net].astype(int) if net in counts.columns else 0

    out = out.reset_index()
    out.columns.name = None
    return out[out_columns].sort_values(KEY_COLUMNS).reset_index(drop=True)


def period_frame(recomputed: pd.DataFrame, location_id: str, year: int) -> pd.DataFrame:
    """Rows of `recomputed` for one location and year."""
    mask = (recomputed["location_id"] == location_id) & (recomputed["year"] == year)
    return recomputed[mask].reset_index(drop=True)

