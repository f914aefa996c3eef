"""Roll raw ledger lines up into one aggregated P&L row per period.

Flow for one `PeriodKey`:

1. `fetch_all_lines` drains the paginated raw store (short page = last page).
2. `summarize` classifies every line and sums amounts per bucket.
3. The period is upserted, overwriting any earlier aggregate for the key.

`aggregate_many` runs keys one after another. A key that fails is recorded
in the `BatchSummary` and the run continues with the next key.
"""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal
from typing import Sequence

from pnl_pipeline.aggregate.classify import Bucket, classify
from pnl_pipeline.aggregate.splits import (
    split_cost_of_sales,
    split_labor,
    split_other_costs,
    split_revenue,
)
from pnl_pipeline.config import AggregatorConfig
from pnl_pipeline.errors import ConfigurationError, PnlPipelineError
from pnl_pipeline.models import (
    ZERO,
    AggregatedPeriod,
    BatchSummary,
    PeriodKey,
    RawLedgerLine,
)
from pnl_pipeline.stores import LedgerSource, PeriodSink

log = logging.getLogger(__name__)

SUCCEEDED = "succeeded"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True)
class PeriodOutcome:
    """Result of aggregating a single key.

    Attributes:
        key: The period that was processed.
        status: ``succeeded``, ``skipped`` (no raw data) or ``failed``.
        period: The stored aggregate when the key succeeded.
        error: Error message when the key failed.
    """
    key: PeriodKey
    status: str
    period: AggregatedPeriod | None = None
    error: str | None = None


def fetch_all_lines(source: LedgerSource, key: PeriodKey, page_size: int) -> list[RawLedgerLine]:
    """Read every raw line for `key`, one page at a time.

    Stops at the first page holding fewer than `page_size` rows. When the
    last page is exactly full, one extra (empty) page is requested.
    """
    lines: list[RawLedgerLine] = []
    offset = 0
    while True:
        page = source.fetch_page(key, offset, page_size)
        lines.extend(page)
        if len(page) < page_size:
            break
        offset += page_size
    log.debug("Fetched %d raw lines for %s", len(lines), key.label)
    return lines


def summarize(key: PeriodKey, lines: Sequence[RawLedgerLine]) -> AggregatedPeriod:
    """Build the aggregated period for `key` from its raw lines.

    Cost buckets are negated into positive costs; revenue, receivables and
    financial lines keep their sign. Net-result subtotal lines are counted
    but not summed. Other operating costs are also broken down by kind.
    """
    by_bucket: dict[Bucket, list[RawLedgerLine]] = defaultdict(list)
    for line in lines:
        by_bucket[classify(line.category, line.subcategory, line.gl_account)].append(line)

    def signed(bucket: Bucket) -> Decimal:
        return sum((l.amount for l in by_bucket[bucket]), ZERO)

    revenue = signed(Bucket.REVENUE)
    cost_of_sales = -signed(Bucket.COST_OF_SALES)
    labor = -signed(Bucket.LABOR)
    depreciation = -signed(Bucket.DEPRECIATION)
    other_costs = -signed(Bucket.OTHER_OPEX)
    receivables = signed(Bucket.RECEIVABLES_INCOME)
    financial = signed(Bucket.FINANCIAL)

    total_costs = cost_of_sales + labor + depreciation + other_costs
    resultaat = revenue - total_costs + receivables + financial

    revenue_split = split_revenue(by_bucket[Bucket.REVENUE])
    cos_split = split_cost_of_sales(by_bucket[Bucket.COST_OF_SALES])
    labor_split = split_labor(by_bucket[Bucket.LABOR])
    other_split = split_other_costs(by_bucket[Bucket.OTHER_OPEX])

    import_id = next((l.import_id for l in lines if l.import_id), None)

    return AggregatedPeriod(
        location_id=key.location_id,
        year=key.year,
        month=key.month,
        revenue_total=revenue,
        cost_of_sales_total=cost_of_sales,
        labor_total=labor,
        depreciation_total=depreciation,
        other_costs_total=other_costs,
        receivables_income=receivables,
        financial_income_expense=financial,
        resultaat=resultaat,
        total_costs=total_costs,
        revenue_food=revenue_split.first,
        revenue_beverage=revenue_split.second,
        cost_of_sales_food=cos_split.first,
        cost_of_sales_beverage=cos_split.second,
        labor_contract=labor_split.first,
        labor_flex=labor_split.second,
        **other_split,
        row_count=len(lines),
        excluded_row_count=len(by_bucket[Bucket.NET_RESULT]),
        import_id=import_id,
    )


def aggregate_period(
    source: LedgerSource,
    sink: PeriodSink,
    key: PeriodKey,
    config: AggregatorConfig,
) -> PeriodOutcome:
    """Aggregate and store one period.

    Raises:
        UpstreamFetchError: reading raw lines failed.
        DownstreamWriteError: storing the aggregate failed.
    """
    lines = fetch_all_lines(source, key, config.page_size)
    if not lines:
        log.info("No data found for %s", key.label)
        return PeriodOutcome(key=key, status=SKIPPED)

    period = summarize(key, lines)
    sink.upsert(period)
    log.info(
        "Aggregated %s: %d lines, revenue=%s resultaat=%s",
        key.label,
        period.row_count,
        period.revenue_total,
        period.resultaat,
    )
    return PeriodOutcome(key=key, status=SUCCEEDED, period=period)


def aggregate_many(
    source: LedgerSource,
    sink: PeriodSink,
    keys: Sequence[PeriodKey],
    config: AggregatorConfig,
) -> BatchSummary:
    """Aggregate `keys` sequentially, isolating failures per key."""
    summary = BatchSummary()
    log.info("Aggregating %d period(s)", len(keys))

    for i, key in enumerate(keys):
        if i > 0 and config.request_delay > 0:
            time.sleep(config.request_delay)

        summary.processed += 1
        try:
            outcome = aggregate_period(source, sink, key, config)
        except PnlPipelineError as e:
            log.error("Failed to aggregate %s: %s", key.label, e)
            outcome = PeriodOutcome(key=key, status=FAILED, error=str(e))

        record_outcome(summary, outcome, config.max_errors)

    log.info(
        "Aggregation finished: processed=%d succeeded=%d skipped=%d failed=%d",
        summary.processed,
        summary.succeeded,
        summary.skipped,
        summary.failed,
    )
    return summary


def record_outcome(summary: BatchSummary, outcome: PeriodOutcome, max_errors: int) -> None:
    """Fold one `PeriodOutcome` into `summary`, capping the error list."""
    label = outcome.key.label
    if outcome.status == SUCCEEDED:
        summary.succeeded += 1
        summary.succeeded_keys.append(label)
    elif outcome.status == SKIPPED:
        summary.skipped += 1
        summary.skipped_keys.append(label)
    else:
        summary.failed += 1
        summary.failed_keys.append(label)
        if len(summary.errors) < max_errors:
            summary.errors.append(f"{label}: {outcome.error}")


def resolve_keys(
    source: LedgerSource,
    location_id: str | None = None,
    year: int | None = None,
    month: int | None = None,
    aggregate_all: bool = False,
) -> list[PeriodKey]:
    """Turn request parameters into the list of keys to process.

    A fully specified (location, year, month) is used as-is. Anything less,
    or `aggregate_all`, discovers keys present in the raw store, narrowed by
    whichever of location and year were given.
    """
    if month is not None and not 1 <= month <= 12:
        raise ConfigurationError(f"month must be 1-12, got {month}")

    if not aggregate_all and location_id and year and month:
        return [PeriodKey(location_id, year, month)]

    if aggregate_all:
        location_id = year = month = None

    keys = source.distinct_keys(location_id=location_id, year=year)
    if month is not None:
        keys = [k for k in keys if k.month == month]
    return keys


def run_aggregation(
    source: LedgerSource,
    sink: PeriodSink,
    config: AggregatorConfig,
    location_id: str | None = None,
    year: int | None = None,
    month: int | None = None,
    aggregate_all: bool = False,
) -> BatchSummary:
    """Entry point shared by the CLI and the HTTP endpoint.

    Raises:
        ConfigurationError: invalid parameters.
        UpstreamFetchError: key discovery failed.
    """
    keys = resolve_keys(source, location_id, year, month, aggregate_all)
    if not keys:
        log.warning("No raw data periods matched the request")
    return aggregate_many(source, sink, keys, config)
