"""Forward aggregation work to a running aggregation API.

Used by ``pnl_pipeline aggregate --api-url``: periods are discovered in the
raw store locally, then each one is posted to
``{api_url}/api/finance/pnl-aggregate`` as a single-period request. The
per-key results are folded into one `BatchSummary`, exactly as a local run
would report them.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Sequence

from pnl_pipeline.aggregate.rollup import (
    FAILED,
    SKIPPED,
    SUCCEEDED,
    PeriodOutcome,
    record_outcome,
)
from pnl_pipeline.api import AGGREGATE_PATH
from pnl_pipeline.config import AggregatorConfig
from pnl_pipeline.errors import DownstreamWriteError, PnlPipelineError
from pnl_pipeline.models import BatchSummary, PeriodKey

log = logging.getLogger(__name__)


def post_period(session: Any, api_url: str, key: PeriodKey, timeout: float = 120.0) -> PeriodOutcome:
    """Ask the API to aggregate one period.

    Args:
        session: `requests.Session` (or compatible object with ``post``).
        api_url: Base URL of the API, without trailing slash.
        key: Period to aggregate.
        timeout: Request timeout in seconds.

    Raises:
        DownstreamWriteError: transport failure, non-2xx status, or a
            response reporting a failed key.
    """
    import requests  # type: ignore[import-untyped]  # local import

    body = {
        "locationId": key.location_id,
        "year": key.year,
        "month": key.month,
        "aggregateAll": False,
    }
    try:
        resp = session.post(f"{api_url}{AGGREGATE_PATH}", json=body, timeout=timeout)
        resp.raise_for_status()
        payload = resp.json()
    except requests.RequestException as e:
        raise DownstreamWriteError(f"API request failed: {e}") from e
    except ValueError as e:
        raise DownstreamWriteError(f"API returned invalid JSON: {e}") from e

    if payload.get("failed"):
        errors = payload.get("errors") or ["aggregation failed"]
        raise DownstreamWriteError("; ".join(errors))
    if payload.get("skipped"):
        return PeriodOutcome(key=key, status=SKIPPED)
    return PeriodOutcome(key=key, status=SUCCEEDED)


def aggregate_via_api(
    api_url: str,
    keys: Sequence[PeriodKey],
    config: AggregatorConfig,
    session: Any = None,
) -> BatchSummary:
    """Post `keys` one by one to the API, isolating failures per key."""
    if session is None:
        import requests  # type: ignore[import-untyped]  # local import

        session = requests.Session()

    summary = BatchSummary()
    log.info("Forwarding %d period(s) to %s", len(keys), api_url)

    for i, key in enumerate(keys):
        if i > 0 and config.request_delay > 0:
            time.sleep(config.request_delay)

        summary.processed += 1
        try:
            outcome = post_period(session, api_url, key)
        except PnlPipelineError as e:
            log.error("API aggregation failed for %s: %s", key.label, e)
            outcome = PeriodOutcome(key=key, status=FAILED, error=str(e))
        record_outcome(summary, outcome, config.max_errors)

    log.info(
        "API aggregation finished: processed=%d succeeded=%d skipped=%d failed=%d",
        summary.processed,
        summary.succeeded,
        summary.skipped,
        summary.failed,
    )
    return summary
