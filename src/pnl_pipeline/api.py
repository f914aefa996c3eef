"""HTTP endpoint that triggers P&L aggregation.

``POST /api/finance/pnl-aggregate`` accepts an `AggregateRequest` body
(``{locationId, year, month, aggregateAll}``) and returns the batch summary.

Status codes:

- 200: the batch ran; individual key failures are reported in the body.
- 400: neither a location/year nor ``aggregateAll`` was given.
- 500: configuration is missing or invalid.
- 502: the store could not be opened or read while discovering keys.
"""

from __future__ import annotations

import logging
import threading
from contextlib import ExitStack, asynccontextmanager
from typing import Any, AsyncIterator, Callable

from fastapi import FastAPI, HTTPException

from pnl_pipeline import __version__
from pnl_pipeline.aggregate.rollup import run_aggregation
from pnl_pipeline.backends import LedgerStore, open_store
from pnl_pipeline.config import AggregatorConfig, Settings, get_settings
from pnl_pipeline.errors import ConfigurationError, PnlPipelineError
from pnl_pipeline.models import AggregateRequest, BatchSummary

log = logging.getLogger(__name__)

AGGREGATE_PATH = "/api/finance/pnl-aggregate"


def summary_payload(summary: BatchSummary) -> dict[str, Any]:
    """Response body for a finished batch."""
    return {
        "success": summary.success,
        "processed": summary.processed,
        "succeeded": summary.succeeded,
        "failed": summary.failed,
        "skipped": summary.skipped,
        "errors": summary.errors,
    }


def _validate(body: AggregateRequest) -> None:
    if body.aggregate_all:
        return
    if not body.location_id or body.year is None:
        raise HTTPException(
            status_code=400,
            detail="locationId and year are required unless aggregateAll is true",
        )


def create_app(
    store: LedgerStore | None = None,
    config: AggregatorConfig | None = None,
    settings_factory: Callable[[], Settings] = get_settings,
) -> FastAPI:
    """Build the FastAPI application.

    Args:
        store: Ledger store to use for every request. When omitted, settings
            are read on the first request and the configured backend is
            opened once, then kept until the app shuts down.
        config: Aggregator configuration used with an injected `store`.
        settings_factory: Callable returning `Settings` (overridable in tests).
    """
    resources = ExitStack()
    opened: dict[str, Any] = {}
    lock = threading.Lock()

    def current_store() -> tuple[LedgerStore, AggregatorConfig]:
        if store is not None:
            return store, config or AggregatorConfig()
        with lock:
            if "store" not in opened:
                settings = settings_factory()
                opened["store"] = resources.enter_context(open_store(settings, writable=True))
                opened["config"] = settings.aggregator
        return opened["store"], opened["config"]

    @asynccontextmanager
    async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
        yield
        resources.close()
        opened.clear()

    app = FastAPI(title="P&L Aggregation", version=__version__, lifespan=lifespan)

    @app.post(AGGREGATE_PATH)
    def aggregate(body: AggregateRequest) -> dict[str, Any]:
        _validate(body)
        log.info(
            "Aggregation requested: location=%s year=%s month=%s all=%s",
            body.location_id,
            body.year,
            body.month,
            body.aggregate_all,
        )
        try:
            ledger, agg_config = current_store()
            summary = run_aggregation(
                ledger,
                ledger,
                agg_config,
                location_id=body.location_id,
                year=body.year,
                month=body.month,
                aggregate_all=body.aggregate_all,
            )
        except ConfigurationError as e:
            log.error("Aggregation not started: %s", e)
            raise HTTPException(status_code=500, detail=str(e)) from e
        except PnlPipelineError as e:
            log.error("Could not reach the ledger store: %s", e)
            raise HTTPException(status_code=502, detail=str(e)) from e

        return summary_payload(summary)

    return app
