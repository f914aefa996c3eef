"""Open the configured ledger store (MongoDB or Supabase)."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, Union

from pnl_pipeline.config import Settings
from pnl_pipeline.db import MongoLedgerStore, get_client, get_db
from pnl_pipeline.stores import SupabaseLedgerStore, create_supabase_store

log = logging.getLogger(__name__)

LedgerStore = Union[MongoLedgerStore, SupabaseLedgerStore]


@contextmanager
def open_store(settings: Settings, writable: bool = False) -> Iterator[LedgerStore]:
    """Yield a store for `settings.backend`, closing the Mongo client on exit.

    Args:
        settings: Loaded settings.
        writable: Create the Mongo indexes the aggregator relies on. Read-only
            diagnostics leave this off so they work with read-only credentials.
    """
    if settings.backend == "supabase":
        log.info("Using Supabase tables %s -> %s", settings.raw_collection, settings.aggregated_collection)
        yield create_supabase_store(
            settings.supabase_url,
            settings.supabase_key,
            settings.raw_collection,
            settings.aggregated_collection,
        )
        return

    client = get_client(settings.mongo_uri)
    try:
        db = get_db(client, settings.mongo_db)
        log.info(
            "Using MongoDB %s: %s -> %s",
            settings.mongo_db,
            settings.raw_collection,
            settings.aggregated_collection,
        )
        store = MongoLedgerStore.from_db(db, settings.raw_collection, settings.aggregated_collection)
        if writable:
            store.ensure_indexes()
        yield store
    finally:
        client.close()
