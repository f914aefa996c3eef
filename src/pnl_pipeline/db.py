"""MongoDB helpers and the Mongo-backed ledger store.

Centralizes creation of Mongo clients and the `MongoLedgerStore` adapter the
aggregator, CLI and API use for the raw and aggregated P&L collections.
"""

from __future__ import annotations

import logging
from typing import Any

import certifi
from pymongo import ASCENDING, MongoClient
from pymongo.collection import Collection
from pymongo.database import Database
from pymongo.errors import PyMongoError

from pnl_pipeline.errors import DownstreamWriteError, UpstreamFetchError
from pnl_pipeline.models import AggregatedPeriod, PeriodKey, RawLedgerLine
from pnl_pipeline.stores import line_from_document, parse_key

log = logging.getLogger(__name__)

KEY_FIELDS = ["location_id", "year", "month"]
LINE_SORT = [
    ("category", ASCENDING),
    ("subcategory", ASCENDING),
    ("gl_account", ASCENDING),
    ("_id", ASCENDING),
]


def get_client(uri: str) -> MongoClient:
    """Return a configured PyMongo MongoClient for the provided URI.

    TLS is only forced for ``mongodb+srv`` (Atlas) URIs so local replica sets
    keep working without certificates.

    Args:
        uri: MongoDB connection URI.

    Returns:
        Configured MongoClient instance.
    """
    options: dict[str, Any] = {
        "serverSelectionTimeoutMS": 30000,
        "socketTimeoutMS": 30000,
        "connectTimeoutMS": 30000,
    }
    if uri.startswith("mongodb+srv://"):
        options.update(tls=True, tlsCAFile=certifi.where())
    return MongoClient(uri, **options)


def get_db(
    client: MongoClient[dict[str, Any]],
    db_name: str,
) -> Database[dict[str, Any]]:
    """Return the named Database instance from a MongoClient.

    Args:
        client: PyMongo MongoClient.
        db_name: Database name.

    Returns:
        A Database object.
    """
    return client[db_name]


def _key_match(location_id: str | None, year: int | None) -> dict[str, Any]:
    match: dict[str, Any] = {}
    if location_id:
        match["location_id"] = location_id
    if year:
        match["year"] = year
    return match


class MongoLedgerStore:
    """Raw (`powerbi_pnl_data`) and aggregated P&L collections in MongoDB.

    Pages are read with a stable sort so consecutive ``skip``/``limit``
    windows neither overlap nor leave gaps.
    """

    def __init__(
        self,
        raw: Collection[dict[str, Any]],
        aggregated: Collection[dict[str, Any]],
    ) -> None:
        self.raw = raw
        self.aggregated = aggregated

    @classmethod
    def from_db(
        cls, db: Database[dict[str, Any]], raw_collection: str, aggregated_collection: str
    ) -> "MongoLedgerStore":
        return cls(db[raw_collection], db[aggregated_collection])

    def ensure_indexes(self) -> None:
        """Create the lookup index on raw lines and the unique period key."""
        try:
            self.raw.create_index([(f, ASCENDING) for f in KEY_FIELDS])
            self.aggregated.create_index(
                [(f, ASCENDING) for f in KEY_FIELDS], unique=True
            )
        except PyMongoError as e:
            raise DownstreamWriteError(f"Failed to create indexes: {e}") from e

    # -------------------------
    # LedgerSource
    # -------------------------
    def fetch_page(self, key: PeriodKey, offset: int, limit: int) -> list[RawLedgerLine]:
        try:
            cursor = (
                self.raw.find(key.as_filter())
                .sort(LINE_SORT)
                .skip(offset)
                .limit(limit)
            )
            docs = list(cursor)
        except PyMongoError as e:
            raise UpstreamFetchError(
                f"Failed to fetch {key.label} at offset {offset}: {e}"
            ) from e
        return [line_from_document(d) for d in docs]

    def distinct_keys(
        self, location_id: str | None = None, year: int | None = None
    ) -> list[PeriodKey]:
        pipeline: list[dict[str, Any]] = [
            {"$match": _key_match(location_id, year)},
            {"$group": {"_id": {f: f"${f}" for f in KEY_FIELDS}}},
        ]
        try:
            groups = list(self.raw.aggregate(pipeline))
        except PyMongoError as e:
            raise UpstreamFetchError(f"Failed to list periods: {e}") from e
        keys = {
            parse_key(g["_id"].get("location_id"), g["_id"].get("year"), g["_id"].get("month"))
            for g in groups
        }
        return sorted(k for k in keys if k is not None)

    # -------------------------
    # PeriodSink
    # -------------------------
    def upsert(self, period: AggregatedPeriod) -> None:
        try:
            self.aggregated.replace_one(
                period.key.as_filter(),
                period.to_document(),
                upsert=True,
            )
        except PyMongoError as e:
            raise DownstreamWriteError(
                f"Failed to store aggregated data for {period.key.label}: {e}"
            ) from e
        log.debug("Stored %s in %s", period.key.label, self.aggregated.name)

    # -------------------------
    # Diagnostics (read-only)
    # -------------------------
    def raw_documents(
        self, location_id: str | None = None, year: int | None = None
    ) -> list[dict[str, Any]]:
        try:
            return list(self.raw.find(_key_match(location_id, year), {"_id": False}))
        except PyMongoError as e:
            raise UpstreamFetchError(f"Failed to read raw lines: {e}") from e

    def find_periods(
        self, location_id: str | None = None, year: int | None = None
    ) -> list[AggregatedPeriod]:
        try:
            docs = list(
                self.aggregated.find(_key_match(location_id, year), {"_id": False})
                .sort([(f, ASCENDING) for f in KEY_FIELDS])
            )
        except PyMongoError as e:
            raise UpstreamFetchError(f"Failed to read aggregated periods: {e}") from e
        return [AggregatedPeriod.model_validate(d) for d in docs]
