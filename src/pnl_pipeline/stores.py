"""Storage interfaces used by the aggregator, plus the Supabase adapter.

The aggregator only depends on two small protocols:

- `LedgerSource`: paginated reads of raw ledger lines and key discovery.
- `PeriodSink`: upsert of one aggregated period.

Raw documents are translated to `RawLedgerLine` here, at the boundary, with
an ordered-fallback field resolver. Business logic sees the canonical schema
only.
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Protocol

from pydantic import ValidationError

from pnl_pipeline.errors import DownstreamWriteError, UpstreamFetchError
from pnl_pipeline.models import AggregatedPeriod, PeriodKey, RawLedgerLine

log = logging.getLogger(__name__)

# canonical field -> candidate source names, tried in order
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "location_id": ("location_id", "locationId", "location"),
    "year": ("year", "jaar"),
    "month": ("month", "maand"),
    "category": ("category", "categorie"),
    "subcategory": ("subcategory", "sub_category", "subcategorie"),
    "gl_account": ("gl_account", "glAccount", "gl", "grootboekrekening"),
    "amount": ("amount", "bedrag", "value"),
    "import_id": ("import_id", "importId"),
}

_MISSING = object()


def resolve_field(doc: Mapping[str, Any], field: str, default: Any = None) -> Any:
    """Return the first present alias of `field` in `doc`.

    Args:
        doc: Raw document as returned by the store.
        field: Canonical field name (key of `FIELD_ALIASES`).
        default: Value returned when no alias is present.
    """
    for name in FIELD_ALIASES.get(field, (field,)):
        value = doc.get(name, _MISSING)
        if value is not _MISSING:
            return value
    return default


def line_from_document(doc: Mapping[str, Any]) -> RawLedgerLine:
    """Build a `RawLedgerLine` from a raw store document.

    Raises:
        UpstreamFetchError: the document does not fit the canonical schema.
    """
    try:
        return RawLedgerLine.model_validate(
            {field: resolve_field(doc, field) for field in FIELD_ALIASES}
        )
    except ValidationError as e:
        raise UpstreamFetchError(f"Malformed raw ledger line: {e}") from e


def parse_key(location_id: Any, year: Any, month: Any) -> PeriodKey | None:
    """Build a `PeriodKey` from raw values, or None when they are unusable.

    Raw imports occasionally carry a null or out-of-range month; such rows
    are logged and left out of key discovery.
    """
    try:
        if location_id is None or str(location_id) == "":
            raise ValueError("location_id is empty")
        return PeriodKey(str(location_id), int(year), int(month))
    except (TypeError, ValueError) as e:
        log.warning(
            "Skipping raw rows with location=%r year=%r month=%r: %s",
            location_id, year, month, e,
        )
        return None


def unique_keys(rows: Iterable[Mapping[str, Any]]) -> list[PeriodKey]:
    """Distinct, sorted period keys from documents holding location/year/month."""
    combos = {
        (resolve_field(r, "location_id"), resolve_field(r, "year"), resolve_field(r, "month"))
        for r in rows
    }
    keys = {parse_key(*combo) for combo in combos}
    return sorted(k for k in keys if k is not None)


class LedgerSource(Protocol):
    """Paginated read access to the raw ledger store."""

    def fetch_page(self, key: PeriodKey, offset: int, limit: int) -> list[RawLedgerLine]:
        ...

    def distinct_keys(
        self, location_id: str | None = None, year: int | None = None
    ) -> list[PeriodKey]:
        ...


class PeriodSink(Protocol):
    """Write access to the aggregated store."""

    def upsert(self, period: AggregatedPeriod) -> None:
        ...


class SupabaseLedgerStore:
    """Raw and aggregated P&L tables in a Supabase (PostgREST) project.

    Reads use ``.range(offset, end)`` with a stable ordering, so pages do not
    overlap. Writes use ``upsert`` with ``on_conflict`` on the period key.
    """

    SELECT = "location_id, year, month, category, subcategory, gl_account, amount, import_id"
    ORDER = ("category", "subcategory", "gl_account", "id")

    def __init__(self, client: Any, raw_table: str, aggregated_table: str) -> None:
        self.client = client
        self.raw_table = raw_table
        self.aggregated_table = aggregated_table

    def fetch_page(self, key: PeriodKey, offset: int, limit: int) -> list[RawLedgerLine]:
        query = (
            self.client.table(self.raw_table)
            .select(self.SELECT)
            .eq("location_id", key.location_id)
            .eq("year", key.year)
            .eq("month", key.month)
        )
        for column in self.ORDER:
            query = query.order(column)
        try:
            rows = query.range(offset, offset + limit - 1).execute().data or []
        except Exception as e:
            raise UpstreamFetchError(
                f"Failed to fetch {key.label} at offset {offset}: {e}"
            ) from e
        return [line_from_document(r) for r in rows]

    def distinct_keys(
        self, location_id: str | None = None, year: int | None = None
    ) -> list[PeriodKey]:
        rows = self._paged(self.raw_table, "location_id, year, month", location_id, year)
        return unique_keys(rows)

    def upsert(self, period: AggregatedPeriod) -> None:
        record = period.model_dump(mode="json")
        try:
            (
                self.client.table(self.aggregated_table)
                .upsert(record, on_conflict="location_id,year,month")
                .execute()
            )
        except Exception as e:
            raise DownstreamWriteError(
                f"Failed to store aggregated data for {period.key.label}: {e}"
            ) from e
        log.debug("Stored %s in %s", period.key.label, self.aggregated_table)

    def _paged(
        self, table: str, select: str, location_id: str | None, year: int | None
    ) -> list[dict[str, Any]]:
        """Read every row of `table` matching the filters, 1000 rows at a time."""
        rows: list[dict[str, Any]] = []
        offset, page = 0, 1000
        while True:
            query = self.client.table(table).select(select)
            if location_id:
                query = query.eq("location_id", location_id)
            if year:
                query = query.eq("year", year)
            query = query.order("location_id").order("year").order("month").order("id")
            try:
                batch = query.range(offset, offset + page - 1).execute().data or []
            except Exception as e:
                raise UpstreamFetchError(f"Failed to read {table} at offset {offset}: {e}") from e
            rows.extend(batch)
            if len(batch) < page:
                break
            offset += page
        return rows

    def raw_documents(
        self, location_id: str | None = None, year: int | None = None
    ) -> list[dict[str, Any]]:
        return self._paged(self.raw_table, self.SELECT, location_id, year)

    def find_periods(
        self, location_id: str | None = None, year: int | None = None
    ) -> list[AggregatedPeriod]:
        rows = self._paged(self.aggregated_table, "*", location_id, year)
        return [AggregatedPeriod.model_validate(r) for r in rows]


def create_supabase_store(url: str, key: str, raw_table: str, aggregated_table: str) -> SupabaseLedgerStore:
    """Create a Supabase client and wrap it in a `SupabaseLedgerStore`."""
    from supabase import create_client

    return SupabaseLedgerStore(create_client(url, key), raw_table, aggregated_table)
