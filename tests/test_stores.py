from __future__ import annotations

from decimal import Decimal
from typing import Any

import pytest

from pnl_pipeline.errors import DownstreamWriteError, UpstreamFetchError
from pnl_pipeline.models import AggregatedPeriod, PeriodKey
from pnl_pipeline.stores import (
    SupabaseLedgerStore,
    line_from_document,
    parse_key,
    resolve_field,
    unique_keys,
)


def test_resolve_field_tries_aliases_in_order() -> None:
    doc = {"glAccount": "8000", "gl": "ignored"}
    assert resolve_field(doc, "gl_account") == "8000"
    assert resolve_field(doc, "category", "n/a") == "n/a"


def test_present_none_value_wins_over_later_alias() -> None:
    assert resolve_field({"amount": None, "value": 5}, "amount") is None


def test_line_from_camel_case_document() -> None:
    line = line_from_document(
        {"locationId": "loc", "year": "2025", "month": 4, "category": "Netto-omzet", "amount": "7.5"}
    )
    assert line.location_id == "loc"
    assert line.year == 2025
    assert line.amount == Decimal("7.5")


def test_malformed_document_is_an_upstream_error() -> None:
    with pytest.raises(UpstreamFetchError):
        line_from_document({"location_id": "loc", "year": 2025, "month": 99})


def test_unique_keys_sorted() -> None:
    rows = [
        {"location_id": "b", "year": 2025, "month": 1},
        {"location_id": "a", "year": 2025, "month": 2},
        {"location_id": "a", "year": 2025, "month": 2},
    ]
    assert unique_keys(rows) == [PeriodKey("a", 2025, 2), PeriodKey("b", 2025, 1)]


class FakeResult:
    def __init__(self, data: list[dict[str, Any]]) -> None:
        self.data = data


class FakeQuery:
    """Records PostgREST builder calls and serves rows by range."""

    def __init__(self, client: "FakeSupabase", table: str) -> None:
        self.client = client
        self.table = table
        self.filters: dict[str, Any] = {}
        self.bounds = (0, 0)
        self.upserted: tuple[dict[str, Any], str] | None = None

    def select(self, _: str) -> "FakeQuery":
        return self

    def eq(self, column: str, value: Any) -> "FakeQuery":
        self.filters[column] = value
        return self

    def order(self, _: str) -> "FakeQuery":
        return self

    def range(self, start: int, end: int) -> "FakeQuery":
        self.bounds = (start, end)
        self.client.ranges.append((start, end))
        return self

    def upsert(self, record: dict[str, Any], on_conflict: str) -> "FakeQuery":
        self.upserted = (record, on_conflict)
        return self

    def execute(self) -> FakeResult:
        if self.client.fail:
            raise RuntimeError("connection reset")
        if self.upserted is not None:
            self.client.upserts.append(self.upserted)
            return FakeResult([self.upserted[0]])
        rows = [
            r for r in self.client.rows
            if all(r.get(k) == v for k, v in self.filters.items())
        ]
        start, end = self.bounds
        return FakeResult(rows[start:end + 1])


class FakeSupabase:
    def __init__(self, rows: list[dict[str, Any]]) -> None:
        self.rows = rows
        self.ranges: list[tuple[int, int]] = []
        self.upserts: list[tuple[dict[str, Any], str]] = []
        self.fail = False

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


def _rows(n: int) -> list[dict[str, Any]]:
    return [
        {"location_id": "loc", "year": 2025, "month": 1, "category": "Netto-omzet", "gl_account": str(i), "amount": 1}
        for i in range(n)
    ]


def test_supabase_fetch_page_uses_inclusive_range() -> None:
    client = FakeSupabase(_rows(5))
    store = SupabaseLedgerStore(client, "raw", "agg")
    page = store.fetch_page(PeriodKey("loc", 2025, 1), 2, 2)
    assert client.ranges == [(2, 3)]
    assert [l.gl_account for l in page] == ["2", "3"]


def test_supabase_distinct_keys_pages_through_everything() -> None:
    rows = _rows(1500) + [dict(r, month=2) for r in _rows(10)]
    client = FakeSupabase(rows)
    keys = SupabaseLedgerStore(client, "raw", "agg").distinct_keys("loc", 2025)
    assert keys == [PeriodKey("loc", 2025, 1), PeriodKey("loc", 2025, 2)]
    assert client.ranges == [(0, 999), (1000, 1999)]


def test_supabase_upsert_on_period_key() -> None:
    client = FakeSupabase([])
    period = AggregatedPeriod(location_id="loc", year=2025, month=1, revenue_total="12.30")
    SupabaseLedgerStore(client, "raw", "agg").upsert(period)
    record, conflict = client.upserts[0]
    assert conflict == "location_id,year,month"
    assert record["revenue_total"] == "12.30"


def test_supabase_errors_are_wrapped() -> None:
    client = FakeSupabase(_rows(1))
    client.fail = True
    store = SupabaseLedgerStore(client, "raw", "agg")
    with pytest.raises(UpstreamFetchError):
        store.fetch_page(PeriodKey("loc", 2025, 1), 0, 10)
    with pytest.raises(DownstreamWriteError):
        store.upsert(AggregatedPeriod(location_id="loc", year=2025, month=1))


def test_unparseable_amount_is_an_upstream_error() -> None:
    with pytest.raises(UpstreamFetchError, match="1.234,56"):
        line_from_document({"location_id": "loc", "year": 2025, "month": 1, "amount": "1.234,56"})


def test_unique_keys_skips_unusable_rows() -> None:
    rows = [
        {"location_id": "a", "year": 2025, "month": 1},
        {"location_id": "a", "year": 2025, "month": 0},
        {"location_id": "a", "year": 2025, "month": 13},
        {"location_id": "a", "year": 2025, "month": None},
        {"location_id": "a", "year": None, "month": 2},
        {"location_id": None, "year": 2025, "month": 2},
    ]
    assert unique_keys(rows) == [PeriodKey("a", 2025, 1)]


def test_parse_key_accepts_numeric_strings() -> None:
    assert parse_key("a", "2025", "3") == PeriodKey("a", 2025, 3)
    assert parse_key("a", 2025, "maart") is None
