from __future__ import annotations

from typing import Any

import pytest

from pnl_pipeline.config import AggregatorConfig
from pnl_pipeline.errors import DownstreamWriteError, UpstreamFetchError
from pnl_pipeline.models import AggregatedPeriod, PeriodKey, RawLedgerLine
from pnl_pipeline.stores import line_from_document, unique_keys

LOCATION = "550e8400-e29b-41d4-a716-446655440001"


class FakeLedgerStore:
    """In-memory raw + aggregated store implementing LedgerSource and PeriodSink."""

    def __init__(self, docs: list[dict[str, Any]] | None = None) -> None:
        self.docs: list[dict[str, Any]] = list(docs or [])
        self.aggregated: dict[PeriodKey, AggregatedPeriod] = {}
        self.page_calls: list[tuple[PeriodKey, int, int]] = []
        self.upsert_calls = 0
        self.fail_fetch: set[PeriodKey] = set()
        self.fail_write: set[PeriodKey] = set()

    def _matching(self, key: PeriodKey) -> list[dict[str, Any]]:
        rows = [
            d for d in self.docs
            if (d["location_id"], d["year"], d["month"]) == (key.location_id, key.year, key.month)
        ]
        return sorted(
            rows,
            key=lambda d: (d.get("category") or "", d.get("subcategory") or "", d.get("gl_account") or ""),
        )

    def fetch_page(self, key: PeriodKey, offset: int, limit: int) -> list[RawLedgerLine]:
        self.page_calls.append((key, offset, limit))
        if key in self.fail_fetch:
            raise UpstreamFetchError(f"Failed to fetch {key.label} at offset {offset}: timeout")
        return [line_from_document(d) for d in self._matching(key)[offset:offset + limit]]

    def distinct_keys(self, location_id: str | None = None, year: int | None = None) -> list[PeriodKey]:
        rows = [
            d for d in self.docs
            if (not location_id or d["location_id"] == location_id) and (not year or d["year"] == year)
        ]
        return unique_keys(rows)

    def upsert(self, period: AggregatedPeriod) -> None:
        self.upsert_calls += 1
        if period.key in self.fail_write:
            raise DownstreamWriteError(f"Failed to store aggregated data for {period.key.label}: boom")
        self.aggregated[period.key] = period

    def raw_documents(self, location_id: str | None = None, year: int | None = None) -> list[dict[str, Any]]:
        return [
            d for d in self.docs
            if (not location_id or d["location_id"] == location_id) and (not year or d["year"] == year)
        ]

    def find_periods(self, location_id: str | None = None, year: int | None = None) -> list[AggregatedPeriod]:
        return [
            p for k, p in sorted(self.aggregated.items())
            if (not location_id or k.location_id == location_id) and (not year or k.year == year)
        ]


def make_doc(
    category: str,
    amount: str | float,
    month: int | None = 1,
    subcategory: str | None = None,
    gl_account: str = "",
    location_id: str = LOCATION,
    year: int = 2025,
    import_id: str | None = "imp-1",
) -> dict[str, Any]:
    return {
        "location_id": location_id,
        "year": year,
        "month": month,
        "category": category,
        "subcategory": subcategory,
        "gl_account": gl_account,
        "amount": amount,
        "import_id": import_id,
    }


def month_docs(month: int = 1, location_id: str = LOCATION) -> list[dict[str, Any]]:
    """A small but complete month: 100000 revenue and 15200 resultaat."""
    return [
        make_doc("Netto-omzet groepen", "60000", month, "Omzet keuken", "8000 Omzet snacks", location_id),
        make_doc("Netto-omzet groepen", "40000", month, "Omzet wijn", "8100 Omzet wijnen", location_id),
        make_doc("Kostprijs van de omzet", "-15000", month, "Inkopen keuken", "7000 Inkoop keuken", location_id),
        make_doc("Kostprijs van de omzet", "-25000", month, "Inkopen dranken", "7100 Inkoop bier", location_id),
        make_doc("Lasten uit hoofde van personeelsbeloningen", "-30000", month, "Lonen en salarissen", "4000 Bruto lonen", location_id),
        make_doc("Lasten uit hoofde van personeelsbeloningen", "-5000", month, "Overige personeelskosten", "4100 Inhuur personeel", location_id),
        make_doc("Afschrijvingen op immateriële en materiële vaste activa", "-2000", month, None, "4900 Afschrijving inventaris", location_id),
        make_doc("Overige bedrijfskosten", "-8000", month, "Huisvestingskosten", "4300 Huur", location_id),
        make_doc("Opbrengst van vorderingen die tot de vaste activa behoren", "500", month, None, "8900 Rente lening", location_id),
        make_doc("Financiële baten en lasten", "-300", month, None, "8950 Bankkosten", location_id),
        make_doc("Resultaat", "15200", month, None, "9999 Resultaat", location_id),
    ]


@pytest.fixture
def store() -> FakeLedgerStore:
    return FakeLedgerStore(month_docs(1) + month_docs(2))


@pytest.fixture
def config() -> AggregatorConfig:
    return AggregatorConfig(page_size=1000, request_delay=0.0, max_errors=10)


@pytest.fixture
def jan_key() -> PeriodKey:
    return PeriodKey(LOCATION, 2025, 1)