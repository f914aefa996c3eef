"""Pydantic models for raw ledger lines, aggregated periods and summaries.

These models define the canonical schema that flows through the pipeline.
Store adapters translate documents to and from these shapes; business logic
never reads raw dictionaries.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

from bson.decimal128 import Decimal128
from pydantic import BaseModel, ConfigDict, Field, field_validator

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Coerce a stored amount (int, float, str, Decimal128, None) to Decimal.

    Floats go through ``str`` so that ``0.1`` becomes ``Decimal("0.1")``
    rather than its binary expansion.

    Raises:
        ValueError: the value is not a finite number (e.g. ``"1.234,56"``).
    """
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal128):
        value = value.to_decimal()
    try:
        if isinstance(value, Decimal):
            d = value
        elif isinstance(value, (int, float)):
            d = Decimal(str(value))
        else:
            d = Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"not a valid amount: {value!r}") from e
    if not d.is_finite():
        raise ValueError(f"not a finite amount: {value!r}")
    return d


@dataclass(frozen=True, order=True)
class PeriodKey:
    """One (location, year, month) aggregation unit.

    Attributes:
        location_id: Location identifier (UUID string in production).
        year: Four-digit year.
        month: Month number (1-12).
    """
    location_id: str
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"month must be 1-12, got {self.month}")

    @property
    def label(self) -> str:
        return f"{self.location_id} {self.year}-{self.month:02d}"

    def as_filter(self) -> dict[str, Any]:
        return {"location_id": self.location_id, "year": self.year, "month": self.month}


class RawLedgerLine(BaseModel):
    """Schema for a single imported GL line (one account, one month)."""
    model_config = ConfigDict(frozen=True)
    location_id: str
    year: int = Field(..., ge=1900, le=2100)
    month: int = Field(..., ge=1, le=12)
    category: str = ""
    subcategory: str | None = None
    gl_account: str = ""
    amount: Decimal = ZERO
    import_id: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, v: Any) -> Decimal:
        return to_decimal(v)

    @field_validator("category", "gl_account", mode="before")
    @classmethod
    def _none_to_empty(cls, v: Any) -> str:
        return "" if v is None else str(v)

    @property
    def key(self) -> PeriodKey:
        return PeriodKey(self.location_id, self.year, self.month)


class AggregatedPeriod(BaseModel):
    """Aggregated P&L figures for one (location, year, month).

    Cost buckets are positive costs; revenue, receivables income and the
    financial result keep their ledger sign. `resultaat` therefore equals
    the signed sum of every classified line.

    Attributes:
        revenue_total: Netto-omzet.
        cost_of_sales_total: Kostprijs van de omzet.
        labor_total: Lasten uit hoofde van personeelsbeloningen.
        depreciation_total: Afschrijvingen.
        other_costs_total: Overige bedrijfskosten.
        receivables_income: Opbrengst van vorderingen.
        financial_income_expense: Financiele baten en lasten (net).
        resultaat: Net result.
        total_costs: Sum of the five cost buckets.
        revenue_food / revenue_beverage: Revenue split by subcategory.
        cost_of_sales_food / cost_of_sales_beverage: Cost of sales split.
        labor_contract / labor_flex: Payroll vs hired staff.
        housing_costs ... miscellaneous_costs: Other operating costs by
            kind (huisvesting, exploitatie, verkoop, auto, kantoor,
            assurantie, accountant, administratie, andere); they add up to
            `other_costs_total`.
        row_count: Raw lines read for the period.
        excluded_row_count: Subtotal lines left out of the sums.
        import_id: Import batch of the first raw line.
    """
    model_config = ConfigDict(frozen=True)
    location_id: str
    year: int
    month: int = Field(..., ge=1, le=12)

    revenue_total: Decimal = ZERO
    cost_of_sales_total: Decimal = ZERO
    labor_total: Decimal = ZERO
    depreciation_total: Decimal = ZERO
    other_costs_total: Decimal = ZERO
    receivables_income: Decimal = ZERO
    financial_income_expense: Decimal = ZERO
    resultaat: Decimal = ZERO

    total_costs: Decimal = ZERO
    revenue_food: Decimal = ZERO
    revenue_beverage: Decimal = ZERO
    cost_of_sales_food: Decimal = ZERO
    cost_of_sales_beverage: Decimal = ZERO
    labor_contract: Decimal = ZERO
    labor_flex: Decimal = ZERO

    housing_costs: Decimal = ZERO
    operating_costs: Decimal = ZERO
    selling_costs: Decimal = ZERO
    car_costs: Decimal = ZERO
    office_costs: Decimal = ZERO
    insurance_costs: Decimal = ZERO
    accounting_costs: Decimal = ZERO
    administrative_costs: Decimal = ZERO
    miscellaneous_costs: Decimal = ZERO

    row_count: int = Field(0, ge=0)
    excluded_row_count: int = Field(0, ge=0)
    import_id: str | None = None

    @field_validator(
        "revenue_total", "cost_of_sales_total", "labor_total", "depreciation_total",
        "other_costs_total", "receivables_income", "financial_income_expense",
        "resultaat", "total_costs", "revenue_food", "revenue_beverage",
        "cost_of_sales_food", "cost_of_sales_beverage", "labor_contract",
        "labor_flex", "housing_costs", "operating_costs", "selling_costs",
        "car_costs", "office_costs", "insurance_costs", "accounting_costs",
        "administrative_costs", "miscellaneous_costs",
        mode="before",
    )
    @classmethod
    def _coerce_money(cls, v: Any) -> Decimal:
        return to_decimal(v)

    @property
    def key(self) -> PeriodKey:
        return PeriodKey(self.location_id, self.year, self.month)

    def expected_resultaat(self) -> Decimal:
        """Recompute the net result from the bucket totals."""
        return (
            self.revenue_total
            - self.cost_of_sales_total
            - self.labor_total
            - self.depreciation_total
            - self.other_costs_total
            + self.receivables_income
            + self.financial_income_expense
        )

    def to_document(self) -> dict[str, Any]:
        """Return a BSON-safe dict (Decimals become Decimal128)."""
        doc = self.model_dump(mode="python")
        return {
            k: Decimal128(v) if isinstance(v, Decimal) else v
            for k, v in doc.items()
        }


class BatchSummary(BaseModel):
    """Outcome of an aggregation run over one or more keys."""
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[str] = Field(default_factory=list)
    succeeded_keys: list[str] = Field(default_factory=list)
    failed_keys: list[str] = Field(default_factory=list)
    skipped_keys: list[str] = Field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.failed == 0


class AggregateRequest(BaseModel):
    """JSON body accepted by the aggregation endpoint."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")
    location_id: str | None = Field(None, alias="locationId")
    year: int | None = Field(None, ge=1900, le=2100)
    month: int | None = Field(None, ge=1, le=12)
    aggregate_all: bool = Field(False, alias="aggregateAll")
