"""Food/beverage, contract/flex and other-cost detail splits within a period.

Each split partitions one bucket total, so its parts always add up to the
bucket they came from.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from pnl_pipeline.aggregate.classify import normalize
from pnl_pipeline.models import ZERO, RawLedgerLine

FOOD_KEYWORDS = ("snacks", "lunch", "diner", "menu", "keuken")
BEVERAGE_KEYWORDS = (
    "wijn",
    "gedestilleerd",
    "cocktail",
    "bier",
    "koffie",
    "thee",
    "frisdrank",
    "frisdtrank",
    "alcohol",
    "cider",
    "pilsner",
    "dranken",
)
FLEX_KEYWORDS = ("inhuur",)

HALF = Decimal("0.5")
CENT = Decimal("0.01")


@dataclass(frozen=True)
class Split:
    """Two-way split of a bucket total."""
    first: Decimal = ZERO
    second: Decimal = ZERO

    @property
    def total(self) -> Decimal:
        return self.first + self.second


def _detail_text(line: RawLedgerLine) -> str:
    return normalize(f"{line.subcategory or ''} {line.gl_account}")


def _has_any(text: str, keywords: Iterable[str]) -> bool:
    return any(k in text for k in keywords)


def split_revenue(lines: Iterable[RawLedgerLine]) -> Split:
    """Split revenue lines into (food, beverage).

    Lines whose subcategory names neither side are distributed in proportion
    to the known split, or evenly when nothing is known.
    The food share of unknown revenue is rounded to cents and beverage takes
    the remainder, so the halves add up exactly.
    """
    food = beverage = unknown = ZERO
    for line in lines:
        text = _detail_text(line)
        if _has_any(text, FOOD_KEYWORDS):
            food += line.amount
        elif _has_any(text, BEVERAGE_KEYWORDS):
            beverage += line.amount
        else:
            unknown += line.amount

    if unknown == ZERO:
        return Split(food, beverage)

    known = food + beverage
    if known != ZERO:
        food_share = (unknown * food / known).quantize(CENT)
        return Split(food + food_share, beverage + (unknown - food_share))

    half = (unknown * HALF).quantize(CENT)
    return Split(food + half, beverage + (unknown - half))


def split_cost_of_sales(lines: Iterable[RawLedgerLine]) -> Split:
    """Split cost of sales into (food, beverage): kitchen purchases are food."""
    food = beverage = ZERO
    for line in lines:
        if "keuken" in _detail_text(line):
            food -= line.amount
        else:
            beverage -= line.amount
    return Split(food, beverage)


def split_labor(lines: Iterable[RawLedgerLine]) -> Split:
    """Split labor into (contract, flex): hired-in staff ("inhuur") is flex."""
    contract = flex = ZERO
    for line in lines:
        text = normalize(f"{line.category} {line.subcategory or ''} {line.gl_account}")
        if _has_any(text, FLEX_KEYWORDS):
            flex -= line.amount
        else:
            contract -= line.amount
    return Split(contract, flex)


# other operating cost detail column -> patterns; first match wins.
# Kantoor precedes auto ("kosten automatisering") and assurantie
# ("bedrijfsschadeverzekering"); exploitatie precedes huisvesting ("huur machines").
OTHER_COST_RULES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("accounting_costs", (r"accountant", r"salarisadministratie", r"administratiekosten", r"advieskosten")),
    ("administrative_costs", (r"administratieve lasten", r"\bboete", r"betalingsverkeer")),
    (
        "office_costs",
        (r"kantoor", r"automatisering", r"telecom", r"drukwerk", r"contributie", r"abonnement", r"bedrijfsschade"),
    ),
    ("insurance_costs", (r"assurantie", r"verzekering")),
    ("car_costs", (r"\bauto", r"brandstof", r"\blease")),
    (
        "operating_costs",
        (
            r"exploitatie",
            r"machine",
            r"kleine aanschaffingen",
            r"waskosten",
            r"linnen",
            r"papierwaren",
            r"reparatie",
            r"glaswerk",
        ),
    ),
    (
        "housing_costs",
        (
            r"huisvesting",
            r"\bhuur\b",
            r"elektra",
            r"\bgas\b",
            r"\bwater\b",
            r"onderhoud gebouwen",
            r"schoonmaak",
            r"gemeentelijke",
        ),
    ),
    (
        "selling_costs",
        (r"verkoop", r"decoratie", r"advertentie", r"reclame", r"sponsoring", r"muziek", r"representatie", r"\breis"),
    ),
)
MISC_COSTS = "miscellaneous_costs"
OTHER_COST_COLUMNS = tuple(column for column, _ in OTHER_COST_RULES) + (MISC_COSTS,)

_OTHER_COST_COMPILED = tuple(
    (column, tuple(re.compile(p) for p in patterns)) for column, patterns in OTHER_COST_RULES
)


def other_cost_column(line: RawLedgerLine) -> str:
    """Detail column an other-operating-cost line belongs to.

    Subcategory and GL account text decide; the category is the fallback.
    """
    for text in (_detail_text(line), normalize(line.category)):
        for column, patterns in _OTHER_COST_COMPILED:
            if any(p.search(text) for p in patterns):
                return column
    return MISC_COSTS


def split_other_costs(lines: Iterable[RawLedgerLine]) -> dict[str, Decimal]:
    """Break other operating costs down into detail columns (positive costs).

    Every line lands in exactly one column, so the columns add up to the
    other operating cost total.
    """
    out = {column: ZERO for column in OTHER_COST_COLUMNS}
    for line in lines:
        out[other_cost_column(line)] -= line.amount
    return out
