"""Map Dutch ledger category names onto the eight P&L buckets.

The PowerBI export labels every GL line with a category (e.g.
"Lasten uit hoofde van personeelsbeloningen"), an optional subcategory and a
GL account name. `classify` inspects those texts in that order and returns
the bucket of the first rule that matches. Unknown text lands in
`Bucket.OTHER_OPEX`; the function never raises.
"""

from __future__ import annotations

import re
import unicodedata
from enum import Enum
from functools import lru_cache


class Bucket(str, Enum):
    """P&L line an individual ledger row rolls up into."""
    REVENUE = "revenue"
    COST_OF_SALES = "cost_of_sales"
    LABOR = "labor"
    DEPRECIATION = "depreciation"
    OTHER_OPEX = "other_opex"
    RECEIVABLES_INCOME = "receivables_income"
    FINANCIAL = "financial"
    NET_RESULT = "net_result"


# Order matters: first match wins.
# "Kostprijs van de omzet" contains "omzet", so cost of sales precedes revenue.
RULES: tuple[tuple[Bucket, tuple[tuple[str, ...], ...]], ...] = (
    (Bucket.NET_RESULT, ((r"^(netto )?resultaat\b",),)),
    (Bucket.RECEIVABLES_INCOME, ((r"opbrengst", r"vordering"),)),
    (Bucket.COST_OF_SALES, ((r"kostprijs",), (r"inkoop",), (r"inkopen",), (r"statiegeld",))),
    (Bucket.REVENUE, ((r"netto-omzet",), (r"\bomzet",), (r"^verkopen\b",))),
    (
        Bucket.LABOR,
        (
            (r"lonen",),
            (r"salaris",),
            (r"arbeid",),
            (r"personeel",),
            (r"inhuur",),
            (r"pensioen",),
            (r"sociale lasten",),
        ),
    ),
    (Bucket.DEPRECIATION, ((r"afschrijving",),)),
    (Bucket.FINANCIAL, ((r"financ",), (r"\brente",))),
    (
        Bucket.OTHER_OPEX,
        (
            (r"bedrijfskosten",),
            (r"huisvesting",),
            (r"exploitatie",),
            (r"verkoop",),
            (r"\bauto",),
            (r"kantoor",),
            (r"assurantie",),
            (r"accountant",),
            (r"administrat",),
            (r"andere kosten",),
        ),
    ),
)

_COMPILED = tuple(
    (bucket, tuple(tuple(re.compile(p) for p in group) for group in groups))
    for bucket, groups in RULES
)


def normalize(text: str | None) -> str:
    """Lowercase, strip accents and collapse whitespace.

    >>> normalize("  Financiële  baten ")
    'financiele baten'
    """
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFKD", str(text))
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    return " ".join(stripped.lower().split())


def match_text(text: str | None) -> Bucket | None:
    """Return the bucket of the first rule matching `text`, or None."""
    norm = normalize(text)
    if not norm:
        return None
    for bucket, groups in _COMPILED:
        for group in groups:
            if all(p.search(norm) for p in group):
                return bucket
    return None


@lru_cache(maxsize=4096)
def classify(
    category: str | None,
    subcategory: str | None = None,
    gl_account: str | None = None,
) -> Bucket:
    """Classify a ledger line into exactly one `Bucket`.

    The category decides when any rule matches it; otherwise the subcategory,
    then the GL account name are tried. Lines nothing matches are treated as
    other operating expenses.

    Args:
        category: Top-level category text from the export.
        subcategory: Optional subcategory text.
        gl_account: GL account name or code.

    Returns:
        The matching bucket, `Bucket.OTHER_OPEX` when nothing matches.
    """
    for text in (category, subcategory, gl_account):
        bucket = match_text(text)
        if bucket is not None:
            return bucket
    return Bucket.OTHER_OPEX
