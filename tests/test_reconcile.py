from __future__ import annotations

import json
import math
from pathlib import Path

import pandas as pd
import pytest

from pnl_pipeline.errors import ConfigurationError
from pnl_pipeline.models import AggregatedPeriod
from pnl_pipeline.reconcile.compare import (
    compare_periods,
    delta_pct,
    load_expected,
    render_report,
    summarize_comparison,
)

from conftest import LOCATION


def _period(month: int, revenue: str, resultaat: str) -> AggregatedPeriod:
    return AggregatedPeriod(location_id=LOCATION, year=2025, month=month, revenue_total=revenue, resultaat=resultaat)


def _expected(rows: list[tuple[int, float, float]]) -> pd.DataFrame:
    return pd.DataFrame(rows, columns=["month", "revenue", "resultaat"])


def test_status_per_month() -> None:
    actual = [
        _period(1, "100000.40", "15200.00"),  # rounding only
        _period(2, "101000", "20300"),        # 1% off
        _period(3, "90000", "5000"),          # way off
    ]
    expected = _expected([
        (1, 100000.0, 15200.0),
        (2, 100000.0, 20000.0),
        (3, 100000.0, 10000.0),
        (4, 100000.0, 10000.0),
    ])

    df = compare_periods(actual, expected)

    assert list(df["status"]) == ["exact", "minor", "major", "missing"]
    assert df.loc[1, "revenue_delta"] == pytest.approx(1000.0)
    assert df.loc[1, "revenue_delta_pct"] == pytest.approx(1.0)
    assert math.isnan(df.loc[3, "actual_revenue"])


def test_tolerance_boundary_is_inclusive() -> None:
    df = compare_periods([_period(1, "102500", "10250")], _expected([(1, 100000.0, 10000.0)]))
    assert df.loc[0, "status"] == "minor"

    df = compare_periods([_period(1, "102600", "10000")], _expected([(1, 100000.0, 10000.0)]))
    assert df.loc[0, "status"] == "major"


def test_custom_tolerance() -> None:
    df = compare_periods([_period(1, "104000", "10000")], _expected([(1, 100000.0, 10000.0)]), tolerance=0.05)
    assert df.loc[0, "status"] == "minor"


def test_accepts_recomputed_frame() -> None:
    actual = pd.DataFrame([{"month": 1, "revenue_total": 500.0, "resultaat": 50.0}])
    df = compare_periods(actual, _expected([(1, 500.0, 50.0)]))
    assert df.loc[0, "status"] == "exact"


def test_no_actual_rows_means_all_missing() -> None:
    df = compare_periods([], _expected([(1, 1.0, 1.0), (2, 1.0, 1.0)]))
    assert set(df["status"]) == {"missing"}


def test_negative_tolerance_rejected() -> None:
    with pytest.raises(ConfigurationError):
        compare_periods([], _expected([(1, 1.0, 1.0)]), tolerance=-0.1)


def test_delta_pct_with_zero_expected() -> None:
    assert delta_pct(0.0, 0.0) == 0.0
    assert delta_pct(5.0, 0.0) == math.inf
    assert delta_pct(-5.0, -100.0) == pytest.approx(5.0)


def test_summary_counts_and_totals() -> None:
    actual = [_period(1, "100000", "15200"), _period(2, "90000", "5000")]
    df = compare_periods(actual, _expected([(1, 100000.0, 15200.0), (2, 100000.0, 10000.0), (3, 1.0, 1.0)]))
    s = summarize_comparison(df)

    assert (s.months, s.exact, s.minor, s.major, s.missing) == (3, 1, 0, 1, 1)
    assert s.acceptable == 1
    assert s.expected_revenue == pytest.approx(200000.0)
    assert s.revenue_delta == pytest.approx(-10000.0)
    assert s.resultaat_delta == pytest.approx(-5000.0)


def test_render_report_mentions_counts() -> None:
    df = compare_periods([_period(1, "100000", "15200")], _expected([(1, 100000.0, 15200.0)]))
    text = render_report(df, summarize_comparison(df), title="Kinsbergen 2025")
    assert text.startswith("Kinsbergen 2025\n===============")
    assert "exact=1" in text
    assert "tolerance=2.5%" in text


def test_load_expected_csv(tmp_path: Path) -> None:
    path = tmp_path / "expected.csv"
    path.write_text("Month,Revenue,Resultaat\n2,200,20\n1,100,10\n", encoding="utf-8")
    df = load_expected(path)
    assert list(df["month"]) == [1, 2]
    assert df.loc[0, "revenue"] == 100.0


def test_load_expected_json(tmp_path: Path) -> None:
    path = tmp_path / "expected.json"
    path.write_text(json.dumps([{"month": 1, "revenue": 100, "resultaat": -5}]), encoding="utf-8")
    df = load_expected(path)
    assert df.loc[0, "resultaat"] == -5.0


def test_load_expected_missing_column(tmp_path: Path) -> None:
    path = tmp_path / "expected.csv"
    path.write_text("month,revenue\n1,100\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_expected(path)


def test_load_expected_missing_file(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        load_expected(tmp_path / "nope.csv")
