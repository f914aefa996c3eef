from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator

import pytest

from pnl_pipeline.config import AggregatorConfig, get_settings
from pnl_pipeline.errors import ConfigurationError

ENV_VARS = [
    "PNL_BACKEND", "MONGO_URI", "MONGO_DB", "SUPABASE_URL", "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_ANON_KEY", "PNL_RAW_COLLECTION", "PNL_AGGREGATED_COLLECTION", "PNL_API_URL",
    "PNL_PAGE_SIZE", "PNL_REQUEST_DELAY", "PNL_MAX_ERRORS",
]


@pytest.fixture
def empty_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[Path]:
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    env_file = tmp_path / ".env"
    env_file.write_text("", encoding="utf-8")
    yield env_file
    # load_dotenv writes straight into os.environ
    for name in ENV_VARS:
        os.environ.pop(name, None)


def test_mongo_defaults(monkeypatch: pytest.MonkeyPatch, empty_env: Path) -> None:
    monkeypatch.setenv("MONGO_URI", "mongodb://localhost:27017")
    s = get_settings(empty_env)
    assert s.backend == "mongo"
    assert s.mongo_db == "finance"
    assert s.raw_collection == "powerbi_pnl_data"
    assert s.aggregated_collection == "powerbi_pnl_aggregated"
    assert s.aggregator == AggregatorConfig(page_size=1000, request_delay=0.1, max_errors=10)


def test_values_from_env_file(empty_env: Path) -> None:
    empty_env.write_text(
        "PNL_BACKEND=supabase\nSUPABASE_URL=https://x.supabase.co\nSUPABASE_ANON_KEY=anon\nPNL_PAGE_SIZE=500\n",
        encoding="utf-8",
    )
    s = get_settings(empty_env)
    assert s.backend == "supabase"
    assert s.supabase_key == "anon"
    assert s.aggregator.page_size == 500


def test_missing_mongo_uri(empty_env: Path) -> None:
    with pytest.raises(ConfigurationError):
        get_settings(empty_env)


def test_missing_supabase_key(monkeypatch: pytest.MonkeyPatch, empty_env: Path) -> None:
    monkeypatch.setenv("PNL_BACKEND", "supabase")
    monkeypatch.setenv("SUPABASE_URL", "https://x.supabase.co")
    with pytest.raises(ConfigurationError):
        get_settings(empty_env)


def test_unknown_backend(monkeypatch: pytest.MonkeyPatch, empty_env: Path) -> None:
    monkeypatch.setenv("PNL_BACKEND", "sqlite")
    with pytest.raises(ConfigurationError):
        get_settings(empty_env)


def test_bad_numeric_env(monkeypatch: pytest.MonkeyPatch, empty_env: Path) -> None:
    monkeypatch.setenv("MONGO_URI", "mongodb://localhost")
    monkeypatch.setenv("PNL_PAGE_SIZE", "lots")
    with pytest.raises(ConfigurationError):
        get_settings(empty_env)


def test_aggregator_config_validation() -> None:
    with pytest.raises(ConfigurationError):
        AggregatorConfig(page_size=0)
    with pytest.raises(ConfigurationError):
        AggregatorConfig(request_delay=-1)
