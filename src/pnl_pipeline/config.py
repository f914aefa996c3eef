"""Configuration helpers and Settings container.

This module provides two frozen dataclasses:

- `Settings`: connection details read from the environment (and `.env`).
- `AggregatorConfig`: batching knobs handed explicitly to the aggregator.

Nothing here is cached at module level; callers build a `Settings` with
`get_settings()` and pass it (or the derived `AggregatorConfig`) down.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os

from dotenv import load_dotenv

from pnl_pipeline.errors import ConfigurationError

PROJECT_ROOT = Path(__file__).resolve().parents[2]

BACKENDS = ("mongo", "supabase")


@dataclass(frozen=True)
class AggregatorConfig:
    """Batching behaviour of the aggregator.

    Attributes:
        page_size: Rows requested per page from the raw ledger store.
        request_delay: Seconds to sleep between keys in multi-key runs.
        max_errors: Maximum number of error messages kept in a summary.
    """
    page_size: int = 1000
    request_delay: float = 0.1
    max_errors: int = 10

    def __post_init__(self) -> None:
        if self.page_size < 1:
            raise ConfigurationError("page_size must be a positive integer")
        if self.request_delay < 0:
            raise ConfigurationError("request_delay cannot be negative")
        if self.max_errors < 0:
            raise ConfigurationError("max_errors cannot be negative")


@dataclass(frozen=True)
class Settings:
    """Container for pipeline configuration read from the environment.

    Attributes:
        backend: Storage backend, ``"mongo"`` or ``"supabase"``.
        mongo_uri: MongoDB connection URI.
        mongo_db: Target MongoDB database name.
        supabase_url: Supabase project URL (supabase backend only).
        supabase_key: Supabase service role or anon key.
        raw_collection: Table/collection holding raw ledger lines.
        aggregated_collection: Table/collection receiving aggregated periods.
        api_url: Base URL of a running aggregation API (optional).
        aggregator: Batching configuration for the aggregator.
    """
    backend: str
    mongo_uri: str
    mongo_db: str
    supabase_url: str
    supabase_key: str
    raw_collection: str
    aggregated_collection: str
    api_url: str
    aggregator: AggregatorConfig


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def get_settings(env_file: Path | None = None) -> Settings:
    """Read environment variables and return a frozen `Settings` object.

    Args:
        env_file: Optional dotenv file. Defaults to ``.env`` at project root.
            Variables already present in the environment win.

    Raises:
        ConfigurationError: if the backend is unknown or its credentials are
            missing.
    """
    load_dotenv(env_file or PROJECT_ROOT / ".env")

    backend = os.getenv("PNL_BACKEND", "mongo").strip().lower()
    if backend not in BACKENDS:
        raise ConfigurationError(
            f"PNL_BACKEND must be one of {', '.join(BACKENDS)}, got {backend!r}"
        )

    mongo_uri = os.getenv("MONGO_URI", "").strip()
    supabase_url = os.getenv("SUPABASE_URL", "").strip()
    supabase_key = (
        os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
        or os.getenv("SUPABASE_ANON_KEY", "").strip()
    )

    if backend == "mongo" and not mongo_uri:
        raise ConfigurationError(
            "MONGO_URI is required for the mongo backend. Set it in .env."
        )
    if backend == "supabase" and not (supabase_url and supabase_key):
        raise ConfigurationError(
            "SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY) "
            "are required for the supabase backend."
        )

    aggregator = AggregatorConfig(
        page_size=_int_env("PNL_PAGE_SIZE", 1000),
        request_delay=_float_env("PNL_REQUEST_DELAY", 0.1),
        max_errors=_int_env("PNL_MAX_ERRORS", 10),
    )

    return Settings(
        backend=backend,
        mongo_uri=mongo_uri,
        mongo_db=os.getenv("MONGO_DB", "finance"),
        supabase_url=supabase_url,
        supabase_key=supabase_key,
        raw_collection=os.getenv("PNL_RAW_COLLECTION", "powerbi_pnl_data"),
        aggregated_collection=os.getenv(
            "PNL_AGGREGATED_COLLECTION", "powerbi_pnl_aggregated"
        ),
        api_url=os.getenv("PNL_API_URL", "http://localhost:8000").rstrip("/"),
        aggregator=aggregator,
    )
