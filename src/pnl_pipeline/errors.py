"""Exception types raised by the pipeline.

Per-key failures (`UpstreamFetchError`, `DownstreamWriteError`) are caught by
the batch runner and reported in the summary. `ConfigurationError` is the only
error that aborts a whole batch.
"""

from __future__ import annotations


class PnlPipelineError(Exception):
    """Base class for all pipeline errors."""


class ConfigurationError(PnlPipelineError):
    """Missing credentials or invalid parameters."""


class UpstreamFetchError(PnlPipelineError):
    """Reading raw ledger lines failed."""


class DownstreamWriteError(PnlPipelineError):
    """Upserting an aggregated period failed."""
