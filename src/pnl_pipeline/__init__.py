"""pnl_pipeline package.

Rolls raw Dutch general-ledger lines (PowerBI P&L export) up into one
aggregated profit & loss row per location and month, and reconciles the
result against accountant-reported figures.

Architecture:
- Raw ledger lines → aggregated periods, stored in MongoDB or Supabase
- Pydantic models define the canonical raw and aggregated schemas
- Dask is used for the raw recomputation behind reconciliation
- Exposed through an argparse CLI and a FastAPI endpoint
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
