"""Read-only diagnostics for aggregated P&L data.

Comparison against expected accountant figures, an independent Dask
recomputation from raw lines, and duplicate-line detection.
"""
