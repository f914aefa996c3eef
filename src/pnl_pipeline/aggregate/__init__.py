"""P&L aggregation.

Classification of ledger categories into buckets, the food/beverage and
contract/flex splits, and the paginated per-period rollup that writes
aggregated rows.
"""
