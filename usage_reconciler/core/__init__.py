"""
Core modules for the usage reconciler.

This package contains identifier normalization, payload classification,
ingestion, reconciliation queries, synthetic fallback data and the
daily usage summary.
"""
