"""
Usage Reconciler.

Ingests model usage events from the desktop client and reconciles
drifting account identifiers for the usage dashboard.
"""

__version__ = "0.1.0"
