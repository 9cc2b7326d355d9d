"""Bank reconciliation matching and recurring payment inference."""

__version__ = "0.1.0"
