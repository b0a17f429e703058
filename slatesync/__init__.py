"""slatesync: multi-provider sports data reconciliation and prop prediction cache."""

__version__ = "0.1.0"
