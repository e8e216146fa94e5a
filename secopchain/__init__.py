"""Procurement contract ledger with an approval workflow, an HTTP API and peer replication."""

__version__ = "2.0.0"