"""Ledger-to-database cap table synchronisation and projection service."""

__version__ = "0.1.0"
