# src/captable_sync/services/__init__.py
"""Ledger sync pipeline and cap table projection services."""
