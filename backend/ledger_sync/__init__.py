"""Bidirectional ledger reconciliation service."""

from ledger_sync.utils.logging_setup import install_trace_level

__version__ = "1.0.0"

install_trace_level()
