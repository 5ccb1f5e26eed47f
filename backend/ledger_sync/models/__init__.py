"""Database models."""

from ledger_sync.models.contact import Contact
from ledger_sync.models.invoice import Invoice, InvoiceLineItem
from ledger_sync.models.payment import Payment
from ledger_sync.models.sync_state import SyncState
from ledger_sync.models.conflict import ConflictRecord
from ledger_sync.models.sync_run import SyncRun
from ledger_sync.models.checkpoint import Checkpoint
from ledger_sync.models.audit_log import AuditEntry
from ledger_sync.models.ledger_connection import LedgerConnection

__all__ = [
    "Contact",
    "Invoice",
    "InvoiceLineItem",
    "Payment",
    "SyncState",
    "ConflictRecord",
    "SyncRun",
    "Checkpoint",
    "AuditEntry",
    "LedgerConnection",
]
