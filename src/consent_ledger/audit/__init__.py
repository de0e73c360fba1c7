"""Audit ledger: append-only, hash-chained compliance trail"""
from consent_ledger.audit.ledger import AuditLedger
from consent_ledger.audit.models import AuditEventType, AuditRecord, IntegrityReport
from consent_ledger.audit.phi import PHIDetector, PHIRedactor, PHIScreen
from consent_ledger.audit.store import AuditStore, InMemoryAuditStore, JsonlAuditStore

__all__ = [
    "AuditLedger",
    "AuditEventType",
    "AuditRecord",
    "IntegrityReport",
    "PHIDetector",
    "PHIRedactor",
    "PHIScreen",
    "AuditStore",
    "InMemoryAuditStore",
    "JsonlAuditStore",
]
