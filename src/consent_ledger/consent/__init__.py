"""Consent authority: scoped, time-bounded patient consent"""
from consent_ledger.consent.authority import ConsentAuthority
from consent_ledger.consent.models import Consent, ConsentScope, ConsentStatus
from consent_ledger.consent.store import ConsentStore, InMemoryConsentStore

__all__ = [
    "ConsentAuthority",
    "Consent",
    "ConsentScope",
    "ConsentStatus",
    "ConsentStore",
    "InMemoryConsentStore",
]
