"""Shared fixtures: a fixed clock and in-memory stores wired into the components."""
from datetime import datetime, timezone

import pytest

from consent_ledger.audit.ledger import AuditLedger
from consent_ledger.audit.store import InMemoryAuditStore
from consent_ledger.clock import FixedClock
from consent_ledger.consent.authority import ConsentAuthority
from consent_ledger.consent.store import InMemoryConsentStore
from consent_ledger.errors import PersistenceFailure
from consent_ledger.gateway import ComplianceGateway

T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FlakyAuditStore(InMemoryAuditStore):
    """In-memory store that can be switched into an unavailable state."""

    def __init__(self):
        super().__init__()
        self.available = True

    def _commit(self, record):
        if not self.available:
            raise PersistenceFailure("audit store unavailable")
        super()._commit(record)


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def clock():
    return FixedClock(T0)


@pytest.fixture
def consent_store():
    return InMemoryConsentStore()


@pytest.fixture
def audit_store():
    return FlakyAuditStore()


@pytest.fixture
def authority(consent_store, clock):
    return ConsentAuthority(consent_store, clock=clock)


@pytest.fixture
def ledger(audit_store, clock):
    return AuditLedger(audit_store, clock=clock)


@pytest.fixture
def gateway(authority, ledger, clock):
    return ComplianceGateway(authority, ledger, clock=clock)
