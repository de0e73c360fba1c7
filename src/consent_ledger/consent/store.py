"""Consent Store - durable-store contract and the in-memory reference"""
from abc import ABC, abstractmethod
from datetime import datetime
import threading

import structlog

from consent_ledger.consent.models import Consent

logger = structlog.get_logger(__name__)


class ConsentStore(ABC):
    """
    Storage contract for consent records.

    Implementations must make `save`, `delete_by_id` and `mark_revoked`
    atomic per record: readers see either the previous version or the new
    one, never a mix.
    """

    @abstractmethod
    def save(self, consent: Consent) -> Consent:
        """Insert or replace a consent by id."""
        pass

    @abstractmethod
    def delete_by_id(self, consent_id: str) -> bool:
        """Physically remove a consent. Returns False if it did not exist."""
        pass

    @abstractmethod
    def mark_revoked(self, consent_id: str, at: datetime) -> Consent | None:
        """
        Transition an active consent to revoked in one step.

        Returns the revoked version, or None if the consent does not exist
        or is already revoked. Of two concurrent calls for one consent,
        exactly one gets the revoked version.
        """
        pass

    @abstractmethod
    def find_by_id(self, consent_id: str) -> Consent | None:
        pass

    @abstractmethod
    def find_by_patient_ref(self, patient_ref: str) -> list[Consent]:
        """All consents for a patient, including expired and revoked ones."""
        pass

    def find_active_by_patient_ref_and_scope(
        self, patient_ref: str, scope: str, as_of: datetime
    ) -> Consent | None:
        """
        The most recently granted consent covering `scope` valid at `as_of`.

        Stores backed by a query engine should override this with a filtered
        query; the result must follow the same recency ordering.
        """
        matches = [
            c for c in self.find_by_patient_ref(patient_ref)
            if c.grants(scope, as_of)
        ]
        if not matches:
            return None
        return max(matches, key=Consent.recency_key)


class InMemoryConsentStore(ConsentStore):
    """Dict-backed store. Swappable for a real database."""

    def __init__(self):
        self._consents: dict[str, Consent] = {}
        self._lock = threading.Lock()

    def save(self, consent: Consent) -> Consent:
        with self._lock:
            self._consents[consent.id] = consent
        return consent

    def delete_by_id(self, consent_id: str) -> bool:
        with self._lock:
            return self._consents.pop(consent_id, None) is not None

    def mark_revoked(self, consent_id: str, at: datetime) -> Consent | None:
        with self._lock:
            consent = self._consents.get(consent_id)
            if consent is None or consent.is_revoked:
                return None
            revoked = consent.revoked(at)
            self._consents[consent_id] = revoked
        return revoked

    def find_by_id(self, consent_id: str) -> Consent | None:
        with self._lock:
            return self._consents.get(consent_id)

    def find_by_patient_ref(self, patient_ref: str) -> list[Consent]:
        with self._lock:
            snapshot = list(self._consents.values())
        return [c for c in snapshot if c.patient_ref == patient_ref]

    def __len__(self) -> int:
        with self._lock:
            return len(self._consents)
