"""Consent Authority - scoped, time-bounded consent grants and validity checks"""
from datetime import datetime
from typing import Iterable, Literal
import uuid

import structlog

from consent_ledger.clock import Clock, SystemClock, ensure_utc
from consent_ledger.consent.models import Consent, ConsentScope, scope_value
from consent_ledger.consent.store import ConsentStore
from consent_ledger.errors import ConsentDenied, InvalidGrant, NotFound

logger = structlog.get_logger(__name__)


class ConsentAuthority:
    """
    Owns the consent write path and answers validity queries.

    Every check re-evaluates against the store and the clock; decisions are
    never cached. A grant for scope A never satisfies a request for scope B.
    """

    def __init__(
        self,
        store: ConsentStore,
        clock: Clock | None = None,
        revoke_mode: Literal["mark", "delete"] = "mark",
    ):
        if revoke_mode not in ("mark", "delete"):
            raise ValueError(f"Unknown revoke mode: {revoke_mode}")
        self._store = store
        self._clock = clock or SystemClock()
        self.revoke_mode = revoke_mode

    def grant(
        self,
        patient_ref: str,
        scopes: Iterable[str | ConsentScope],
        granted_at: datetime,
        expires_at: datetime,
    ) -> Consent:
        """
        Create and persist a consent.

        Raises:
            InvalidGrant: blank patient_ref, empty/blank scopes, or
                expires_at not after granted_at. Nothing is persisted.
        """
        if patient_ref is None or not str(patient_ref).strip():
            raise InvalidGrant("patient_ref must not be blank")
        if isinstance(scopes, (str, ConsentScope)):
            scopes = [scopes]

        normalized = set()
        for scope in scopes or ():
            value = scope_value(scope)
            if not value:
                raise InvalidGrant("scopes must not contain blank entries")
            normalized.add(value)
        if not normalized:
            raise InvalidGrant("scopes must not be empty")

        if granted_at is None or expires_at is None:
            raise InvalidGrant("granted_at and expires_at are required")
        granted_at = ensure_utc(granted_at)
        expires_at = ensure_utc(expires_at)
        if expires_at <= granted_at:
            raise InvalidGrant("expires_at must be after granted_at")

        now = self._clock.now()
        consent = Consent(
            id=str(uuid.uuid4()),
            patient_ref=str(patient_ref).strip(),
            scopes=frozenset(normalized),
            granted_at=granted_at,
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )
        self._store.save(consent)

        logger.info(
            "Consent granted",
            consent_id=consent.id,
            patient_ref=consent.patient_ref,
            scopes=sorted(consent.scopes),
        )
        return consent

    def revoke(self, consent_id: str) -> Consent:
        """
        Remove a consent's future validity.

        Returns the consent as it was revoked. Revoking an unknown or
        already-revoked consent raises NotFound.
        """
        now = self._clock.now()
        if self.revoke_mode == "delete":
            consent = self._store.find_by_id(consent_id)
            if consent is None or consent.is_revoked:
                raise NotFound(consent_id)
            revoked = consent.revoked(now)
            if not self._store.delete_by_id(consent_id):
                # Lost a race with a concurrent revoke
                raise NotFound(consent_id)
        else:
            revoked = self._store.mark_revoked(consent_id, now)
            if revoked is None:
                raise NotFound(consent_id)

        logger.info(
            "Consent revoked",
            consent_id=consent_id,
            patient_ref=revoked.patient_ref,
            mode=self.revoke_mode,
        )
        return revoked

    def get(self, consent_id: str) -> Consent:
        consent = self._store.find_by_id(consent_id)
        if consent is None:
            raise NotFound(consent_id)
        return consent

    def list_for_patient(self, patient_ref: str) -> list[Consent]:
        """All consents for a patient, oldest grant first."""
        return sorted(
            self._store.find_by_patient_ref(patient_ref),
            key=Consent.recency_key,
        )

    def list_active(self, patient_ref: str, as_of: datetime | None = None) -> list[Consent]:
        instant = self._instant(as_of)
        return [c for c in self.list_for_patient(patient_ref) if c.is_valid_at(instant)]

    def find_active(
        self,
        patient_ref: str,
        scope: str | ConsentScope,
        as_of: datetime | None = None,
    ) -> Consent | None:
        """Most recently granted consent for `scope` valid at `as_of`, or None."""
        scope = scope_value(scope)
        instant = self._instant(as_of)

        logger.debug("Validating consent", patient_ref=patient_ref, scope=scope)
        consent = self._store.find_active_by_patient_ref_and_scope(patient_ref, scope, instant)

        if consent is None:
            logger.warning("No active consent found", patient_ref=patient_ref, scope=scope)
        return consent

    def is_authorized(
        self,
        patient_ref: str,
        scope: str | ConsentScope,
        as_of: datetime | None = None,
    ) -> bool:
        return self.find_active(patient_ref, scope, as_of) is not None

    def authorize(
        self,
        patient_ref: str,
        scope: str | ConsentScope,
        as_of: datetime | None = None,
    ) -> Consent:
        """
        Enforcement point for consent-gated operations.

        Raises:
            ConsentDenied: no valid consent covers the scope at `as_of`.
        """
        consent = self.find_active(patient_ref, scope, as_of)
        if consent is None:
            raise ConsentDenied(patient_ref, scope_value(scope))
        return consent

    def _instant(self, as_of: datetime | None) -> datetime:
        return self._clock.now() if as_of is None else ensure_utc(as_of)
