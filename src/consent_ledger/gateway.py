"""
Compliance Gateway

Orchestrates ConsentAuthority and AuditLedger for consent-gated operations.
Nothing here reports success until the matching audit record is durable.
"""

from datetime import datetime
from typing import Callable, Iterable, TypeVar

import structlog

from consent_ledger.audit.ledger import AuditLedger
from consent_ledger.audit.models import AuditEventType, AuditRecord
from consent_ledger.audit.phi import PHIScreen
from consent_ledger.audit.store import AuditStore, InMemoryAuditStore, JsonlAuditStore
from consent_ledger.clock import Clock, SystemClock
from consent_ledger.config import ConsentLedgerSettings, get_settings
from consent_ledger.consent.authority import ConsentAuthority
from consent_ledger.consent.models import Consent, ConsentScope, scope_value
from consent_ledger.consent.store import ConsentStore, InMemoryConsentStore
from consent_ledger.errors import ConsentDenied, NotFound, PersistenceFailure

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class ComplianceGateway:
    """
    Entry point for callers such as a patient-record service.

    Every authorization decision and every gated action produces exactly one
    audit record before the caller sees the outcome.
    """

    def __init__(self, authority: ConsentAuthority, ledger: AuditLedger, clock: Clock | None = None):
        self.authority = authority
        self.ledger = ledger
        self._clock = clock or SystemClock()

    def authorize(
        self,
        patient_ref: str,
        scope: str | ConsentScope,
        user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> Consent:
        """
        Check consent at the current instant and audit the decision.

        Raises:
            ConsentDenied: after CONSENT_DENIED has been recorded.
            PersistenceFailure: the decision could not be recorded; callers
                must not proceed even if consent exists.
        """
        scope = scope_value(scope)
        try:
            consent = self.authority.authorize(patient_ref, scope, self._clock.now())
        except ConsentDenied:
            self.ledger.append(
                AuditEventType.CONSENT_DENIED,
                patient_ref,
                f"Consent invalid for scope: {scope}",
                user_id=user_id,
                correlation_id=correlation_id,
            )
            raise

        self.ledger.append(
            AuditEventType.CONSENT_VALIDATED,
            patient_ref,
            f"Consent {consent.id} valid for scope: {scope}",
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return consent

    def record(
        self,
        event_type: str | AuditEventType,
        patient_ref: str,
        details: str,
        correlation_id: str | None = None,
        user_id: str | None = None,
    ) -> AuditRecord:
        return self.ledger.append(
            event_type, patient_ref, details,
            user_id=user_id, correlation_id=correlation_id,
        )

    def grant_consent(
        self,
        patient_ref: str,
        scopes: Iterable[str | ConsentScope],
        granted_at: datetime,
        expires_at: datetime,
        user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> Consent:
        """Grant and audit. An unauditable grant is revoked again."""
        consent = self.authority.grant(patient_ref, scopes, granted_at, expires_at)
        try:
            self.ledger.append(
                AuditEventType.CONSENT_GRANTED,
                consent.patient_ref,
                f"Consent {consent.id} granted for scopes: {', '.join(sorted(consent.scopes))}",
                user_id=user_id,
                correlation_id=correlation_id,
            )
        except PersistenceFailure:
            logger.error("Compensating unaudited grant", consent_id=consent.id)
            try:
                self.authority.revoke(consent.id)
            except NotFound:
                logger.warning("Unaudited grant already revoked", consent_id=consent.id)
            raise
        return consent

    def revoke_consent(
        self,
        consent_id: str,
        user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> Consent:
        """
        Revoke and audit.

        A revocation is never rolled back: if the audit write fails the
        consent stays revoked and PersistenceFailure is raised.
        """
        consent = self.authority.revoke(consent_id)
        self.ledger.append(
            AuditEventType.CONSENT_REVOKED,
            consent.patient_ref,
            f"Consent {consent.id} revoked",
            user_id=user_id,
            correlation_id=correlation_id,
        )
        return consent

    def run_gated(
        self,
        patient_ref: str,
        scope: str | ConsentScope,
        event_type: str | AuditEventType,
        action: Callable[[], T],
        details: str = "",
        compensate: Callable[[T], None] | None = None,
        user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> T:
        """
        Authorize, perform `action`, then audit it.

        If the action's audit record cannot be written, `compensate` is
        called with the action result and PersistenceFailure propagates.
        """
        self.authorize(patient_ref, scope, user_id=user_id, correlation_id=correlation_id)
        result = action()
        try:
            self.ledger.append(
                event_type, patient_ref, details,
                user_id=user_id, correlation_id=correlation_id,
            )
        except PersistenceFailure:
            if compensate is not None:
                logger.error(
                    "Compensating unaudited action",
                    patient_ref=patient_ref,
                    event_type=str(getattr(event_type, "value", event_type)),
                )
                try:
                    compensate(result)
                except Exception as e:
                    logger.error("Compensation failed", patient_ref=patient_ref, error=str(e))
            raise
        return result


def build_audit_store(settings: ConsentLedgerSettings) -> AuditStore:
    if settings.audit_backend == "jsonl":
        return JsonlAuditStore(settings.audit_path)
    return InMemoryAuditStore()


def build_gateway(
    settings: ConsentLedgerSettings | None = None,
    clock: Clock | None = None,
    consent_store: ConsentStore | None = None,
    audit_store: AuditStore | None = None,
) -> ComplianceGateway:
    """Wire stores, authority, ledger and gateway from settings."""
    settings = settings or get_settings()
    clock = clock or SystemClock()

    authority = ConsentAuthority(
        consent_store or InMemoryConsentStore(),
        clock=clock,
        revoke_mode=settings.revoke_mode,
    )
    ledger = AuditLedger(
        audit_store or build_audit_store(settings),
        clock=clock,
        phi_screen=PHIScreen(settings.phi_policy),
        details_max_length=settings.details_max_length,
    )

    logger.info(
        "Compliance gateway ready",
        env=settings.env,
        revoke_mode=settings.revoke_mode,
        audit_backend=settings.audit_backend,
    )
    return ComplianceGateway(authority, ledger, clock=clock)
