"""Consent Data Models"""
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum


class ConsentStatus(str, Enum):
    ACTIVE = "active"
    REVOKED = "revoked"


class ConsentScope(str, Enum):
    """Well-known scopes. The vocabulary is open; any non-blank string works."""
    PATIENT_VIEW = "PATIENT_VIEW"
    EMERGENCY_CONTACT_NOTIFY = "EMERGENCY_CONTACT_NOTIFY"
    EMERGENCY_CONTACT_NOTIFY_DETAILED = "EMERGENCY_CONTACT_NOTIFY_DETAILED"
    APPOINTMENT_REMINDER = "APPOINTMENT_REMINDER"
    MEDICATION_REMINDER = "MEDICATION_REMINDER"


def scope_value(scope: str | ConsentScope) -> str:
    if isinstance(scope, ConsentScope):
        return scope.value
    return str(scope).strip()


@dataclass(frozen=True)
class Consent:
    """
    Patient consent grant.

    Frozen after construction. The only transition is `revoked()`, which
    returns the revoked version for the store to persist.
    """
    id: str
    patient_ref: str
    scopes: frozenset[str]
    granted_at: datetime
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    status: ConsentStatus = ConsentStatus.ACTIVE
    revoked_at: datetime | None = None

    @property
    def is_revoked(self) -> bool:
        return self.status == ConsentStatus.REVOKED

    def has_scope(self, scope: str | ConsentScope) -> bool:
        return scope_value(scope) in self.scopes

    def is_valid_at(self, instant: datetime) -> bool:
        # Strictly before expiry; granted_at is not consulted
        return not self.is_revoked and instant < self.expires_at

    def grants(self, scope: str | ConsentScope, instant: datetime) -> bool:
        return self.has_scope(scope) and self.is_valid_at(instant)

    def revoked(self, at: datetime) -> "Consent":
        if self.is_revoked:
            raise ValueError(f"Consent {self.id} is already revoked")
        # updated_at never moves backwards
        stamp = max(at, self.updated_at)
        return replace(
            self,
            status=ConsentStatus.REVOKED,
            revoked_at=stamp,
            updated_at=stamp,
        )

    def recency_key(self) -> tuple:
        """Ordering used to pick one consent among several valid matches."""
        return (self.granted_at, self.created_at, self.id)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "patient_ref": self.patient_ref,
            "scopes": sorted(self.scopes),
            "granted_at": self.granted_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "status": self.status.value,
            "revoked_at": self.revoked_at.isoformat() if self.revoked_at else None,
        }
