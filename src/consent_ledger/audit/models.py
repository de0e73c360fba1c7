"""Audit Models"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
import hashlib
import json
import uuid


class AuditEventType(str, Enum):
    """Known audit event kinds. Other event type strings are accepted."""
    # Patient record
    PATIENT_CREATED = "PATIENT_CREATED"
    PATIENT_ACCESSED = "PATIENT_ACCESSED"
    PATIENT_UPDATED = "PATIENT_UPDATED"
    PATIENT_DELETED = "PATIENT_DELETED"

    # Consent
    CONSENT_GRANTED = "CONSENT_GRANTED"
    CONSENT_VALIDATED = "CONSENT_VALIDATED"
    CONSENT_DENIED = "CONSENT_DENIED"
    CONSENT_REVOKED = "CONSENT_REVOKED"

    # Outbound
    NOTIFICATION_SENT = "NOTIFICATION_SENT"


def event_type_value(event_type: str | AuditEventType) -> str:
    if isinstance(event_type, AuditEventType):
        return event_type.value
    return str(event_type).strip()


def new_audit_id() -> str:
    return f"AUD-{uuid.uuid4().hex[:16].upper()}"


def compute_record_hash(
    id: str,
    timestamp: datetime,
    event_type: str,
    patient_ref: str,
    details: str,
    user_id: str | None,
    correlation_id: str | None,
    previous_hash: str | None,
) -> str:
    """SHA-256 over a deterministic JSON rendering of every record field."""
    data = {
        "id": id,
        "timestamp": timestamp.isoformat(),
        "event_type": event_type,
        "patient_ref": patient_ref,
        "details": details,
        "user_id": user_id,
        "correlation_id": correlation_id,
        "previous_hash": previous_hash or "",
    }
    return hashlib.sha256(json.dumps(data, sort_keys=True).encode()).hexdigest()


@dataclass(frozen=True)
class AuditRecord:
    """
    An immutable audit fact.

    Build with `AuditRecord.create`; the record hash covers every field and
    links to the previous record of the same patient chain.
    """
    id: str
    timestamp: datetime
    event_type: str
    patient_ref: str
    details: str
    previous_hash: str | None
    record_hash: str
    user_id: str | None = None
    correlation_id: str | None = None

    @classmethod
    def create(
        cls,
        timestamp: datetime,
        event_type: str | AuditEventType,
        patient_ref: str,
        details: str,
        previous_hash: str | None = None,
        user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> "AuditRecord":
        record_id = new_audit_id()
        event_type = event_type_value(event_type)
        return cls(
            id=record_id,
            timestamp=timestamp,
            event_type=event_type,
            patient_ref=patient_ref,
            details=details,
            previous_hash=previous_hash,
            record_hash=compute_record_hash(
                record_id, timestamp, event_type, patient_ref, details,
                user_id, correlation_id, previous_hash,
            ),
            user_id=user_id,
            correlation_id=correlation_id,
        )

    def expected_hash(self) -> str:
        return compute_record_hash(
            self.id, self.timestamp, self.event_type, self.patient_ref,
            self.details, self.user_id, self.correlation_id, self.previous_hash,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "patient_ref": self.patient_ref,
            "details": self.details,
            "user_id": self.user_id,
            "correlation_id": self.correlation_id,
            "previous_hash": self.previous_hash,
            "record_hash": self.record_hash,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AuditRecord":
        return cls(
            id=data["id"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            event_type=data["event_type"],
            patient_ref=data["patient_ref"],
            details=data["details"],
            previous_hash=data.get("previous_hash"),
            record_hash=data["record_hash"],
            user_id=data.get("user_id"),
            correlation_id=data.get("correlation_id"),
        )

    def to_log_dict(self) -> dict:
        """Reference fields only, for application logs."""
        return {
            "audit_id": self.id,
            "recorded_at": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "patient_ref": self.patient_ref,
            "user_id": self.user_id,
            "correlation_id": self.correlation_id,
        }


@dataclass
class IntegrityReport:
    """Result of re-walking the audit hash chains."""
    verified: bool
    total_records: int
    tampered_records: list[dict[str, Any]] = field(default_factory=list)
    chains: int = 0
