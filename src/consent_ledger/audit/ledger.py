"""
Audit Ledger

Append-only, hash-chained record of every consent decision and every
access or mutation of patient data. Appends are synchronous: when `append`
returns, the record is durable; when it raises, the calling operation must
not report success.

Each patient reference has its own hash chain. The store links every new
record to its predecessor atomically, so several ledgers may share a store.
"""

from collections import defaultdict
from datetime import datetime

import structlog

from consent_ledger.audit.models import (
    AuditEventType,
    AuditRecord,
    IntegrityReport,
    event_type_value,
)
from consent_ledger.audit.phi import PHIScreen
from consent_ledger.audit.store import AuditStore
from consent_ledger.clock import Clock, SystemClock, ensure_utc
from consent_ledger.errors import PersistenceFailure

logger = structlog.get_logger(__name__)


class AuditLedger:
    """
    Owns the audit write path.

    There is no update or delete method; records leave this class only as
    frozen AuditRecord values.
    """

    def __init__(
        self,
        store: AuditStore,
        clock: Clock | None = None,
        phi_screen: PHIScreen | None = None,
        details_max_length: int = 1000,
    ):
        self._store = store
        self._clock = clock or SystemClock()
        self._phi_screen = phi_screen or PHIScreen("redact")
        self._details_max_length = details_max_length

    def append(
        self,
        event_type: str | AuditEventType,
        patient_ref: str,
        details: str = "",
        user_id: str | None = None,
        correlation_id: str | None = None,
    ) -> AuditRecord:
        """
        Record one event. Id and timestamp are assigned here.

        Raises:
            PersistenceFailure: the store did not durably accept the record.
        """
        event_type = event_type_value(event_type)
        details = self._prepare_details(details)

        def build(previous: AuditRecord | None) -> AuditRecord:
            timestamp = self._clock.now()
            if previous is not None and timestamp < previous.timestamp:
                # Keep each chain in timestamp order if the clock steps back
                timestamp = previous.timestamp
            return AuditRecord.create(
                timestamp=timestamp,
                event_type=event_type,
                patient_ref=patient_ref,
                details=details,
                previous_hash=previous.record_hash if previous else None,
                user_id=user_id,
                correlation_id=correlation_id,
            )

        try:
            record = self._store.append_chained(patient_ref, build)
        except PersistenceFailure:
            logger.error(
                "Audit append failed",
                event_type=event_type,
                patient_ref=patient_ref,
            )
            raise
        except OSError as e:
            logger.error(
                "Audit append failed",
                event_type=event_type,
                patient_ref=patient_ref,
                error=str(e),
            )
            raise PersistenceFailure(f"Audit store unavailable: {e}") from e

        logger.info("Audit", **record.to_log_dict())
        return record

    def _prepare_details(self, details: str | None) -> str:
        text = "" if details is None else str(details)
        text = self._phi_screen.screen(text)
        if len(text) > self._details_max_length:
            text = text[: self._details_max_length - 3] + "..."
        return text

    # =========================================================================
    # Query Methods (read-only)
    # =========================================================================

    def query_by_patient(self, patient_ref: str) -> list[AuditRecord]:
        return self._store.find_by_patient_ref(patient_ref)

    def query_by_event_type(self, event_type: str | AuditEventType) -> list[AuditRecord]:
        return self._store.find_by_event_type(event_type_value(event_type))

    def query_by_time_range(self, start: datetime, end: datetime) -> list[AuditRecord]:
        """Records with start <= timestamp <= end; empty when start > end."""
        start, end = ensure_utc(start), ensure_utc(end)
        if start > end:
            return []
        return self._store.find_by_timestamp_range(start, end)

    def query_by_patient_and_event_type(
        self, patient_ref: str, event_type: str | AuditEventType
    ) -> list[AuditRecord]:
        return self._store.find_by_patient_ref_and_event_type(
            patient_ref, event_type_value(event_type)
        )

    def query(
        self,
        patient_ref: str | None = None,
        event_type: str | AuditEventType | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AuditRecord]:
        """Compose any of the filters. No filters returns the whole ledger."""
        if patient_ref is not None and event_type is not None:
            results = self.query_by_patient_and_event_type(patient_ref, event_type)
        elif patient_ref is not None:
            results = self.query_by_patient(patient_ref)
        elif event_type is not None:
            results = self.query_by_event_type(event_type)
        else:
            results = self._store.find_all()

        if start is not None:
            start = ensure_utc(start)
            results = [r for r in results if r.timestamp >= start]
        if end is not None:
            end = ensure_utc(end)
            results = [r for r in results if r.timestamp <= end]
        return results

    # =========================================================================
    # Integrity
    # =========================================================================

    def verify_integrity(self, patient_ref: str | None = None) -> IntegrityReport:
        """
        Re-walk the hash chains and report any tampering.

        Each patient chain is followed from its root through previous_hash
        links; records that cannot be reached that way are reported as
        `chain_broken`.
        """
        records = (
            self._store.find_by_patient_ref(patient_ref)
            if patient_ref is not None
            else self._store.find_all()
        )

        chains: dict[str, list[AuditRecord]] = defaultdict(list)
        for record in records:
            chains[record.patient_ref].append(record)

        tampered = []
        for chain in chains.values():
            successors: dict[str | None, AuditRecord] = {}
            for record in chain:
                if record.expected_hash() != record.record_hash:
                    tampered.append({
                        "id": record.id,
                        "patient_ref": record.patient_ref,
                        "issue": "record_hash_mismatch",
                    })
                # A second record claiming the same predecessor is a fork
                successors.setdefault(record.previous_hash, record)

            reached = set()
            cursor: str | None = None
            while cursor in successors and successors[cursor].id not in reached:
                reached.add(successors[cursor].id)
                cursor = successors[cursor].record_hash

            for record in chain:
                if record.id not in reached:
                    tampered.append({
                        "id": record.id,
                        "patient_ref": record.patient_ref,
                        "issue": "chain_broken",
                    })

        if tampered:
            logger.error("Audit integrity violation", tampered=len(tampered))

        return IntegrityReport(
            verified=not tampered,
            total_records=len(records),
            tampered_records=tampered,
            chains=len(chains),
        )
