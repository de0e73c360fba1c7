"""
Audit Stores

Insert-only storage for audit records. The contract has no
update or delete operation. Every read path returns records ascending by
timestamp, ties in append order.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Callable
import json
import os
import threading

import structlog

from consent_ledger.audit.models import AuditRecord
from consent_ledger.errors import PersistenceFailure

logger = structlog.get_logger(__name__)


class AuditStore(ABC):
    """Append-only audit storage contract."""

    @abstractmethod
    def append(self, record: AuditRecord) -> None:
        """
        Durably insert one record.

        Must return only once the record is durable and visible to readers
        as a whole. Raises PersistenceFailure otherwise.
        """
        pass

    @abstractmethod
    def append_chained(
        self,
        patient_ref: str,
        build: Callable[[AuditRecord | None], AuditRecord],
    ) -> AuditRecord:
        """
        Atomically read the tail of a patient's chain and insert its successor.

        `build` receives the current last record for `patient_ref` (None for
        an empty chain) and returns the record to insert. No other append
        for the same patient may land between the read and the insert.
        Same durability guarantees as `append`.
        """
        pass

    @abstractmethod
    def find_all(self) -> list[AuditRecord]:
        pass

    @abstractmethod
    def last_for_patient(self, patient_ref: str) -> AuditRecord | None:
        """Most recently appended record of a patient's chain."""
        pass

    def find_by_patient_ref(self, patient_ref: str) -> list[AuditRecord]:
        return [r for r in self.find_all() if r.patient_ref == patient_ref]

    def find_by_event_type(self, event_type: str) -> list[AuditRecord]:
        return [r for r in self.find_all() if r.event_type == event_type]

    def find_by_timestamp_range(self, start: datetime, end: datetime) -> list[AuditRecord]:
        """Records with start <= timestamp <= end."""
        return [r for r in self.find_all() if start <= r.timestamp <= end]

    def find_by_patient_ref_and_event_type(
        self, patient_ref: str, event_type: str
    ) -> list[AuditRecord]:
        return [
            r for r in self.find_by_patient_ref(patient_ref)
            if r.event_type == event_type
        ]


class InMemoryAuditStore(AuditStore):
    """
    List-backed reference store.

    Records are kept as (timestamp, sequence, record) so reads sort by
    timestamp and fall back to append order for equal timestamps.
    """

    def __init__(self):
        self._rows: list[tuple[datetime, int, AuditRecord]] = []
        self._last: dict[str, AuditRecord] = {}
        self._sequence = 0
        self._lock = threading.Lock()

    def append(self, record: AuditRecord) -> None:
        with self._lock:
            self._commit(record)

    def append_chained(
        self,
        patient_ref: str,
        build: Callable[[AuditRecord | None], AuditRecord],
    ) -> AuditRecord:
        with self._lock:
            record = build(self._last.get(patient_ref))
            self._commit(record)
        return record

    def _commit(self, record: AuditRecord) -> None:
        """Make `record` visible. Called with the store lock held."""
        self._remember(record)

    def _remember(self, record: AuditRecord) -> None:
        self._sequence += 1
        self._rows.append((record.timestamp, self._sequence, record))
        self._last[record.patient_ref] = record

    def find_all(self) -> list[AuditRecord]:
        with self._lock:
            rows = list(self._rows)
        rows.sort(key=lambda row: (row[0], row[1]))
        return [row[2] for row in rows]

    def last_for_patient(self, patient_ref: str) -> AuditRecord | None:
        with self._lock:
            return self._last.get(patient_ref)

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


class JsonlAuditStore(InMemoryAuditStore):
    """
    Durable append-only store: one JSON document per line.

    Each append is written and fsynced before it becomes visible to
    readers. A write that fails partway is truncated back off the file.
    Existing lines are loaded on open. One process writes a given file.
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                for line_no, line in enumerate(fh, start=1):
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        record = AuditRecord.from_dict(json.loads(line))
                    except (ValueError, KeyError) as e:
                        raise PersistenceFailure(
                            f"Unreadable audit record at {self.path}:{line_no}"
                        ) from e
                    self._remember(record)
        except OSError as e:
            raise PersistenceFailure(f"Cannot read audit ledger {self.path}: {e}") from e

        logger.info("Audit ledger loaded", path=str(self.path), records=len(self))

    def _commit(self, record: AuditRecord) -> None:
        data = (json.dumps(record.to_dict(), sort_keys=True) + "\n").encode("utf-8")
        try:
            with self.path.open("ab", buffering=0) as fh:
                start = fh.tell()
                try:
                    if fh.write(data) != len(data):
                        raise OSError(f"short write to {self.path}")
                    os.fsync(fh.fileno())
                except OSError:
                    fh.truncate(start)
                    raise
        except OSError as e:
            logger.error("Audit write failed", path=str(self.path), error=str(e))
            raise PersistenceFailure(f"Audit write failed: {e}") from e

        self._remember(record)
