"""Error taxonomy for consent checks and audit writes.

Messages carry reference identifiers only, never PHI.
"""


class ConsentLedgerError(Exception):
    """Base class for all consent-ledger failures."""


class InvalidGrant(ConsentLedgerError):
    """Malformed input to a consent grant."""


class NotFound(ConsentLedgerError):
    """Reference to a consent that does not exist (or is already revoked)."""

    def __init__(self, consent_id: str):
        super().__init__(f"Consent not found: {consent_id}")
        self.consent_id = consent_id


class ConsentDenied(ConsentLedgerError):
    """No valid consent authorizes the requested scope."""

    def __init__(self, patient_ref: str, scope: str):
        super().__init__(
            f"Patient {patient_ref} does not have valid consent for scope: {scope}"
        )
        self.patient_ref = patient_ref
        self.scope = scope


class PersistenceFailure(ConsentLedgerError):
    """Store unavailable or write rejected. Fatal to the enclosing operation."""
