"""
consent-ledger: Consent authorization and compliance audit

Answers whether a patient holds a currently valid, scoped consent for an
operation, and records every access or mutation in an append-only,
hash-chained audit ledger before the operation reports success.
"""

__version__ = "0.1.0"
__author__ = "Consent Ledger Team"
