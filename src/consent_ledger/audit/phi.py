"""
PHI Screening for audit details and log output

Pattern-based detection of direct identifiers (names, contact details,
dates of birth, government ids) and category redaction. Audit `details`
and structured log values pass through here before they are persisted or
rendered.
"""

from enum import Enum
import re

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


class PHIType(str, Enum):
    """Direct identifiers screened out of audit details."""
    NAME = "name"
    SSN = "ssn"
    PHONE = "phone"
    EMAIL = "email"
    DOB = "dob"
    ADDRESS = "address"


class PHIMatch(BaseModel):
    """A detected PHI match."""
    phi_type: PHIType
    text: str
    start: int
    end: int


# =============================================================================
# Pattern Definitions
# =============================================================================

SSN_PATTERNS = [
    r'\b\d{3}-\d{2}-\d{4}\b',  # 123-45-6789
    r'\bSSN[:\s#]*\d{3}[-.\s]?\d{2}[-.\s]?\d{4}\b',  # SSN: 123456789
]

PHONE_PATTERNS = [
    r'\(\d{3}\)\s?\d{3}[-.\s]\d{4}\b',  # (123) 456-7890
    r'\b\d{3}[-.]\d{3}[-.]\d{4}\b',  # 123-456-7890
    r'\+\d{1,3}[-\s]?\d{1,4}[-\s]\d{3,4}[-\s]\d{3,4}\b',  # +64 21 555 0199
    r'\b(?:phone|tel|mobile|fax)[:\s#]*\+?\d[\d\-\s]{6,}\d\b',
]

EMAIL_PATTERN = r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'

DOB_PATTERNS = [
    r'\b(?:DOB|Date of Birth|Birth Date|born)[:\s]*\d{1,2}[-/.]\d{1,2}[-/.]\d{2,4}\b',
    r'\b(?:DOB|Date of Birth|Birth Date|born)[:\s]*\d{4}-\d{1,2}-\d{1,2}\b',
]

ADDRESS_PATTERNS = [
    r'\b\d{1,5}\s+[A-Za-z]+\s+(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd|Drive|Dr|Lane|Ln|Way|Court|Ct|Place|Pl)\b',
    r'\b(?:P\.?O\.?\s*Box|PO Box)\s+\d+\b',
]

# Title or label followed by capitalized words
NAME_PATTERNS = [
    r'\b(?:Mr\.?|Mrs\.?|Ms\.?|Dr\.?)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)',
    r'\b(?:[Pp]atient\s+)?[Nn]ame[:\s]+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)+)',
]


class PHIDetector:
    """Detect direct identifiers in free text."""

    def __init__(self, custom_patterns: dict[PHIType, list[str]] | None = None):
        self._compiled = {
            PHIType.SSN: [re.compile(p, re.IGNORECASE) for p in SSN_PATTERNS],
            PHIType.PHONE: [re.compile(p, re.IGNORECASE) for p in PHONE_PATTERNS],
            PHIType.EMAIL: [re.compile(EMAIL_PATTERN)],
            PHIType.DOB: [re.compile(p, re.IGNORECASE) for p in DOB_PATTERNS],
            PHIType.ADDRESS: [re.compile(p, re.IGNORECASE) for p in ADDRESS_PATTERNS],
        }
        self._name_patterns = [re.compile(p) for p in NAME_PATTERNS]

        for phi_type, patterns in (custom_patterns or {}).items():
            self._compiled.setdefault(phi_type, []).extend(
                re.compile(p, re.IGNORECASE) for p in patterns
            )

    def detect(self, text: str) -> list[PHIMatch]:
        """All non-overlapping PHI matches, ordered by position."""
        if not text:
            return []

        matches = []
        for phi_type, patterns in self._compiled.items():
            for pattern in patterns:
                for m in pattern.finditer(text):
                    matches.append(PHIMatch(
                        phi_type=phi_type, text=m.group(), start=m.start(), end=m.end(),
                    ))

        # Names: only the captured name, not the title
        for pattern in self._name_patterns:
            for m in pattern.finditer(text):
                matches.append(PHIMatch(
                    phi_type=PHIType.NAME, text=m.group(1), start=m.start(1), end=m.end(1),
                ))

        return self._deduplicate(matches)

    def _deduplicate(self, matches: list[PHIMatch]) -> list[PHIMatch]:
        """Drop overlapping matches, keeping the longest span."""
        matches.sort(key=lambda m: (m.start, -(m.end - m.start)))
        kept: list[PHIMatch] = []
        for match in matches:
            if kept and match.start < kept[-1].end:
                if match.end > kept[-1].end:
                    kept[-1] = PHIMatch(
                        phi_type=kept[-1].phi_type,
                        text=kept[-1].text,
                        start=kept[-1].start,
                        end=match.end,
                    )
                continue
            kept.append(match)
        return kept

    def contains_phi(self, text: str) -> bool:
        return bool(self.detect(text))

    def get_phi_types(self, text: str) -> set[PHIType]:
        return {m.phi_type for m in self.detect(text)}


class PHIRedactor:
    """Replace detected PHI with its category, e.g. `[EMAIL]`."""

    def __init__(self, detector: PHIDetector | None = None):
        self.detector = detector or PHIDetector()

    def redact(self, text: str) -> str:
        matches = self.detector.detect(text)
        if not matches:
            return text

        redacted = text
        for match in sorted(matches, key=lambda m: m.start, reverse=True):
            redacted = (
                redacted[:match.start]
                + f"[{match.phi_type.value.upper()}]"
                + redacted[match.end:]
            )
        return redacted


class PHIScreen:
    """
    Policy wrapper applied to audit details before they are hashed and stored.

    `redact` replaces identifiers; `off` passes text through untouched.
    """

    def __init__(self, policy: str = "redact", redactor: PHIRedactor | None = None):
        if policy not in ("redact", "off"):
            raise ValueError(f"Unknown PHI policy: {policy}")
        self.policy = policy
        self.redactor = redactor or PHIRedactor()

    def screen(self, text: str) -> str:
        if self.policy == "off" or not text:
            return text
        redacted = self.redactor.redact(text)
        if redacted != text:
            # Types only; never the matched text
            logger.warning(
                "PHI redacted from audit details",
                phi_types=sorted(t.value for t in self.redactor.detector.get_phi_types(text)),
            )
        return redacted


_default_redactor: PHIRedactor | None = None


def get_phi_redactor() -> PHIRedactor:
    global _default_redactor
    if _default_redactor is None:
        _default_redactor = PHIRedactor()
    return _default_redactor


def redact_phi(text: str) -> str:
    """Redact PHI from text using the default redactor."""
    return get_phi_redactor().redact(text)
