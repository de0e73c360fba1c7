"""
Structured Logging

structlog configuration with PHI redaction applied to every string value
before rendering. Application logs carry reference ids only; the redaction
processor is a backstop, not a licence to log patient data.
"""

import logging
import sys

import structlog

from consent_ledger.audit.phi import redact_phi

_UNREDACTED_KEYS = {"level", "logger", "timestamp"}


def phi_redaction_processor(logger, method_name, event_dict):
    """Redact PHI from the event and all string values."""
    for key, value in event_dict.items():
        if isinstance(value, str) and key not in _UNREDACTED_KEYS:
            event_dict[key] = redact_phi(value)
    return event_dict


def configure_logging(level: str = "INFO", json_logs: bool = False) -> None:
    """Configure stdlib logging and structlog for the process."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer(colors=False)
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            phi_redaction_processor,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
