"""
Consent and Audit HTTP Adapter

Thin FastAPI surface over ComplianceGateway. No business logic lives here:
requests are translated into gateway calls and the error taxonomy is mapped
to status codes.
"""

from datetime import datetime
from typing import List, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Query, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from consent_ledger import __version__
from consent_ledger.audit.models import AuditRecord
from consent_ledger.consent.models import Consent
from consent_ledger.errors import ConsentDenied, InvalidGrant, NotFound, PersistenceFailure
from consent_ledger.gateway import ComplianceGateway

logger = structlog.get_logger(__name__)


# =============================================================================
# Request / Response Models
# =============================================================================

class GrantRequest(BaseModel):
    patient_ref: str
    scopes: List[str]
    granted_at: datetime
    expires_at: datetime


class AuthorizeRequest(BaseModel):
    patient_ref: str
    scope: str


class AuditEntryRequest(BaseModel):
    """Any client-supplied timestamp or id is ignored."""
    event_type: str = Field(min_length=1)
    patient_ref: str = Field(min_length=1)
    details: str = ""
    correlation_id: Optional[str] = None


class ConsentResponse(BaseModel):
    id: str
    patient_ref: str
    scopes: List[str]
    granted_at: datetime
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    status: str
    revoked_at: Optional[datetime] = None

    @classmethod
    def from_consent(cls, consent: Consent) -> "ConsentResponse":
        return cls(**consent.to_dict())


class AuditRecordResponse(BaseModel):
    id: str
    timestamp: datetime
    event_type: str
    patient_ref: str
    details: str
    user_id: Optional[str] = None
    correlation_id: Optional[str] = None
    previous_hash: Optional[str] = None
    record_hash: str

    @classmethod
    def from_record(cls, record: AuditRecord) -> "AuditRecordResponse":
        return cls(**record.to_dict())


class IntegrityVerificationResponse(BaseModel):
    verified: bool
    total_records: int
    chains: int
    tampered_records: List[dict]


# =============================================================================
# Dependencies
# =============================================================================

def get_gateway(request: Request) -> ComplianceGateway:
    return request.app.state.gateway


def get_user_id(request: Request) -> Optional[str]:
    # Identity is verified upstream; the header is attribution only
    return request.headers.get("X-User-Id")


def get_correlation_id(request: Request) -> Optional[str]:
    return request.headers.get("X-Correlation-Id")


# =============================================================================
# Consent Routes
# =============================================================================

consent_router = APIRouter(prefix="/consents", tags=["Consent"])


@consent_router.post("", status_code=201, response_model=ConsentResponse)
def grant_consent(
    body: GrantRequest,
    gateway: ComplianceGateway = Depends(get_gateway),
    user_id: Optional[str] = Depends(get_user_id),
    correlation_id: Optional[str] = Depends(get_correlation_id),
):
    consent = gateway.grant_consent(
        body.patient_ref, body.scopes, body.granted_at, body.expires_at,
        user_id=user_id, correlation_id=correlation_id,
    )
    return ConsentResponse.from_consent(consent)


@consent_router.post("/authorize", response_model=ConsentResponse)
def authorize(
    body: AuthorizeRequest,
    gateway: ComplianceGateway = Depends(get_gateway),
    user_id: Optional[str] = Depends(get_user_id),
    correlation_id: Optional[str] = Depends(get_correlation_id),
):
    consent = gateway.authorize(
        body.patient_ref, body.scope,
        user_id=user_id, correlation_id=correlation_id,
    )
    return ConsentResponse.from_consent(consent)


@consent_router.get("/patient/{patient_ref}", response_model=List[ConsentResponse])
def list_patient_consents(patient_ref: str, gateway: ComplianceGateway = Depends(get_gateway)):
    return [ConsentResponse.from_consent(c) for c in gateway.authority.list_for_patient(patient_ref)]


@consent_router.get("/patient/{patient_ref}/active", response_model=List[ConsentResponse])
def list_active_consents(patient_ref: str, gateway: ComplianceGateway = Depends(get_gateway)):
    return [ConsentResponse.from_consent(c) for c in gateway.authority.list_active(patient_ref)]


@consent_router.get("/{consent_id}", response_model=ConsentResponse)
def get_consent(consent_id: str, gateway: ComplianceGateway = Depends(get_gateway)):
    return ConsentResponse.from_consent(gateway.authority.get(consent_id))


@consent_router.delete("/{consent_id}", status_code=204)
def revoke_consent(
    consent_id: str,
    gateway: ComplianceGateway = Depends(get_gateway),
    user_id: Optional[str] = Depends(get_user_id),
    correlation_id: Optional[str] = Depends(get_correlation_id),
):
    gateway.revoke_consent(consent_id, user_id=user_id, correlation_id=correlation_id)
    return Response(status_code=204)


# =============================================================================
# Audit Routes
# =============================================================================

audit_router = APIRouter(prefix="/audit", tags=["Audit"])


@audit_router.post("", status_code=201, response_model=AuditRecordResponse)
def record_event(
    body: AuditEntryRequest,
    gateway: ComplianceGateway = Depends(get_gateway),
    user_id: Optional[str] = Depends(get_user_id),
    correlation_id: Optional[str] = Depends(get_correlation_id),
):
    record = gateway.record(
        body.event_type, body.patient_ref, body.details,
        correlation_id=body.correlation_id or correlation_id,
        user_id=user_id,
    )
    return AuditRecordResponse.from_record(record)


@audit_router.get("", response_model=List[AuditRecordResponse])
def query_events(
    patient_ref: Optional[str] = Query(None, description="Filter by patient reference"),
    event_type: Optional[str] = Query(None, description="Filter by event type"),
    start: Optional[datetime] = Query(None, description="Earliest timestamp, inclusive"),
    end: Optional[datetime] = Query(None, description="Latest timestamp, inclusive"),
    gateway: ComplianceGateway = Depends(get_gateway),
):
    records = gateway.ledger.query(
        patient_ref=patient_ref, event_type=event_type, start=start, end=end,
    )
    return [AuditRecordResponse.from_record(r) for r in records]


@audit_router.get("/verify", response_model=IntegrityVerificationResponse)
def verify_integrity(
    patient_ref: Optional[str] = Query(None, description="Verify a single patient chain"),
    gateway: ComplianceGateway = Depends(get_gateway),
):
    report = gateway.ledger.verify_integrity(patient_ref)
    return IntegrityVerificationResponse(
        verified=report.verified,
        total_records=report.total_records,
        chains=report.chains,
        tampered_records=report.tampered_records,
    )


# =============================================================================
# Application
# =============================================================================

_ERROR_STATUS = {
    InvalidGrant: 422,
    NotFound: 404,
    ConsentDenied: 403,
    PersistenceFailure: 503,
}


def _error_handler(status_code: int):
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        logger.warning(
            "Request failed",
            path=request.url.path,
            error_type=type(exc).__name__,
            status_code=status_code,
        )
        detail = str(exc)
        if isinstance(exc, PersistenceFailure):
            # Store internals stay out of responses
            detail = "Audit trail unavailable; operation not completed"
        return JSONResponse(
            status_code=status_code,
            content={"error": type(exc).__name__, "detail": detail},
        )
    return handler


def create_app(gateway: ComplianceGateway) -> FastAPI:
    app = FastAPI(
        title="Consent Ledger API",
        description="Consent authorization and compliance audit",
        version=__version__,
    )
    app.state.gateway = gateway

    for exc_type, status_code in _ERROR_STATUS.items():
        app.add_exception_handler(exc_type, _error_handler(status_code))

    app.include_router(consent_router)
    app.include_router(audit_router)
    return app


def create_app_from_settings() -> FastAPI:
    """
    Process entry point: logging and gateway built from environment settings.

    Serve with `uvicorn --factory consent_ledger.api:create_app_from_settings`.
    """
    from consent_ledger.config import get_settings
    from consent_ledger.gateway import build_gateway
    from consent_ledger.observability import configure_logging

    settings = get_settings()
    configure_logging(settings.log_level, json_logs=settings.json_logs or settings.is_production)
    return create_app(build_gateway(settings))
