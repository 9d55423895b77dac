"""
Consent Audit Service - FastAPI Application
Records cookie consent, exposes consent history and audit trails, and runs
retention cleanup and compliance checks
"""

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional
import logging
import time
import structlog

from .config import get_settings
from .constants import (
    API_PREFIX,
    DEFAULT_PAGE_LIMIT,
    MAX_PAGE_LIMIT,
    SERVICE_NAME,
    SERVICE_VERSION,
    SYSTEM_ACTOR,
    UNKNOWN_CLIENT,
)
from .consent.engine import ConsentLifecycleEngine
from .consent.models import (
    ConsentQuery,
    ConsentRequest,
    ConsentStatus,
    ConsentType,
    StatusUpdateRequest,
)
from .consent.storage import create_store
from .exceptions import ConsentAuditError, RecordNotFoundError, ValidationError
from .retention.validator import RetentionValidator
from .utils.clock import utc_now

# Global settings
settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level.upper())

# Configure structured logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Initialize services
consent_store = None
consent_engine: Optional[ConsentLifecycleEngine] = None
retention_validator: Optional[RetentionValidator] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    global consent_store, consent_engine, retention_validator

    logger.info("Starting Consent Audit Service", version=SERVICE_VERSION,
                storage_backend=settings.storage_backend.value)

    # Initialize services only if not already provided (for testing/injection)
    if consent_engine is None or retention_validator is None:
        consent_store = create_store(settings)
        consent_engine = ConsentLifecycleEngine(consent_store, settings)
        retention_validator = RetentionValidator(consent_store, consent_engine.get_compliance_config())
        logger.info("Consent services initialized")

    yield

    logger.info("Shutting down Consent Audit Service")
    if consent_store is not None:
        consent_store.close()


# Create FastAPI app
app = FastAPI(
    title="Consent Audit Service",
    description="Cookie consent recording, audit trails and data retention compliance",
    version=SERVICE_VERSION,
    debug=settings.debug_mode,
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


def client_ip(request: Request) -> str:
    """Originating client address, preferring the first X-Forwarded-For hop"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or UNKNOWN_CLIENT
    if request.client:
        return request.client.host
    return UNKNOWN_CLIENT


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "Request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round((time.perf_counter() - start) * 1000, 2),
        client_ip=client_ip(request),
    )
    return response


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part not in ("body", "query", "path")),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400,
        content={"success": False, "message": "Validation error", "errors": errors},
    )


@app.exception_handler(ConsentAuditError)
async def consent_audit_error_handler(request: Request, exc: ConsentAuditError):
    if isinstance(exc, ValidationError):
        status_code = 400
    elif isinstance(exc, RecordNotFoundError):
        status_code = 404
    else:
        status_code = 500
        logger.error("Consent operation failed", path=request.url.path, error=exc.message,
                     details=exc.details)

    return JSONResponse(status_code=status_code, content={"success": False, **exc.to_dict()})


# =============================================================================
# CONSENT ENDPOINTS
# =============================================================================

@app.post(f"{API_PREFIX}/record", status_code=201)
async def record_consent(consent_request: ConsentRequest):
    """Record a consent decision"""
    if not consent_engine:
        raise HTTPException(status_code=503, detail="Consent engine not available")

    record = consent_engine.record_consent(consent_request)
    return {
        "success": True,
        "message": "Consent recorded successfully",
        "consent_id": record.id,
        "data": record.model_dump(mode="json"),
    }


@app.get(f"{API_PREFIX}/logs")
async def get_consent_logs(
    user_id: Optional[str] = Query(default=None, min_length=1, max_length=255),
    session_id: Optional[str] = Query(default=None, min_length=1, max_length=255),
    current_org_id: Optional[str] = Query(default=None, min_length=1, max_length=255),
    consent_type: Optional[ConsentType] = None,
    consent_status: Optional[ConsentStatus] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    limit: int = Query(default=DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    offset: int = Query(default=0, ge=0),
):
    """List consent records, newest first"""
    if not consent_engine:
        raise HTTPException(status_code=503, detail="Consent engine not available")

    query = ConsentQuery(
        user_id=user_id,
        session_id=session_id,
        current_org_id=current_org_id,
        consent_type=consent_type,
        consent_status=consent_status,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    records, total = consent_engine.list_consents(query)
    return {
        "success": True,
        "data": [r.model_dump(mode="json") for r in records],
        "total": total,
        "page": offset // limit + 1,
        "limit": limit,
    }


@app.get(f"{API_PREFIX}/admin/compliance")
async def validate_compliance():
    """Check stored records against the retention policy (admin)"""
    if not consent_engine or not retention_validator:
        raise HTTPException(status_code=503, detail="Consent engine not available")

    report = retention_validator.validate_integrity()
    return {
        "success": True,
        "compliance": {
            "valid": report.valid,
            "issues": report.issues,
            "config": consent_engine.get_compliance_config().model_dump(),
        },
    }


@app.post(f"{API_PREFIX}/admin/cleanup")
async def perform_cleanup():
    """Delete and anonymize expired consent records (admin)"""
    if not retention_validator:
        raise HTTPException(status_code=503, detail="Retention validator not available")

    result = retention_validator.perform_cleanup()
    logger.info("Data retention cleanup requested", deleted=result.deleted, anonymized=result.anonymized)
    return {
        "success": True,
        "message": "Data retention cleanup completed",
        "deleted": result.deleted,
        "anonymized": result.anonymized,
    }


@app.get(f"{API_PREFIX}/{{consent_id}}")
async def get_consent_record(consent_id: str):
    """Get a single consent record; the read is audited"""
    if not consent_engine:
        raise HTTPException(status_code=503, detail="Consent engine not available")

    record = consent_engine.get_consent(consent_id)
    if record is None:
        raise RecordNotFoundError(consent_id)

    return {"success": True, "data": record.model_dump(mode="json")}


@app.put(f"{API_PREFIX}/{{consent_id}}/status")
async def update_consent_status(consent_id: str, update: StatusUpdateRequest, request: Request):
    """Change the status of a consent record"""
    if not consent_engine:
        raise HTTPException(status_code=503, detail="Consent engine not available")

    record = consent_engine.update_status(
        consent_id,
        update.status,
        actor_id=update.user_id or SYSTEM_ACTOR,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent") or UNKNOWN_CLIENT,
    )
    if record is None:
        raise RecordNotFoundError(consent_id)

    return {
        "success": True,
        "message": "Consent status updated successfully",
        "data": record.model_dump(mode="json"),
    }


@app.get(f"{API_PREFIX}/{{consent_id}}/audit")
async def get_audit_logs(consent_id: str):
    """Audit trail of a consent record, newest first"""
    if not consent_engine:
        raise HTTPException(status_code=503, detail="Consent engine not available")

    entries = consent_engine.get_audit_trail(consent_id)
    return {"success": True, "data": [e.model_dump(mode="json") for e in entries]}


# =============================================================================
# SERVICE ENDPOINTS
# =============================================================================

@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "success": True,
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "timestamp": utc_now().isoformat(),
        "components": {
            "consent_engine": consent_engine is not None,
            "retention_validator": retention_validator is not None,
        },
    }


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "success": True,
        "message": "Cookie Consent Audit Service API",
        "version": SERVICE_VERSION,
        "endpoints": {
            "health": "/health",
            "consent": API_PREFIX,
        },
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host=settings.host, port=settings.port)
