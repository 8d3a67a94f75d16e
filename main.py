"""
Main FastAPI application entry point for Identity Reconciliation System
This file sets up the FastAPI application with configuration, middleware,
exception handlers, the /identify endpoint and health check endpoints.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from config import settings
from exceptions import ConsistencyViolation, StorageError, ValidationError
from schemas.identify import ErrorDetail, ErrorResponse, IdentifyRequest, IdentifyResponse
from services.identity_service import IdentityService, get_identity_service
from stores.sql import SQLContactStore

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

MISSING_FRAGMENT_MESSAGE = "at least one of email or phoneNumber is required."
SERVER_ERROR_MESSAGE = "Unable to process identity reconciliation request"


@asynccontextmanager
async def lifespan(app: FastAPI):
    provider = app.dependency_overrides.get(get_identity_service, get_identity_service)
    store = provider().store
    if settings.AUTO_CREATE_TABLES and isinstance(store, SQLContactStore):
        await store.database.create_tables()
    yield
    await store.close()


# Create FastAPI application instance
app = FastAPI(
    title=settings.API_TITLE,
    description=settings.API_DESCRIPTION,
    version=settings.API_VERSION,
    debug=settings.DEBUG,
    lifespan=lifespan
)

# Configure CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


def _error(status_code: int, error: str, message: str, details=None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, message=message, details=details).model_dump()
    )


def _internal_details(exc) -> Optional[Dict[str, Any]]:
    # Debug detail never leaves a production deployment
    if not settings.DEBUG or settings.is_production():
        return None
    return {"reason": exc.message, **(exc.details or {})}


# Exception handlers
@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle malformed request bodies"""
    logger.warning(f"Validation error for {request.url}: {exc.errors()}")

    error_details = [
        ErrorDetail(
            field=" -> ".join(str(x) for x in error["loc"]),
            message=error["msg"],
            type=error["type"]
        ).model_dump()
        for error in exc.errors()
    ]
    return _error(400, "ValidationError", "Request validation failed", {"errors": error_details})


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    """Handle requests without a usable identity fragment"""
    logger.warning(f"Rejected request for {request.url}: {exc.message}")
    message = MISSING_FRAGMENT_MESSAGE if exc.message == "missing identity fragment" else exc.message
    return _error(400, "ValidationError", message, exc.details)


@app.exception_handler(StorageError)
async def storage_exception_handler(request: Request, exc: StorageError):
    """Handle store failures; detail is only exposed in debug mode"""
    logger.error(f"Storage error for {request.url}: {exc.message}", exc_info=exc)
    details = _internal_details(exc)
    return _error(500, "StorageError", SERVER_ERROR_MESSAGE, details)


@app.exception_handler(ConsistencyViolation)
async def consistency_exception_handler(request: Request, exc: ConsistencyViolation):
    """Handle contact graph invariant failures"""
    logger.error(f"Consistency violation for {request.url}: {exc.message}", exc_info=exc)
    details = _internal_details(exc)
    return _error(500, "ConsistencyViolation", SERVER_ERROR_MESSAGE, details)


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors"""
    logger.error(f"Unexpected error for {request.url}: {exc}", exc_info=exc)
    return _error(500, "InternalServerError", "An unexpected error occurred")


def get_owner_scope(request: Request) -> str:
    """
    Owner scope supplied by the caller's authentication layer
    Falls back to the configured default for single-tenant deployments
    """
    scope = request.headers.get(settings.OWNER_SCOPE_HEADER, "").strip()
    return scope or settings.DEFAULT_OWNER_SCOPE


@app.get("/")
async def root():
    """
    Root endpoint that returns basic API information
    """
    return {
        "message": "Identity Reconciliation API is running",
        "version": settings.API_VERSION,
        "environment": settings.ENVIRONMENT
    }


@app.get("/health")
async def health_check(service: IdentityService = Depends(get_identity_service)):
    """
    Health check endpoint for monitoring and load balancer health checks
    """
    storage_ok = await service.store.ping()
    response = {
        "status": "healthy" if storage_ok else "unhealthy",
        "environment": settings.ENVIRONMENT,
        "version": settings.API_VERSION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "storage": {
            "backend": type(service.store).__name__,
            "status": "connected" if storage_ok else "disconnected"
        }
    }
    return JSONResponse(status_code=200 if storage_ok else 503, content=response)


@app.post("/identify", response_model=IdentifyResponse)
async def identify_endpoint(
    request: IdentifyRequest,
    owner_scope: str = Depends(get_owner_scope),
    service: IdentityService = Depends(get_identity_service)
):
    """
    Main identity reconciliation endpoint

    Links customer identities based on email and/or phone number.
    Returns consolidated contact information including all linked emails,
    phone numbers, and secondary contact IDs.

    **Examples:**
    - New customer: Creates primary contact
    - Existing email + new phone: Creates secondary contact
    - Two existing primaries bridged by one request: Links them (older remains primary)
    """
    logger.info(f"Processing identify request: email={request.email}, phone={request.phone_number}")

    response = await service.reconcile(owner_scope, request.email, request.phone_number)

    logger.info(f"Successfully processed request. Primary contact ID: {response.primaryContactId}")
    return response


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        workers=1
    )
