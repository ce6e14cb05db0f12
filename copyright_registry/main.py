import logging
import os
from contextlib import asynccontextmanager
from typing import List, Optional

import structlog
import uvicorn
from fastapi import Depends, FastAPI, File, Header, HTTPException, Query, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from copyright_registry import __version__, config
from copyright_registry.core.errors import RegistryError
from copyright_registry.core.registry import CopyrightRegistry, MismatchPolicy
from copyright_registry.core.utils import (
    calculate_file_hash, cleanup_temp_file, content_hash_from_digest, save_temp_upload,
)
from copyright_registry.models.registry import (
    AuthorStats, AuthorWorksResponse, DecryptionCallbackRequest, DisputeCountResponse,
    DisputeFiledResponse, DisputeInfo, ErrorResponse, FileDisputeRequest, FingerprintResponse,
    HealthResponse, RegisterAuthorRequest, RegisteredResponse, RegisterWorkRequest,
    RegistryInfo, ResolutionRequestedResponse, WorkInfo, WorkRegisteredResponse,
)
from copyright_registry.services.events import RecordedEvent, create_event_log
from copyright_registry.services.fhe import FHEError, create_fhe_backend


def configure_logging(debug: bool = config.DEBUG, log_format: str = config.LOG_FORMAT):
    """Configure structured logging for the service."""
    logging.basicConfig(format="%(message)s", level=logging.DEBUG if debug else logging.INFO)
    renderer = structlog.dev.ConsoleRenderer() if log_format == "console" else structlog.processors.JSONRenderer()
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="ISO"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


configure_logging()
logger = structlog.get_logger()

# Global registry, created once per process
registry: Optional[CopyrightRegistry] = None


def build_registry() -> CopyrightRegistry:
    """Create the registry from environment configuration."""
    return CopyrightRegistry(
        owner=config.REGISTRY_OWNER,
        address=config.REGISTRY_ADDRESS,
        backend=create_fhe_backend(),
        event_log=create_event_log(),
        mismatch_policy=MismatchPolicy(config.DISPUTE_MISMATCH_WINNER),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    global registry

    logger.info("Starting Anonymous Copyright Registry API")
    try:
        registry = build_registry()
        logger.info("Registry initialized",
                    fhe_backend=config.FHE_BACKEND, event_store=config.EVENT_STORE)
    except Exception as e:
        logger.error("Failed to initialize application", error=str(e))
        raise

    yield

    logger.info("Shutting down Anonymous Copyright Registry API")
    if registry is not None:
        registry.event_log.close()
        registry = None


app = FastAPI(
    title="Anonymous Copyright Registry API",
    description="Copyright registration and dispute resolution over encrypted content fingerprints",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
    responses={
        422: {"model": ErrorResponse, "description": "Validation Error"},
        500: {"model": ErrorResponse, "description": "Internal Server Error"},
    }
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_registry() -> CopyrightRegistry:
    if registry is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Registry not initialized")
    return registry


def get_caller(x_caller_address: str = Header(..., description="Address of the calling account")) -> str:
    return x_caller_address


@app.exception_handler(RegistryError)
async def registry_error_handler(request, exc: RegistryError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(FHEError)
async def fhe_error_handler(request, exc: FHEError):
    logger.error("Encrypted-computation backend failure",
                 url=str(request.url), method=request.method, error=str(exc))
    return JSONResponse(
        status_code=status.HTTP_502_BAD_GATEWAY,
        content={"error": "fhe_backend_error", "message": str(exc)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request, exc):
    logger.error("Unhandled exception",
                 url=str(request.url), method=request.method, error=str(exc), exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": "internal_server_error", "message": "An unexpected error occurred"}
    )


@app.get("/", response_model=dict)
async def root():
    """Root endpoint with API information."""
    return {
        "name": "Anonymous Copyright Registry API",
        "version": __version__,
        "description": "Encrypted copyright registration and dispute resolution",
        "docs_url": "/docs",
        "health_url": "/health",
    }


@app.get("/health", response_model=HealthResponse)
async def health_check(reg: CopyrightRegistry = Depends(get_registry)):
    """Health check endpoint with component status."""
    fhe_health = reg.backend.health_check()
    event_health = reg.event_log.health_check()

    components = {
        "registry": "healthy",
        "fhe_backend": "healthy" if fhe_health.get("available") else "unhealthy",
        "event_store": "healthy" if event_health.get("available") else "unhealthy",
    }
    overall_status = "healthy" if all(s == "healthy" for s in components.values()) else "degraded"

    return HealthResponse(
        status=overall_status,
        version=__version__,
        components={
            **components,
            "fhe_backend_health": fhe_health,
            "event_store_health": event_health,
        }
    )


@app.get("/registry", response_model=RegistryInfo)
async def registry_info(reg: CopyrightRegistry = Depends(get_registry)):
    """Owner, registry address and work totals."""
    return RegistryInfo(
        owner=reg.owner,
        address=reg.address,
        total_works=reg.get_total_works(),
        pending_resolutions=len(reg.pending_requests()),
        fhe_backend=reg.backend.name,
    )


@app.post("/authors", status_code=status.HTTP_201_CREATED, response_model=RegisteredResponse)
def register_author(
    body: RegisterAuthorRequest,
    caller: str = Depends(get_caller),
    reg: CopyrightRegistry = Depends(get_registry),
):
    """Register the caller as an anonymous author."""
    reg.register_author(caller, body.author_id)
    return RegisteredResponse(address=caller.lower(), registered=True)


@app.get("/authors/{address}", response_model=AuthorStats)
def get_author_stats(address: str, reg: CopyrightRegistry = Depends(get_registry)):
    return reg.get_author_stats(address)


@app.get("/authors/{address}/registered", response_model=RegisteredResponse)
def is_registered_author(address: str, reg: CopyrightRegistry = Depends(get_registry)):
    return RegisteredResponse(address=address.lower(), registered=reg.is_registered_author(address))


@app.get("/authors/{address}/works", response_model=AuthorWorksResponse)
def get_author_works(address: str, reg: CopyrightRegistry = Depends(get_registry)):
    return AuthorWorksResponse(address=address.lower(), work_ids=reg.get_author_works(address))


@app.post("/works", status_code=status.HTTP_201_CREATED, response_model=WorkRegisteredResponse)
def register_work(
    body: RegisterWorkRequest,
    caller: str = Depends(get_caller),
    reg: CopyrightRegistry = Depends(get_registry),
):
    """Register a work under the caller's name."""
    work_id = reg.register_work(caller, body.content_hash, body.title, body.category)
    return WorkRegisteredResponse(work_id=work_id)


@app.get("/works/{work_id}", response_model=WorkInfo)
def get_work_info(work_id: int, reg: CopyrightRegistry = Depends(get_registry)):
    return reg.get_work_info(work_id)


@app.post("/works/{work_id}/verify", response_model=WorkInfo)
def mark_work_as_verified(
    work_id: int,
    caller: str = Depends(get_caller),
    reg: CopyrightRegistry = Depends(get_registry),
):
    """Owner-only: mark a work as verified."""
    reg.mark_work_as_verified(caller, work_id)
    return reg.get_work_info(work_id)


@app.post("/works/{work_id}/disputes", status_code=status.HTTP_201_CREATED, response_model=DisputeFiledResponse)
def file_dispute(
    work_id: int,
    body: FileDisputeRequest,
    caller: str = Depends(get_caller),
    reg: CopyrightRegistry = Depends(get_registry),
):
    """File a dispute against a work with the caller's own fingerprint."""
    dispute_index = reg.file_dispute(caller, work_id, body.content_hash)
    return DisputeFiledResponse(work_id=work_id, dispute_index=dispute_index)


@app.get("/works/{work_id}/disputes", response_model=DisputeCountResponse)
def get_dispute_count(work_id: int, reg: CopyrightRegistry = Depends(get_registry)):
    return DisputeCountResponse(work_id=work_id, dispute_count=reg.get_dispute_count(work_id))


@app.get("/works/{work_id}/disputes/{dispute_index}", response_model=DisputeInfo)
def get_dispute_info(work_id: int, dispute_index: int, reg: CopyrightRegistry = Depends(get_registry)):
    return reg.get_dispute_info(work_id, dispute_index)


@app.post(
    "/works/{work_id}/disputes/{dispute_index}/resolve",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ResolutionRequestedResponse,
)
def resolve_dispute(
    work_id: int,
    dispute_index: int,
    caller: str = Depends(get_caller),
    reg: CopyrightRegistry = Depends(get_registry),
):
    """
    Owner-only: request resolution of a dispute.

    The comparison result is decrypted asynchronously; poll the dispute to
    see when it becomes resolved.
    """
    request_id = reg.resolve_dispute(caller, work_id, dispute_index)
    return ResolutionRequestedResponse(work_id=work_id, dispute_index=dispute_index, request_id=request_id)


@app.post("/gateway/callback", response_model=dict)
def decryption_callback(
    body: DecryptionCallbackRequest,
    x_gateway_token: Optional[str] = Header(None),
    reg: CopyrightRegistry = Depends(get_registry),
):
    """Receive a decrypted comparison result from the encrypted-computation gateway."""
    if config.FHE_CALLBACK_TOKEN and x_gateway_token != config.FHE_CALLBACK_TOKEN:
        logger.warning("Rejected gateway callback with bad token", request_id=body.request_id)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid gateway token")

    reg.backend.deliver(body.request_id, body.result)
    return {"request_id": body.request_id, "status": "delivered"}


@app.post("/fingerprint", response_model=FingerprintResponse)
def fingerprint_upload(file: UploadFile = File(..., description="Work content to fingerprint")):
    """Derive the uint32 content hash of an uploaded file."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Filename is required")

    temp_file_path = None
    try:
        temp_file_path = save_temp_upload(file)
        file_size = os.path.getsize(temp_file_path)
        if file_size > config.MAX_UPLOAD_SIZE:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File size exceeds maximum allowed size of {config.MAX_UPLOAD_SIZE} bytes"
            )

        file_hash = calculate_file_hash(temp_file_path)
        logger.info("Fingerprinted upload", filename=file.filename, file_size=file_size)
        return FingerprintResponse(
            filename=file.filename,
            file_size=file_size,
            file_hash=file_hash,
            content_hash=content_hash_from_digest(file_hash),
        )
    finally:
        if temp_file_path:
            cleanup_temp_file(temp_file_path)


@app.get("/events", response_model=List[RecordedEvent])
def list_events(
    name: Optional[str] = Query(default=None, description="Only events with this name"),
    after: int = Query(default=0, ge=0, description="Only events after this sequence number"),
    limit: int = Query(default=100, ge=1, le=1000, description="Maximum number of events to return"),
    reg: CopyrightRegistry = Depends(get_registry),
):
    """Recorded registry events in sequence order."""
    return reg.event_log.get_events(name=name, after=after, limit=limit)


if __name__ == "__main__":
    uvicorn.run(
        "copyright_registry.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG,
        log_config=None,  # We handle logging with structlog
    )
