import mimetypes
import structlog
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, File, Form, HTTPException, Query, Request, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

from remixrite import __version__, config
from remixrite.core.concurrency import call_with_timeout
from remixrite.core.errors import PartialSettlementError, RemixError
from remixrite.core.utils import media_kind_for
from remixrite.models.api import (
    ClipListResponse,
    ClipResponse,
    EarningsResponse,
    ErrorResponse,
    HealthResponse,
    RemixListResponse,
    RemixRequest,
    RemixResponse,
)
from remixrite.services.container import ServiceContainer, build_services

# Configure structured logging
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
        structlog.processors.JSONRenderer()
    ],
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services

async def validate_file(file: UploadFile) -> str:
    """Validate an uploaded clip and return its media kind."""
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Filename is required")

    if file.size and file.size > config.MAX_FILE_SIZE:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File size exceeds maximum allowed size of {config.MAX_FILE_SIZE} bytes"
        )

    content_type = file.content_type or mimetypes.guess_type(file.filename)[0]
    kind = media_kind_for(content_type, file.filename)
    if kind is None:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Unsupported file type. Please use MP3, WAV, MP4, AVI, or MOV files."
        )
    return kind

def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Build the API. ``services`` is injected by tests; otherwise adapters are
    constructed from config during startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting RemixRite API")
        owned = services is None
        try:
            app.state.services = services or build_services()
        except Exception as e:
            logger.error("Failed to initialize application", error=str(e))
            raise

        yield

        logger.info("Shutting down RemixRite API")
        if owned:
            app.state.services.close()

    app = FastAPI(
        title="RemixRite API",
        description="Derivative registration and royalty settlement for remixes of ledger-registered clips",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse, "description": "Validation Error"},
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

    @app.exception_handler(PartialSettlementError)
    async def partial_settlement_handler(request: Request, exc: PartialSettlementError):
        logger.warning("Partial settlement",
                      url=str(request.url), remix_id=exc.remix.id, failed=len(exc.failed))
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "success": False,
                "status": "partial_settlement",
                "error": exc.message,
                "remix": jsonable_encoder(exc.remix),
                "failed_distributions": exc.failed,
            }
        )

    @app.exception_handler(RemixError)
    async def remix_error_handler(request: Request, exc: RemixError):
        log = logger.warning if exc.status_code < 500 else logger.error
        log("Request failed", url=str(request.url), stage=exc.stage, error=exc.message)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_dict()))

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request: {location} {first.get('msg', '')}".strip() if first else "Invalid request"
        return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST,
                            content={"error": message, "stage": "validation"})

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception",
                    url=str(request.url), method=request.method, error=str(exc), exc_info=True)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "An unexpected error occurred", "stage": "internal"}
        )

    @app.get("/", response_model=dict)
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "RemixRite API",
            "version": __version__,
            "description": "Derivative registration and royalty settlement",
            "docs_url": "/docs",
            "health_url": "/health",
        }

    @app.get("/health", response_model=HealthResponse)
    async def health_check(services: ServiceContainer = Depends(get_services)):
        """Health check endpoint with per-component status."""
        try:
            components = await call_with_timeout(services.health, timeout=config.STORE_TIMEOUT_SECONDS,
                                                 executor=services.store_executor)
        except Exception as e:
            logger.error("Health check failed", error=str(e))
            return HealthResponse(status="unhealthy", version=__version__, components={"error": str(e)})

        storage_ok = any(backend.get("available") for backend in components["storage"].values())
        healthy = components["database"].get("available") and storage_ok
        return HealthResponse(status="healthy" if healthy else "degraded", version=__version__,
                              components=components)

    @app.post("/remix", response_model=RemixResponse)
    async def create_remix(request: RemixRequest, services: ServiceContainer = Depends(get_services)):
        """
        Create a remix from existing clips.

        Resolves the clips, uploads the artifact, registers it on the ledger as
        a derivative of the clips' assets and records one royalty distribution
        per parent clip.
        """
        remix = await services.pipeline.create_remix(request)
        return RemixResponse(remix=remix)

    @app.get("/remix", response_model=RemixListResponse)
    async def list_remixes(
        creator: Optional[str] = Query(default=None, description="Only remixes by this creator"),
        services: ServiceContainer = Depends(get_services),
    ):
        remixes = await services.queries.list_remixes(creator)
        return RemixListResponse(remixes=remixes)

    @app.get("/remix/{remix_id}", response_model=RemixResponse)
    async def get_remix(remix_id: str, services: ServiceContainer = Depends(get_services)):
        return RemixResponse(remix=await services.queries.get_remix(remix_id))

    @app.post("/remix/{remix_id}/reconcile", response_model=RemixResponse)
    async def reconcile_remix(remix_id: str, services: ServiceContainer = Depends(get_services)):
        """Write any royalty distributions missing after a partial settlement."""
        return RemixResponse(remix=await services.pipeline.reconcile(remix_id))

    @app.get("/clips", response_model=ClipListResponse)
    async def list_clips(
        q: Optional[str] = Query(default=None, description="Matches title or artist"),
        type: Optional[str] = Query(default=None, description="audio or video"),
        limit: int = Query(default=50, ge=1, le=200),
        services: ServiceContainer = Depends(get_services),
    ):
        clips = await services.catalog.search(q, type, limit)
        return ClipListResponse(clips=clips)

    @app.post("/clips", response_model=ClipResponse)
    async def upload_clip(
        file: UploadFile = File(..., description="Audio or video clip"),
        owner_address: str = Form(..., alias="ownerAddress"),
        title: Optional[str] = Form(default=None),
        description: Optional[str] = Form(default=None),
        services: ServiceContainer = Depends(get_services),
    ):
        """Upload an original clip, register it on the ledger and attach default license terms."""
        start_time = time.time()
        kind = await validate_file(file)
        data = await file.read()
        if len(data) > config.MAX_FILE_SIZE:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File size exceeds maximum allowed size of {config.MAX_FILE_SIZE} bytes"
            )

        clip = await services.catalog.upload_clip(data, file.filename, kind, owner_address,
                                                  title=title, description=description)
        logger.info("Clip upload completed", clip_id=clip.id,
                   processing_time_ms=round((time.time() - start_time) * 1000, 1))
        return ClipResponse(clip=clip)

    @app.get("/royalties/{owner_address}", response_model=EarningsResponse)
    async def owner_royalties(owner_address: str, services: ServiceContainer = Depends(get_services)):
        """Total royalties recorded for an owner address."""
        return await services.queries.owner_earnings(owner_address)

    return app

app = create_app()

if __name__ == "__main__":
    uvicorn.run(
        "remixrite.main:app",
        host=config.API_HOST,
        port=config.API_PORT,
        reload=config.DEBUG,
        log_config=None,  # We handle logging with structlog
    )
