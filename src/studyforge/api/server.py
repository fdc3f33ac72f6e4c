"""
FastAPI server exposing study-guide and quiz generation.

Endpoints:
- POST   /api/documents                    register an extracted document
- GET    /api/documents/{id}               document summary with both flow statuses
- DELETE /api/documents/{id}               remove a document
- POST   /api/study-guide/create|retry     start / restart generation (202, 200 cached)
- GET    /api/study-guide/{id}/status      sanitized flow status
- GET    /api/study-guide/{id}             stored artifact
- POST   /api/quiz/create|retry, GET /api/quiz/{id}/status, GET /api/quiz/{id}
- GET    /health                           component status and breaker state
- GET    /metrics                          Prometheus exposition

Errors are returned as ``{"error": {"code", "message", "details"}}``;
``ALREADY_PROCESSING`` carries a ``Retry-After`` header.

Usage:
    $ uvicorn studyforge.api.server:app --host 0.0.0.0 --port 8000
"""

import time
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field, model_validator

from .. import __version__
from ..config.container import Container, get_container
from ..config.settings import get_settings
from ..core import errors
from ..core.errors import BusinessRuleError, FlowStateError, GenerationError
from ..core.models import Document, DocumentType, FileType, Flow
from ..core.orchestrator import GenerationOrchestrator
from ..observability.logging import get_logger, set_trace_id, setup_logging
from ..observability.metrics import setup_metrics, timer

logger = get_logger(__name__)

# Global state
orchestrator: GenerationOrchestrator | None = None
container: Container | None = None


def _reset_globals_for_tests() -> None:
    """Reset global state for test isolation."""
    global orchestrator, container
    orchestrator = None
    container = None


class DocumentCreateRequest(BaseModel):
    """Already-extracted document text from the ingestion service."""

    owner: str = Field(..., min_length=1)
    file_type: FileType
    document_type: DocumentType = DocumentType.LECTURE
    text: str = Field(..., min_length=1)
    page_count: int = Field(0, ge=0)
    paragraph_count: int | None = Field(None, ge=0)

    @model_validator(mode="after")
    def require_locator_count(self) -> "DocumentCreateRequest":
        if self.file_type is FileType.PDF and self.page_count < 1:
            raise ValueError("page_count is required for PDF documents")
        if self.file_type is FileType.DOCX and not self.paragraph_count:
            raise ValueError("paragraph_count is required for DOCX documents")
        return self


class DocumentResponse(BaseModel):
    id: str
    owner: str
    file_type: FileType
    document_type: DocumentType
    study_guide_status: str
    quiz_status: str


class FlowRequest(BaseModel):
    document_id: str = Field(..., min_length=1)


class FlowStatusResponse(BaseModel):
    document_id: str
    flow: Flow
    status: str
    error_code: str | None = None
    error_message: str | None = None


class HealthResponse(BaseModel):
    """Response model for health endpoint."""

    status: str
    version: str
    uptime_seconds: float
    components: dict[str, str]
    circuit_breaker: dict[str, Any]
    active_generations: int


def _document_response(document: Document) -> DocumentResponse:
    return DocumentResponse(
        id=document.id,
        owner=document.owner,
        file_type=document.file_type,
        document_type=document.document_type,
        study_guide_status=document.study_guide.status.value,
        quiz_status=document.quiz.status.value,
    )


def _error_response(status_code: int, code: str, message: str, details: Any = None, headers=None):
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "details": details or {}}},
        headers=headers,
    )


def _status_for(error: GenerationError) -> int:
    if isinstance(error, FlowStateError):
        return 409
    if isinstance(error, BusinessRuleError):
        return 422
    if error.code == errors.NOT_FOUND:
        return 404
    return 500


def get_orchestrator() -> GenerationOrchestrator:
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Orchestrator not initialized")
    return orchestrator


# Application startup/shutdown lifecycle
@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    global container, orchestrator

    container = getattr(app.state, "container", None) or get_container()
    settings = container.settings
    setup_logging(settings.observability.log_level)
    logger.info("Starting StudyForge API server...", environment=settings.environment)

    if settings.observability.enable_metrics:
        from opentelemetry.sdk.metrics import MeterProvider

        provider = MeterProvider()
        setup_metrics(provider.get_meter(settings.observability.service_name, __version__))

    orchestrator = container.get("orchestrator")
    app.state.startup_time = time.time()

    logger.info("StudyForge API server ready")

    try:
        yield
    finally:
        logger.info("Shutting down StudyForge API server...")
        if orchestrator is not None:
            await orchestrator.drain(timeout=settings.api.shutdown_drain_seconds)
        await container.cleanup()
        orchestrator = None
        container = None


def create_app(app_container: Container | None = None) -> FastAPI:
    """Create and configure FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="StudyForge",
        description="Grounded study-guide and quiz generation",
        version=__version__,
        docs_url="/docs" if settings.api.enable_docs else None,
        redoc_url="/redoc" if settings.api.enable_docs else None,
        lifespan=lifespan,
    )
    app.state.container = app_container

    @app.middleware("http")
    async def trace_requests(request: Request, call_next):
        trace_id = request.headers.get("x-request-id") or uuid.uuid4().hex[:16]
        set_trace_id(trace_id)
        with timer("api.request", {"path": request.url.path, "method": request.method}):
            response = await call_next(request)
        response.headers["x-request-id"] = trace_id
        return response

    @app.exception_handler(GenerationError)
    async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
        status_code = _status_for(exc)
        headers = None
        if isinstance(exc, FlowStateError) and exc.retry_after_seconds:
            headers = {"Retry-After": str(exc.retry_after_seconds)}
        logger.info(
            "Request rejected", path=request.url.path, code=exc.code, status=status_code
        )
        return _error_response(status_code, exc.code, exc.message, exc.details, headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled exception", path=request.url.path, error=str(exc))
        return _error_response(500, "INTERNAL_ERROR", "Internal server error.")

    @app.get("/health", response_model=HealthResponse)
    async def health_check_endpoint() -> HealthResponse:
        """Health check endpoint."""
        startup_time = getattr(app.state, "startup_time", time.time())
        components = {"config": "healthy"}
        breaker_state: dict[str, Any] = {}

        if orchestrator is None or container is None:
            components["orchestrator"] = "not_initialized"
        else:
            components["orchestrator"] = "healthy"
            components["document_store"] = type(container.get("document_store")).__name__
            breaker_state = container.get("circuit_breaker").describe()
            components["provider"] = "degraded" if breaker_state["phase"] == "open" else "healthy"

        healthy = components.get("orchestrator") == "healthy"
        return HealthResponse(
            status="healthy" if healthy else "unhealthy",
            version=__version__,
            uptime_seconds=max(0.0, time.time() - startup_time),
            components=components,
            circuit_breaker=breaker_state,
            active_generations=orchestrator.active_tasks if orchestrator else 0,
        )

    @app.get("/metrics")
    async def metrics_endpoint() -> Response:
        """Prometheus exposition of request counters and latencies."""
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    @app.post("/api/documents", response_model=DocumentResponse, status_code=201)
    async def create_document_endpoint(request: DocumentCreateRequest) -> DocumentResponse:
        document = Document(id=uuid.uuid4().hex, **request.model_dump())
        document = await get_orchestrator().register_document(document)
        return _document_response(document)

    @app.get("/api/documents/{document_id}", response_model=DocumentResponse)
    async def get_document_endpoint(document_id: str) -> DocumentResponse:
        return _document_response(await get_orchestrator().get_document(document_id))

    @app.delete("/api/documents/{document_id}", status_code=204)
    async def delete_document_endpoint(document_id: str) -> Response:
        await get_orchestrator().delete_document(document_id)
        return Response(status_code=204)

    _register_flow_routes(app, Flow.STUDY_GUIDE, "study-guide")
    _register_flow_routes(app, Flow.QUIZ, "quiz")

    return app


def _register_flow_routes(app: FastAPI, flow: Flow, slug: str) -> None:
    """Attach create / retry / status / artifact routes for one flow."""

    async def create_endpoint(request: FlowRequest) -> JSONResponse:
        result = await get_orchestrator().create(request.document_id, flow)
        return JSONResponse(status_code=result.http_status, content=result.to_dict())

    async def retry_endpoint(request: FlowRequest) -> JSONResponse:
        result = await get_orchestrator().retry(request.document_id, flow)
        return JSONResponse(status_code=result.http_status, content=result.to_dict())

    async def status_endpoint(document_id: str) -> FlowStatusResponse:
        return FlowStatusResponse(**await get_orchestrator().status(document_id, flow))

    async def artifact_endpoint(document_id: str) -> dict[str, Any]:
        return await get_orchestrator().get_artifact(document_id, flow)

    name = flow.value.lower()
    app.add_api_route(f"/api/{slug}/create", create_endpoint, methods=["POST"], name=f"{name}_create")
    app.add_api_route(f"/api/{slug}/retry", retry_endpoint, methods=["POST"], name=f"{name}_retry")
    app.add_api_route(
        f"/api/{slug}/{{document_id}}/status",
        status_endpoint,
        methods=["GET"],
        response_model=FlowStatusResponse,
        name=f"{name}_status",
    )
    app.add_api_route(
        f"/api/{slug}/{{document_id}}", artifact_endpoint, methods=["GET"], name=f"{name}_artifact"
    )


app = create_app()
