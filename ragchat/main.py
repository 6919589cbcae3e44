# ragchat/main.py
import os
import time
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.exceptions import HTTPException as StarletteHTTPException

from ragchat.api.dependencies import Services, build_services
from ragchat.api.routes import router
from ragchat.config import Settings
from ragchat.errors import RagChatError
from ragchat.observability.logger import get_logger, setup_logging

logger = get_logger(__name__)

VERSION = "1.0.0"


def _track_error(request: Request, exc: Exception):

    services: Optional[Services] = getattr(request.app.state, "services", None)

    if services is None:
        return

    services.analytics.track_error(
        distinct_id=getattr(request.state, "request_id", "unknown"),
        error_type=type(exc).__name__,
        error_message=str(exc),
        endpoint=request.url.path,
    )


def create_app(
    settings: Optional[Settings] = None,
    services: Optional[Services] = None,
) -> FastAPI:
    """
    Build the application.

    When services is None the component graph is built on startup from
    settings; tests pass a prebuilt graph with fake clients.
    """

    settings = settings or Settings.from_env()

    # Initialize logging FIRST
    setup_logging(log_level=settings.log_level, log_file=settings.log_file)

    @asynccontextmanager
    async def lifespan(app: FastAPI):

        if getattr(app.state, "services", None) is None:
            app.state.services = build_services(settings)

        logger.info("application_startup", extra={"version": VERSION})

        if not os.getenv("OPENAI_API_KEY"):

            logger.warning(
                "missing_api_key",
                extra={
                    "warning_detail":
                    "OPENAI_API_KEY not set. Model calls will fail."
                }
            )

        yield

        await app.state.services.aclose()

        logger.info("application_shutdown")

    app = FastAPI(
        title="RAG Chat API",
        description="Streaming chat grounded in an uploaded knowledge base",
        version=VERSION,
        lifespan=lifespan,
    )

    if services is not None:
        app.state.services = services

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """
        Log every HTTP request with latency tracking.
        """

        request_id = str(uuid.uuid4())
        request.state.request_id = request_id

        logger.info(
            "request_started",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "client_ip": request.client.host if request.client else None
            }
        )

        start_time = time.time()

        try:

            response = await call_next(request)

            latency = time.time() - start_time

            logger.info(
                "request_completed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "latency_seconds": round(latency, 3)
                }
            )

            return response

        except Exception as e:

            latency = time.time() - start_time

            _track_error(request, e)

            logger.error(
                "request_failed",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "latency_seconds": round(latency, 3),
                    "error": str(e),
                    "error_type": type(e).__name__
                },
                exc_info=True
            )

            raise

    # Include API routes
    app.include_router(router)

    # ==========================================================
    # EXCEPTION HANDLERS
    # ==========================================================

    @app.exception_handler(RagChatError)
    async def ragchat_exception_handler(request: Request, exc: RagChatError):

        log = logger.warning if exc.status_code < 500 else logger.error

        log(
            "request_error",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "status_code": exc.status_code,
                "error": exc.message,
                "error_type": type(exc).__name__,
                "details": exc.details,
            }
        )

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message},
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):

        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail)},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):

        errors = exc.errors()

        if any(err.get("type") == "json_invalid" for err in errors):
            message = "Invalid JSON payload"
        else:
            message = "Invalid request payload"

        logger.warning(
            "request_validation_failed",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "path": request.url.path,
                "errors": [err.get("msg") for err in errors],
            }
        )

        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": message},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):

        request_id = getattr(request.state, "request_id", "unknown")

        logger.error(
            "unhandled_exception",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "error": str(exc),
                "error_type": type(exc).__name__
            },
            exc_info=True
        )

        _track_error(request, exc)

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "An internal error occurred. Please try again."},
        )

    # Static front-end (mounted last so /api wins)
    if settings.static_dir and os.path.isdir(settings.static_dir):
        app.mount(
            "/",
            StaticFiles(directory=settings.static_dir, html=True),
            name="static",
        )

    return app


def run():

    import uvicorn

    uvicorn.run(
        "ragchat.main:create_app",
        factory=True,
        host=os.getenv("RAGCHAT_HOST", "0.0.0.0"),
        port=int(os.getenv("RAGCHAT_PORT", "8000")),
    )


if __name__ == "__main__":
    run()
