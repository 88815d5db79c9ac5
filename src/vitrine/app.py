"""FastAPI application factory."""

import asyncio
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

import structlog
from fastapi import FastAPI, Request, Response, status
from fastapi.exceptions import RequestValidationError as FastAPIValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from vitrine.api.routes import jobs
from vitrine.core import timezone  # noqa: F401  (sets TZ=UTC)
from vitrine.core.config import Settings, configure_logging
from vitrine.core.database import setup_db_session
from vitrine.models.queue_message import QueueMessageStatus
from vitrine.services.admission import AdmissionService
from vitrine.services.exceptions import (
    AdmissionError,
    ForbiddenError,
    InsufficientCreditsError,
    RejectedContentError,
    RequestValidationError,
    ServiceError,
)
from vitrine.services.moderation import ModerationPolicy
from vitrine.services.nsfw import ReplicateNsfwChecker
from vitrine.services.storage import ObjectStorage
from vitrine.uow import create_uow_factory
from vitrine.workers.pipeline_worker import build_work_queue, run_pipeline_worker

logger = structlog.get_logger()

ADMISSION_ERROR_STATUS = {
    RequestValidationError: status.HTTP_400_BAD_REQUEST,
    InsufficientCreditsError: status.HTTP_402_PAYMENT_REQUIRED,
    ForbiddenError: status.HTTP_403_FORBIDDEN,
    RejectedContentError: status.HTTP_422_UNPROCESSABLE_ENTITY,
}


WORKER_RESTART_DELAY_SECONDS = 1.0


async def supervise_worker(
    worker_factory: Callable[[], Awaitable[None]],
    worker_name: str,
    shutdown_event: asyncio.Event,
    restart_delay: float = WORKER_RESTART_DELAY_SECONDS,
) -> None:
    """Run a long-lived worker, restarting it after a crash until shutdown.

    The worker loop runs inside this coroutine, so cancelling the supervisor task
    always stops whichever incarnation of the worker is current.
    """
    while not shutdown_event.is_set():
        try:
            await worker_factory()
        except asyncio.CancelledError:
            logger.info("worker.cancelled", worker=worker_name)
            raise
        except Exception as e:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(e),
                error_type=type(e).__name__,
                retry_in_seconds=restart_delay,
                exc_info=True,
            )
        else:
            # Worker loops are infinite; returning is a bug in the loop
            logger.warning(
                "worker.stopped_unexpectedly", worker=worker_name, retry_in_seconds=restart_delay
            )

        await asyncio.sleep(restart_delay)
        if not shutdown_event.is_set():
            logger.info("worker.restarting", worker=worker_name)

    logger.info("worker.shutdown_complete", worker=worker_name)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    - Startup: configure logging, build the session factory and services, start the worker
    - Shutdown: stop the worker

    Services already placed on app.state (tests) are kept.
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    if not hasattr(app.state, "session_factory"):
        app.state.session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    session_factory = app.state.session_factory

    if not hasattr(app.state, "uow_factory"):
        app.state.uow_factory = create_uow_factory(session_factory)
    uow_factory = app.state.uow_factory

    if not hasattr(app.state, "storage"):
        app.state.storage = ObjectStorage.from_settings(settings)

    if not hasattr(app.state, "admission_service"):
        nsfw_checker = None
        if settings.replicate_api_token:
            nsfw_checker = ReplicateNsfwChecker(
                settings.replicate_api_token,
                settings.nsfw_model_version,
                threshold=settings.nsfw_threshold,
            )
        app.state.admission_service = AdmissionService(
            uow_factory,
            ModerationPolicy(uow_factory, cooldown_hours=settings.cooldown_hours),
            app.state.storage,
            build_work_queue(settings),
            settings,
            nsfw_checker=nsfw_checker,
        )

    shutdown_event = asyncio.Event()
    worker_task = None
    if settings.run_worker_in_api:
        worker_task = asyncio.create_task(
            supervise_worker(
                lambda: run_pipeline_worker(session_factory, settings),
                "pipeline",
                shutdown_event,
            )
        )

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        worker_enabled=settings.run_worker_in_api,
    )

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    if worker_task is not None:
        worker_task.cancel()
        await asyncio.gather(worker_task, return_exceptions=True)


def _error_response(status_code: int, code: str, message: str, details: dict) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "details": details}},
    )


async def admission_error_handler(request: Request, exc: AdmissionError) -> JSONResponse:
    status_code = ADMISSION_ERROR_STATUS.get(type(exc), status.HTTP_400_BAD_REQUEST)
    logger.info("api.admission_rejected", code=exc.code, path=request.url.path)
    return _error_response(status_code, exc.code, exc.message, exc.details)


async def body_validation_error_handler(
    request: Request, exc: FastAPIValidationError
) -> JSONResponse:
    details = {"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]}
    return _error_response(
        status.HTTP_400_BAD_REQUEST, "VALIDATION_FAILED", "Invalid request body", details
    )


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    logger.error("api.service_error", code=exc.error_code, error=str(exc), path=request.url.path)
    return _error_response(
        status.HTTP_503_SERVICE_UNAVAILABLE, exc.error_code, "Service temporarily unavailable", {}
    )


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Vitrine API",
        description="Product photo generation jobs",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(AdmissionError, admission_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(FastAPIValidationError, body_validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(ServiceError, service_error_handler)  # type: ignore[arg-type]

    app.include_router(jobs.router)  # prefix="/api/jobs" in definition

    @app.get("/health")
    async def health_check(response: Response):
        """Database ping plus queue depth.

        Returns:
            200: {"status": "healthy", "queue": {"pending": n, "processing": n, "dead": n}}
            503: {"status": "unhealthy", "error": {...}} if the database is unreachable
        """
        try:
            async with await app.state.uow_factory() as uow:
                await uow.session.execute(text("SELECT 1"))
                depth = {
                    queue_status.value: await uow.queue.count_by_status(queue_status)
                    for queue_status in (
                        QueueMessageStatus.PENDING,
                        QueueMessageStatus.PROCESSING,
                        QueueMessageStatus.DEAD,
                    )
                }
        except SQLAlchemyError as e:
            logger.error("health_check.failed", error=str(e), error_type=type(e).__name__)
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "unhealthy", "error": {"type": type(e).__name__, "message": str(e)}}

        return {"status": "healthy", "queue": depth}

    return app


# Create app instance for uvicorn
app = create_app()
