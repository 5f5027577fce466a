"""
Main application file for the PromptKeeper API.
Builds the FastAPI application, its shared services and the error handlers.
"""
import logging
import traceback
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from sqlalchemy.engine import Engine

from promptkeeper import __version__
from promptkeeper import schemas
from promptkeeper.api import routes as api_routes
from promptkeeper.config import Settings, settings as default_settings
from promptkeeper.database import init_db
from promptkeeper.errors import PromptKeeperError
from promptkeeper.logging_config import setup_logging
from promptkeeper.services import DiffService, ImportService, LineageLockRegistry, PromptService
from promptkeeper.utils.llm_utils import ProviderRegistry, build_default_registry

logger = logging.getLogger(__name__)


def create_app(
    database_engine: Optional[Engine] = None,
    registry: Optional[ProviderRegistry] = None,
    app_settings: Optional[Settings] = None,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Builds the application.

    Args:
        database_engine: Engine whose tables are created at startup; the
            module-level engine when omitted.
        registry: LLM provider registry; the default providers when omitted.
        app_settings: Settings to build the services with.
        configure_logging: Whether to install the logging configuration.

    Returns:
        A FastAPI app with ``prompt_service``, ``import_service`` and
        ``provider_registry`` on ``app.state``.
    """
    app_settings = app_settings if app_settings is not None else default_settings
    if configure_logging:
        setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(bind=database_engine)
        logger.info(f"PromptKeeper {__version__} started")
        yield
        logger.info("PromptKeeper shutting down")

    app = FastAPI(title="PromptKeeper", version=__version__, lifespan=lifespan)

    # One PromptService per process: its lineage locks must be shared by all requests.
    prompt_service = PromptService(
        lock_registry=LineageLockRegistry(),
        diff_service=DiffService(timeout=app_settings.DIFF_TIMEOUT),
        max_retries=app_settings.VERSION_MINT_MAX_RETRIES,
    )
    app.state.prompt_service = prompt_service
    app.state.import_service = ImportService(prompt_service=prompt_service, app_settings=app_settings)
    app.state.provider_registry = registry if registry is not None else build_default_registry()

    @app.exception_handler(PromptKeeperError)
    async def promptkeeper_exception_handler(request: Request, exc: PromptKeeperError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
        else:
            logger.info(f"{request.method} {request.url.path} rejected: {exc.kind}: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled exception on {request.method} {request.url.path}: {exc}")
        content = {
            "message": "An unexpected error occurred.",
            "detail": str(exc),
        }
        if app_settings.DEBUG:
            content["traceback"] = traceback.format_exc()
        return JSONResponse(status_code=500, content=content)

    @app.get("/health", response_model=schemas.HealthResponse, tags=["Ops"])
    async def health():
        return {"status": "ok", "version": __version__}

    if app_settings.PROMETHEUS_METRICS_ENABLED:
        @app.get("/metrics", name="prometheus_metrics", tags=["Ops"])
        async def metrics():
            """
            Prometheus metrics endpoint.
            """
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.include_router(api_routes.router)
    return app


app = create_app()
