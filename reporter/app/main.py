import sys
import logging
import httpx

from contextlib import asynccontextmanager
from importlib.metadata import version, PackageNotFoundError

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse

from reporter.app.api.routes import router as report_router
from reporter.app.api.templates import router as templates_router
from reporter.app.coordinator.coordinator import ChecklistReportCoordinator
from reporter.app.core.config import get_settings

logger = logging.getLogger("reporter.main")


def get_app_version() -> str:
    """
    Resolve the installed package version.

    Falls back to the source version when running from a checkout.
    """
    try:
        return version("checklist-reporter")
    except PackageNotFoundError:
        return "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    - Loads settings once
    - Pre-allocates the shared HTTP client
    - Wires the report coordinator

    Missing external credentials do not block startup; requests that
    need them fail with a configuration error instead.
    """
    try:
        settings = get_settings()
    except Exception:
        logger.exception("invalid_reporter_configuration")
        raise

    logger.info(
        "reporter_startup_begin",
        extra={
            "service": "reporter",
            "version": get_app_version(),
            "supabase_configured": settings.supabase_url is not None,
            "google_configured": settings.google_service_account_email is not None,
        },
    )

    app.state.settings = settings

    # Sync client: the pipeline runs in the threadpool.
    app.state.http_client = httpx.Client(
        timeout=httpx.Timeout(
            timeout=settings.http_timeout_seconds,
            connect=10.0,
        ),
        limits=httpx.Limits(
            max_keepalive_connections=20,
            max_connections=50,
        ),
        headers={
            "User-Agent": f"checklist-reporter/{get_app_version()}",
        },
    )

    app.state.coordinator = ChecklistReportCoordinator.from_settings(
        settings,
        app.state.http_client,
    )

    try:
        yield
    finally:
        logger.info("reporter_shutdown_begin")

        try:
            app.state.http_client.close()
        except Exception:
            logger.warning("http_client_shutdown_failed")


def create_app() -> FastAPI:
    """
    Application factory for the checklist report service.
    """
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    app = FastAPI(
        title="Checklist Reporter",
        description=(
            "Renders driver daily checklists to PDF and publishes them "
            "to Google Drive."
        ),
        version=get_app_version(),
        docs_url="/docs",
        redoc_url=None,
        default_response_class=ORJSONResponse,
        lifespan=lifespan,
    )

    # Called from the driver portal in the browser.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["POST", "OPTIONS"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type", "x-correlation-id"],
        expose_headers=["X-Correlation-ID"],
    )

    app.include_router(report_router)
    app.include_router(templates_router)

    @app.get(
        "/healthz",
        tags=["Monitoring"],
        summary="Liveness check",
    )
    async def health_check():
        """
        Verifies that the runtime is alive.

        Does NOT contact Supabase or Google.
        """
        return ORJSONResponse(
            content={
                "status": "ok",
                "service": "reporter",
                "version": app.version,
                "runtime": f"python {sys.version.split()[0]}",
            }
        )

    return app


app = create_app()
