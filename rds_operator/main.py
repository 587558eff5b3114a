"""
Operator entry point.

A FastAPI application whose lifespan registers the Database CRD and runs
the controller; the HTTP side serves health probes and Prometheus metrics.
"""
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import sentry_sdk
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from rds_operator.api import health
from rds_operator.config.kubernetes import load_client_set
from rds_operator.config.logging import configure_logging, get_logger
from rds_operator.config.settings import settings
from rds_operator.k8s.crd import ensure_crd
from rds_operator.workers.controller import create_controller

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Initialize Sentry for error tracking (production)
if settings.sentry_dsn and settings.is_production:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        environment=settings.environment,
        release=settings.app_version,
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    Startup connects to the cluster, makes sure the CRD exists and starts
    the controller; shutdown stops it and closes the API client.
    """
    logger.info(
        "operator_starting",
        version=settings.app_version,
        environment=settings.environment,
        provider=settings.provider,
    )

    client_set = await load_client_set(settings)
    try:
        if settings.ensure_crd:
            await ensure_crd(
                client_set,
                settings.crd_group,
                settings.crd_version,
                timeout_seconds=settings.crd_ready_timeout_seconds,
            )
        controller = create_controller(settings, client_set)
        await controller.start()
    except Exception as e:
        logger.error("operator_startup_failed", error=str(e))
        await client_set.close()
        raise

    app.state.controller = controller
    logger.info("operator_started", namespace=settings.watch_namespace or "*")

    yield

    logger.info("operator_shutting_down")
    await controller.stop()
    await client_set.close()
    logger.info("operator_shutdown_complete")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Provisions managed databases for Database custom resources",
    docs_url=None,
    redoc_url=None,
    lifespan=lifespan,
)

Instrumentator().instrument(app).expose(app, endpoint="/metrics")

app.include_router(health.router, prefix="/health", tags=["Health"])


if __name__ == "__main__":
    import uvicorn

    try:
        uvicorn.run(
            "rds_operator.main:app",
            host=settings.host,
            port=settings.port,
            log_level=settings.log_level.lower(),
        )
    except (KeyboardInterrupt, SystemExit):
        logger.info("operator_stopped")
    finally:
        sys.exit(0)
