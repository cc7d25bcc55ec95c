"""
Staged Launch - service entry point
Operator API over the staged feature-rollout controller.
"""

import logging
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Optional

import uvicorn
from fastapi import FastAPI
from prometheus_client import make_asgi_app

from staged_launch import __version__
from staged_launch.api import api_router
from staged_launch.core.config import Settings, get_settings
from staged_launch.core.feature_flags.client import FeatureFlagClient
from staged_launch.core.launch.checks import EnvironmentProber, HttpHealthSource
from staged_launch.core.launch.controller import StagedLaunchController
from staged_launch.core.launch.hooks import RollbackHookRegistry
from staged_launch.core.launch.metrics_store import MetricsStore
from staged_launch.core.launch.registry import StageRegistry, load_launch_configs
from staged_launch.core.launch.validation import LaunchValidator
from staged_launch.core.logging.structured import setup_structured_logging
from staged_launch.core.notifications.channels import SlackChannel
from staged_launch.core.notifications.client import AlertEmitter

logger = logging.getLogger(__name__)


def build_controller(settings: Settings) -> StagedLaunchController:
    """Wire a controller from settings, registering the configured launches."""
    registry = StageRegistry()
    config_path = Path(settings.LAUNCH_CONFIG_PATH)
    if config_path.exists():
        loaded = load_launch_configs(registry, config_path)
        logger.info(f"Registered {len(loaded)} launch config(s) from {config_path}")
    else:
        logger.warning(f"Launch config file not found: {config_path}")

    hooks = RollbackHookRegistry(timeout_seconds=settings.ROLLBACK_HOOK_TIMEOUT_SECONDS)
    alerts = AlertEmitter(
        base_url=settings.ALERT_BASE_URL,
        timeout=settings.ALERT_TIMEOUT_SECONDS,
        channels=[SlackChannel(timeout=settings.ALERT_TIMEOUT_SECONDS)],
    )
    flag_store = FeatureFlagClient(
        backend=settings.FEATURE_FLAG_BACKEND,
        config_path=settings.FEATURE_FLAG_CONFIG_PATH,
    )

    validator = None
    prober = None
    if settings.VALIDATE_ON_ADVANCE:
        validator = LaunchValidator(registry, hooks)
        prober = EnvironmentProber(
            base_url=settings.PROBE_BASE_URL, timeout=settings.PROBE_TIMEOUT_SECONDS
        )

    health_check = None
    if settings.HEALTH_CHECK_URL:
        health_check = HttpHealthSource(
            settings.HEALTH_CHECK_URL, timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS
        )

    return StagedLaunchController(
        registry=registry,
        flag_store=flag_store,
        alerts=alerts,
        hooks=hooks,
        metrics_store=MetricsStore(retention=timedelta(hours=settings.METRICS_RETENTION_HOURS)),
        validator=validator,
        prober=prober,
        health_check=health_check,
        health_check_interval=settings.HEALTH_CHECK_INTERVAL_SECONDS,
        health_check_timeout=settings.HEALTH_CHECK_TIMEOUT_SECONDS,
        advance_retry_minutes=settings.ADVANCE_RETRY_MINUTES,
    )


def create_app(
    controller: Optional[StagedLaunchController] = None,
    settings: Optional[Settings] = None,
) -> FastAPI:
    """Create the FastAPI application.

    A pre-built controller may be passed in (tests); otherwise one is built
    from settings when the application starts.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_structured_logging(
            environment=settings.ENVIRONMENT,
            level=settings.LOG_LEVEL.upper(),
            json_output=settings.LOG_JSON,
        )
        logger.info("Starting Staged Launch...")
        if getattr(app.state, "launch_controller", None) is None:
            app.state.launch_controller = build_controller(settings)

        yield

        logger.info("Shutting down Staged Launch...")
        await app.state.launch_controller.shutdown()

    app = FastAPI(
        title="Staged Launch",
        description="Staged feature rollout controller",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.launch_controller = controller

    app.include_router(api_router, prefix="/api")
    app.mount("/metrics", make_asgi_app())

    @app.get("/")
    async def root():
        return {
            "name": "Staged Launch",
            "version": __version__,
            "status": "running",
            "docs": "/docs",
            "health": "/api/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run(
        "staged_launch.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
