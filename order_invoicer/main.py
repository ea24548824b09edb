import asyncio
import logging
import signal
import sys
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from pydantic import ValidationError

from order_invoicer import __version__
from order_invoicer.config import Settings, get_settings
from order_invoicer.dependencies.services import (
    get_commerce_client_cached,
    get_notifier_cached,
    get_scheduler_cached,
)
from order_invoicer.health import router as health_router

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings | None = None) -> None:
    """Log to stderr and, once settings are known, to ``logs/app.log``."""
    level = settings.log_level if settings else "INFO"
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    else:
        root_logger.setLevel(level)

    if settings is None:
        return
    log_file = Path(settings.log_file).resolve()
    for handler in root_logger.handlers:
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_file:
            return
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(file_handler)


def ensure_directories(settings: Settings) -> None:
    for directory in settings.required_directories:
        Path(directory).mkdir(parents=True, exist_ok=True)
        logger.info("Directory ensured: %s", directory)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title=settings.app_name, version=__version__, redirect_slashes=False)
    app.include_router(health_router)

    @app.get("/", tags=["Health Check"])
    def read_root():
        return {"status": "ok", "message": settings.app_name}

    return app


async def serve(settings: Settings) -> None:
    """Run the scheduler, plus the status API when enabled, until shutdown."""
    scheduler = get_scheduler_cached()
    client = get_commerce_client_cached()
    loop = asyncio.get_running_loop()

    server = None
    if settings.dashboard_enabled:
        config = uvicorn.Config(
            create_app(settings),
            host=settings.dashboard_host,
            port=settings.dashboard_port,
            log_config=None,
        )
        server = uvicorn.Server(config)
        # uvicorn owns SIGINT/SIGTERM while it serves; its exit stops the scheduler.
        server_task = asyncio.create_task(server.serve(), name="status-api")
        server_task.add_done_callback(lambda _: scheduler.stop())
        logger.info(
            "Status API available at http://%s:%s/api/health",
            settings.dashboard_host,
            settings.dashboard_port,
        )
    else:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, scheduler.stop)
            except NotImplementedError:  # pragma: no cover - Windows event loop
                signal.signal(sig, lambda *_: loop.call_soon_threadsafe(scheduler.stop))

    try:
        await scheduler.run_until_stopped()
    finally:
        logger.info("Starting graceful shutdown...")
        if server is not None:
            server.should_exit = True
            await server_task
        await get_notifier_cached().drain()
        await client.close()
        logger.info("Graceful shutdown completed")


def run() -> None:
    configure_logging()
    try:
        settings = get_settings()
    except ValidationError as exc:
        logger.error("Invalid configuration, refusing to start:\n%s", exc)
        sys.exit(1)

    configure_logging(settings)
    logger.info("Starting %s %s (%s)", settings.app_name, __version__, settings.environment)
    logger.info("Application settings on startup: %s", settings.safe_dump())
    try:
        ensure_directories(settings)
    except OSError:
        logger.exception("Failed to create required directories")
        sys.exit(1)

    logger.info("Polling interval: %s minutes", settings.polling_interval_minutes)
    try:
        asyncio.run(serve(settings))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except Exception:
        logger.exception("Fatal error, exiting")
        sys.exit(1)
