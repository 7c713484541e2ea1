import logging
import os
from typing import Optional

from fastapi import FastAPI

from jobflare.db.schema import init_db
from jobflare.db.conn import connect
from jobflare.core.config import RuntimeConfig, get_data_dir, get_db_path, get_runtime_config
from jobflare.core.http import HttpClient
from jobflare.core.scheduler import SchedulerService

from jobflare.detection.caches import DetectionCache, SchemaCache
from jobflare.detection.cascade import DetectionCascade
from jobflare.detection.schema_fetcher import SchemaFetcher
from jobflare.fetchers.base import FetchContext
from jobflare.fetchers.registry import build_fetchers
from jobflare.services.board_monitor import BoardMonitor
from jobflare.services.filtered_view import FilteredViewCache
from jobflare.services.notifications import NotificationPolicy
from jobflare.services.orchestrator import FetchOrchestrator
from jobflare.services.persistence import Persistence
from jobflare.services.tracking import JobTrackingStore

from jobflare.api.jobs import router as jobs_router
from jobflare.api.boards import router as boards_router
from jobflare.api.run import router as run_router
from jobflare.api.status import router as status_router
from jobflare.api.settings import router as settings_router

logger = logging.getLogger("main")


def create_app(
    config: Optional[RuntimeConfig] = None,
    data_dir: Optional[str] = None,
    http: Optional[HttpClient] = None,
) -> FastAPI:
    cfg = config or get_runtime_config()
    db_path = os.path.join(data_dir, "flare.sqlite3") if data_dir else get_db_path()
    data_dir = data_dir or get_data_dir()

    app = FastAPI(title="Job Flare", version="0.1.0")

    con = connect(db_path)
    init_db(con)
    tracking = JobTrackingStore(os.path.join(data_dir, "tracking"), retention_days=cfg.tracking_retention_days)
    persistence = Persistence(con)

    detection_cache = DetectionCache(os.path.join(data_dir, "detection_cache.json"))
    schema_cache = SchemaCache(os.path.join(data_dir, "schema_cache.json"))

    http = http or HttpClient(timeout_s=cfg.request_timeout_s)
    ctx = FetchContext(
        http=http,
        tracking=tracking,
        page_delay_s=cfg.page_delay_ms / 1000.0,
        max_results_cap=cfg.max_results_cap,
        tracking_retention_days=cfg.tracking_retention_days,
    )
    fetchers = build_fetchers(ctx)
    cascade = DetectionCascade(
        fetchers,
        http,
        detection_cache,
        schema_cache,
        ai_extractor=None,
        ai_enabled=cfg.ai_parsing_enabled,
        ai_retry_days=cfg.ai_retry_days,
        schema_fetcher=SchemaFetcher(ctx),
    )
    if cfg.ai_parsing_enabled:
        logger.warning("[main] AI_PARSING_ENABLED is set but no extractor is configured; step skipped")

    board_monitor = BoardMonitor(
        persistence,
        cascade,
        detection_cache,
        schema_cache,
        board_delay_s=cfg.board_delay_ms / 1000.0,
    )
    view = FilteredViewCache(display_window_s=cfg.display_window_s)
    orchestrator = FetchOrchestrator(
        persistence,
        fetchers,
        board_monitor,
        view,
        policy=NotificationPolicy(cfg.notify_window_s, cfg.notify_group_throttle),
        max_concurrency=cfg.fetch_max_concurrency,
        source_delay_s=cfg.board_delay_ms / 1000.0,
        cleanup_retention_days=cfg.cleanup_retention_days,
    )
    orchestrator.load()

    app.state.db = con
    app.state.persistence = persistence
    app.state.detection_cache = detection_cache
    app.state.schema_cache = schema_cache
    app.state.cascade = cascade
    app.state.board_monitor = board_monitor
    app.state.view = view
    app.state.orchestrator = orchestrator

    # Scheduler attach
    scheduler = SchedulerService(app, cfg)
    app.state.scheduler = scheduler

    @app.on_event("startup")
    async def startup_event():
        await scheduler.start()

    @app.on_event("shutdown")
    async def shutdown_event():
        await scheduler.stop()

    # API routes
    app.include_router(jobs_router, prefix="/api")
    app.include_router(boards_router, prefix="/api")
    app.include_router(run_router, prefix="/api")
    app.include_router(status_router, prefix="/api")
    app.include_router(settings_router, prefix="/api")

    return app
