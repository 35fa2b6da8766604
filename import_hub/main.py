"""
FastAPI application entry point.

This module initializes the FastAPI application, wires the destination
store and the job queue scheduler into ``app.state`` and registers all
API routers.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI

from .api.routers import imports, jobs, tasks, templates
from .api.schemas.shared import TargetTablesResponse
from .core.config import settings
from .core.logging_config import configure_logging
from .db.session import create_system_tables
from .domain.imports.destination import SqlDestinationStore, create_destination_table
from .domain.imports.tables import TARGET_TABLES
from .domain.queue.processors import build_processor_registry
from .domain.queue.scheduler import JobQueueScheduler

# Ensure logging is configured before the application starts serving requests.
configure_logging(settings.log_level)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create system tables, start the queue poller and stop it on shutdown."""
    try:
        create_system_tables()
        logger.info("System tables ready")
        if settings.create_target_tables:
            for table in TARGET_TABLES.values():
                create_destination_table(table.name, table.fields)
    except Exception:
        logger.exception("Failed to initialize database tables; the application cannot start")
        raise

    store = SqlDestinationStore()
    scheduler = JobQueueScheduler(build_processor_registry(store))
    app.state.destination_store = store
    app.state.scheduler = scheduler

    if settings.queue_autostart:
        scheduler.start()

    yield  # Application runs here

    await scheduler.stop(wait=True)


app = FastAPI(
    title="Import Hub API",
    version="1.0.0",
    description="Bulk file imports with field mapping, validation and a priority job queue",
    lifespan=lifespan,
)

app.include_router(imports.router)
app.include_router(jobs.router)
app.include_router(tasks.router)
app.include_router(templates.router)


@app.get("/target-tables", response_model=TargetTablesResponse)
async def list_target_tables():
    """Known target tables with their fields, used by mapping UIs."""
    return TargetTablesResponse(
        tables=[
            {
                "name": table.name,
                "label": table.label,
                "fields": table.fields,
                "required_fields": sorted(table.rules.required),
            }
            for table in TARGET_TABLES.values()
        ]
    )


@app.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": "import-hub",
        "queue_running": app.state.scheduler.is_running if hasattr(app.state, "scheduler") else False,
    }
