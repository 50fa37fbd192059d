"""
FastAPI REST adapter for the Gantt data layer.

Decodes editor requests, delegates task mutations to the HierarchyEngine and
link/task CRUD to the stores, and maps the error taxonomy onto HTTP responses.
"""

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .database import GanttDatabase
from .engine import HierarchyEngine
from .errors import GanttError, StoreError
from .models import (
    BatchRequest,
    BatchResponse,
    DataResponse,
    Link,
    LinkUpdate,
    MutationResponse,
    Operation,
    Task,
    TaskMutation,
    TaskUpdate,
)
from .monitoring import performance_monitor
from .stores import LinkStore, TaskStore

# Configure logging for API operations
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Database configuration from environment variables
DEFAULT_DB_PATH = "gantt.db"
TRUTHY = ("1", "true", "yes", "on")

# Global database instance for dependency injection
db_instance: Optional[GanttDatabase] = None


class HealthResponse(BaseModel):
    status: str
    database_connected: bool
    timestamp: str


class MetricsResponse(BaseModel):
    tasks: Dict[str, Any]
    performance: Dict[str, Any]
    system: Dict[str, Any]


def get_database() -> GanttDatabase:
    """
    FastAPI dependency to provide database instance.

    Raises:
        HTTPException: If database is not available
    """
    if db_instance is None:
        raise HTTPException(status_code=503, detail="Database not available")
    return db_instance


def get_engine(db: GanttDatabase = Depends(get_database)) -> HierarchyEngine:
    return HierarchyEngine(db)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database on startup and close it on shutdown."""
    global db_instance

    db_path = os.getenv("DATABASE_PATH", DEFAULT_DB_PATH)
    reset = os.getenv("RESET_ON_START", "").strip().lower() in TRUTHY

    try:
        db_instance = GanttDatabase(db_path, reset=reset)
        logger.info(f"Database initialized: {db_path} (reset={reset})")
        logger.info("Gantt Manager API starting up...")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    yield

    if db_instance:
        db_instance.close()
        db_instance = None
        logger.info("Database connection closed")


app = FastAPI(
    title="Gantt Manager API",
    description="REST API for the Gantt task tree and dependency links",
    version="1.0.0",
    lifespan=lifespan
)

# Editor front-ends are served from other origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(GanttError)
async def gantt_error_handler(request, exc: GanttError):
    """Map domain errors to their HTTP status codes."""
    if isinstance(exc, StoreError):
        logger.error(f"Store failure on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"Rejected {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/healthz", response_model=HealthResponse)
async def health_check(db: GanttDatabase = Depends(get_database)):
    """Health check endpoint for service monitoring."""
    database_connected = True
    try:
        db.ping()
    except StoreError as e:
        logger.error(f"Database health check failed: {e}")
        database_connected = False

    return HealthResponse(
        status="healthy" if database_connected else "degraded",
        database_connected=database_connected,
        timestamp=datetime.now(timezone.utc).isoformat()
    )


@app.get("/api/metrics", response_model=MetricsResponse)
async def get_performance_metrics(db: GanttDatabase = Depends(get_database)):
    """Store timings, mutation counters and process resource usage."""
    metrics = performance_monitor.get_system_metrics(db)
    return MetricsResponse(
        tasks={
            "total_tasks": metrics.total_tasks,
            "total_links": metrics.total_links,
        },
        performance={
            "avg_query_time_ms": round(metrics.avg_query_time_ms, 3),
            "avg_mutation_time_ms": round(metrics.avg_mutation_time_ms, 3),
            "mutations_today": metrics.mutations_today,
            "rejected_mutations_today": metrics.rejected_mutations_today,
        },
        system={
            "memory_usage_mb": round(metrics.memory_usage_mb, 2),
            "cpu_usage_percent": metrics.cpu_usage_percent,
            "uptime_seconds": round(metrics.uptime_seconds, 1),
        },
    )


@app.get("/data", response_model=DataResponse)
async def get_data(db: GanttDatabase = Depends(get_database)):
    """Complete Gantt payload: every task and link."""
    with db.read():
        tasks = TaskStore(db).get_all()
        links = LinkStore(db).get_all()
    logger.info(f"REST API: Retrieved {len(tasks)} tasks and {len(links)} links")
    return DataResponse(tasks=tasks, links=links)


@app.get("/tasks", response_model=List[Task])
async def list_tasks(db: GanttDatabase = Depends(get_database)):
    return TaskStore(db).get_all()


@app.get("/tasks/{task_id}", response_model=Task)
async def get_task(task_id: int, db: GanttDatabase = Depends(get_database)):
    return TaskStore(db).get_one(task_id)


@app.post("/tasks", response_model=MutationResponse)
async def create_task(update: TaskUpdate, db: GanttDatabase = Depends(get_database)):
    task_id = TaskStore(db).add(update)
    logger.info(f"REST API: Created task {task_id}")
    return MutationResponse(id=task_id)


@app.put("/tasks/{task_id}", response_model=MutationResponse)
async def mutate_task(task_id: int, mutation: TaskMutation,
                      engine: HierarchyEngine = Depends(get_engine)):
    """
    Update, move, copy or delete a task.

    ``operation`` defaults to update. Move and copy take ``target`` and ``mode``
    (child, before, after); copy also takes ``nested``. The response carries the
    affected id, which for copy is the id of the new top-level task.
    """
    affected = engine.mutate(task_id, mutation.operation, mutation)
    return MutationResponse(id=affected)


@app.delete("/tasks/{task_id}", response_model=MutationResponse)
async def delete_task(task_id: int, engine: HierarchyEngine = Depends(get_engine)):
    affected = engine.mutate(task_id, Operation.DELETE)
    return MutationResponse(id=affected)


@app.get("/links", response_model=List[Link])
async def list_links(db: GanttDatabase = Depends(get_database)):
    return LinkStore(db).get_all()


@app.post("/links", response_model=MutationResponse)
async def create_link(update: LinkUpdate, db: GanttDatabase = Depends(get_database)):
    link_id = LinkStore(db).add(update)
    logger.info(f"REST API: Created link {link_id}")
    return MutationResponse(id=link_id)


@app.put("/links/{link_id}", response_model=MutationResponse)
async def update_link(link_id: int, update: LinkUpdate,
                      db: GanttDatabase = Depends(get_database)):
    LinkStore(db).update(link_id, update)
    return MutationResponse(id=link_id)


@app.delete("/links/{link_id}", response_model=MutationResponse)
async def delete_link(link_id: int, db: GanttDatabase = Depends(get_database)):
    LinkStore(db).delete(link_id)
    logger.info(f"REST API: Deleted link {link_id}")
    return MutationResponse(id=link_id)


@app.post("/batch", response_model=BatchResponse)
async def apply_batch(request: BatchRequest, engine: HierarchyEngine = Depends(get_engine)):
    """
    Apply several task/link operations atomically.

    Items run in order; ``insert`` items bind their tentative ``id`` so later
    items may reference it in ``id``, ``parent``, ``target`` or link endpoints.
    """
    ids, results = engine.apply_batch(request.items)
    return BatchResponse(ids=ids, results=results)


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """General exception handler for unhandled errors."""
    logger.error(f"Unhandled exception: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error", "code": "internal_error"}
    )
