"""FastAPI application for journeyrun.

Endpoints:
- POST /journeys: Register a journey graph
- GET /journeys, GET /journeys/{journey_id}: Read journey definitions
- POST /modules: Register a module for next-module lookup
- POST /runs: Resume or start a user's run on a journey
- GET /runs/{run_id}: Get the session view
- GET /runs/{run_id}/states: Get the run's block states
- POST /runs/{run_id}/complete | /quiz | /checkpoint: Complete the current block
- POST /runs/{run_id}/restart | /abandon

Every request rebuilds its session from storage; nothing is cached between
requests.

Security:
- Set JOURNEYRUN_API_KEY env var to require authentication
- Payload size limited to 1MB by default (JOURNEYRUN_MAX_PAYLOAD_SIZE)
- Ids validated (alphanumeric + underscore/hyphen, max 128 chars)
"""

import logging
import os
import re
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from fastapi.security import APIKeyHeader
from pydantic import BaseModel, field_validator

from journeyrun.engine.orchestrator import JourneyOrchestrator
from journeyrun.engine.views import SessionView
from journeyrun.errors import (
    GraphIntegrityError,
    InitializationError,
    PersistenceWriteError,
    RecordNotFoundError,
)
from journeyrun.models.graph import load_graph
from journeyrun.models.machine import Active, Finished
from journeyrun.models.records import (
    BlockState,
    JourneyRecord,
    JourneyStatus,
    ModuleRecord,
    Run,
    new_id,
    utcnow,
)
from journeyrun.store.sqlite_store import JourneyStore
from journeyrun.tracking.runs import RunTracker

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Security configuration
# -----------------------------------------------------------------------------

API_KEY_HEADER = APIKeyHeader(name="X-API-Key", auto_error=False)
MAX_PAYLOAD_SIZE = int(os.environ.get("JOURNEYRUN_MAX_PAYLOAD_SIZE", 1024 * 1024))  # 1MB default
ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,128}$")


def validate_id(value: str, name: str = "id") -> str:
    """Validate an id's format to prevent injection attacks."""
    if not ID_PATTERN.match(value):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {name}: must be 1-128 alphanumeric characters, underscores, or hyphens",
        )
    return value


def _check_id(value: str | None) -> str | None:
    if value is not None and not ID_PATTERN.match(value):
        raise ValueError("must be 1-128 alphanumeric characters, underscores, or hyphens")
    return value


# -----------------------------------------------------------------------------
# Request models
# -----------------------------------------------------------------------------


class JourneyRequest(BaseModel):
    """Request body for registering a journey.

    journey_id is optional - the server generates one if missing.
    """

    journey_id: str | None = None
    module_id: str | None = None
    version: int = 1
    status: JourneyStatus = JourneyStatus.DRAFT
    graph: dict[str, Any]

    @field_validator("journey_id", "module_id")
    @classmethod
    def validate_ids(cls, v: str | None) -> str | None:
        return _check_id(v)


class ModuleRequest(BaseModel):
    module_id: str
    track_id: str
    title: str
    order_index: int

    @field_validator("module_id", "track_id")
    @classmethod
    def validate_ids(cls, v: str) -> str:
        return _check_id(v)


class StartRunRequest(BaseModel):
    user_id: str
    journey_id: str

    @field_validator("user_id", "journey_id")
    @classmethod
    def validate_ids(cls, v: str) -> str:
        return _check_id(v)


class CompleteRequest(BaseModel):
    block_id: str
    output: dict[str, Any] | None = None
    score: float | None = None
    weak_topics: list[str] | None = None


class QuizRequest(BaseModel):
    block_id: str
    answers: dict[str, int]


class CheckpointRequest(BaseModel):
    block_id: str


# -----------------------------------------------------------------------------
# App factory
# -----------------------------------------------------------------------------


def create_app(
    db_path: str | Path = "journeyrun.db",
    require_api_key: bool | None = None,
    max_payload_size: int | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Create a FastAPI app with the given database.

    Args:
        db_path: Path to SQLite database, or ":memory:" for in-memory.
        require_api_key: If True, require X-API-Key header. If None, uses
                         JOURNEYRUN_API_KEY env var (enabled if set).
        max_payload_size: Maximum request payload size in bytes. Defaults to
                         JOURNEYRUN_MAX_PAYLOAD_SIZE env var or 1MB.
        clock: Time source for block timing.

    Returns:
        Configured FastAPI application.
    """
    store = JourneyStore(db_path)

    api_key = os.environ.get("JOURNEYRUN_API_KEY")
    if require_api_key is None:
        require_api_key = api_key is not None

    if max_payload_size is None:
        max_payload_size = MAX_PAYLOAD_SIZE

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        store.close()

    app = FastAPI(
        title="journeyrun API",
        description="Branching learning-journey execution engine",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.store = store
    app.state.require_api_key = require_api_key
    app.state.api_key = api_key

    # -------------------------------------------------------------------------
    # Middleware for payload size limit
    # -------------------------------------------------------------------------

    @app.middleware("http")
    async def limit_payload_size(request: Request, call_next):
        """Reject requests with payload larger than max_payload_size."""
        content_length = request.headers.get("content-length")
        if content_length and int(content_length) > max_payload_size:
            return JSONResponse(
                status_code=413,
                content={"detail": f"Payload too large. Maximum size is {max_payload_size} bytes."},
            )
        return await call_next(request)

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(RecordNotFoundError)
    async def not_found_handler(request: Request, exc: RecordNotFoundError):
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(GraphIntegrityError)
    async def graph_error_handler(request: Request, exc: GraphIntegrityError):
        return JSONResponse(
            status_code=422,
            content={"detail": str(exc), "problems": exc.problems},
        )

    @app.exception_handler(InitializationError)
    async def init_error_handler(request: Request, exc: InitializationError):
        return JSONResponse(
            status_code=409,
            content={"detail": str(exc), "retryable": exc.retryable},
        )

    @app.exception_handler(PersistenceWriteError)
    async def write_error_handler(request: Request, exc: PersistenceWriteError):
        logger.error("Write failed on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    # -------------------------------------------------------------------------
    # Dependency for API key verification
    # -------------------------------------------------------------------------

    async def verify_api_key(api_key_header: str | None = Depends(API_KEY_HEADER)):
        """Verify API key if required."""
        if not app.state.require_api_key:
            return
        if not api_key_header or api_key_header != app.state.api_key:
            raise HTTPException(
                status_code=401,
                detail="Invalid or missing API key. Set X-API-Key header.",
            )

    def open_session(run_id: str) -> JourneyOrchestrator:
        validate_id(run_id, "run_id")
        orchestrator = JourneyOrchestrator(store, clock)
        orchestrator.open(run_id)
        return orchestrator

    def require_current(orchestrator: JourneyOrchestrator, block_id: str) -> None:
        state = orchestrator.state
        if isinstance(state, Finished):
            raise HTTPException(status_code=409, detail="Run is already finished")
        if not isinstance(state, Active) or state.block_id != block_id:
            raise HTTPException(status_code=409, detail=f"Block is not current: {block_id}")

    # ---------------------------------------------------------------------
    # Journeys
    # ---------------------------------------------------------------------

    @app.post("/journeys", response_model=JourneyRecord, dependencies=[Depends(verify_api_key)])
    async def create_journey(request: JourneyRequest) -> JourneyRecord:
        """Validate and store a journey graph."""
        graph = load_graph(request.graph)
        record = JourneyRecord(
            journey_id=request.journey_id or new_id(),
            module_id=request.module_id,
            version=request.version,
            status=request.status,
            graph=graph,
        )
        return store.save_journey(record)

    @app.get("/journeys", response_model=list[JourneyRecord])
    async def list_journeys() -> list[JourneyRecord]:
        return store.list_journeys()

    @app.get("/journeys/{journey_id}", response_model=JourneyRecord)
    async def get_journey(journey_id: str) -> JourneyRecord:
        validate_id(journey_id, "journey_id")
        record = store.get_journey(journey_id)
        if record is None:
            raise HTTPException(status_code=404, detail="Journey not found")
        return record

    @app.post("/modules", response_model=ModuleRecord, dependencies=[Depends(verify_api_key)])
    async def create_module(request: ModuleRequest) -> ModuleRecord:
        return store.save_module(ModuleRecord(**request.model_dump()))

    # ---------------------------------------------------------------------
    # Runs
    # ---------------------------------------------------------------------

    @app.post("/runs", response_model=SessionView, dependencies=[Depends(verify_api_key)])
    async def start_run(request: StartRunRequest) -> SessionView:
        """Resume the user's active run on a journey, or start one."""
        orchestrator = JourneyOrchestrator(store, clock)
        orchestrator.start(request.user_id, request.journey_id)
        return orchestrator.view()

    @app.get("/runs/{run_id}", response_model=SessionView)
    async def get_run(run_id: str) -> SessionView:
        return open_session(run_id).view()

    @app.get("/runs/{run_id}/states", response_model=list[BlockState])
    async def get_run_states(run_id: str) -> list[BlockState]:
        validate_id(run_id, "run_id")
        if store.get_run(run_id) is None:
            raise HTTPException(status_code=404, detail="Run not found")
        return store.list_block_states(run_id)

    @app.post(
        "/runs/{run_id}/complete",
        response_model=SessionView,
        dependencies=[Depends(verify_api_key)],
    )
    async def complete_block(run_id: str, request: CompleteRequest) -> SessionView:
        """Complete the current block with the renderer's output."""
        orchestrator = open_session(run_id)
        require_current(orchestrator, request.block_id)
        orchestrator.complete_block(
            request.block_id,
            output=request.output,
            score=request.score,
            weak_topics=request.weak_topics,
        )
        return orchestrator.view()

    @app.post(
        "/runs/{run_id}/quiz",
        response_model=SessionView,
        dependencies=[Depends(verify_api_key)],
    )
    async def submit_quiz(run_id: str, request: QuizRequest) -> SessionView:
        """Score quiz answers server-side and complete the quiz block."""
        orchestrator = open_session(run_id)
        require_current(orchestrator, request.block_id)
        block = orchestrator.graph.get_block(request.block_id)
        if block is None or block.type != "quiz":
            raise HTTPException(status_code=400, detail="Current block is not a quiz")
        orchestrator.submit_quiz(request.block_id, request.answers)
        return orchestrator.view()

    @app.post(
        "/runs/{run_id}/checkpoint",
        response_model=SessionView,
        dependencies=[Depends(verify_api_key)],
    )
    async def submit_checkpoint(run_id: str, request: CheckpointRequest) -> SessionView:
        """Accept the checkpoint verdict and move on."""
        orchestrator = open_session(run_id)
        require_current(orchestrator, request.block_id)
        block = orchestrator.graph.get_block(request.block_id)
        if block is None or block.type != "checkpoint":
            raise HTTPException(status_code=400, detail="Current block is not a checkpoint")
        orchestrator.submit_checkpoint(request.block_id)
        return orchestrator.view()

    @app.post(
        "/runs/{run_id}/restart",
        response_model=SessionView,
        dependencies=[Depends(verify_api_key)],
    )
    async def restart_run(run_id: str) -> SessionView:
        orchestrator = open_session(run_id)
        orchestrator.restart()
        return orchestrator.view()

    @app.post(
        "/runs/{run_id}/abandon",
        response_model=Run,
        dependencies=[Depends(verify_api_key)],
    )
    async def abandon_run(run_id: str) -> Run:
        """Give up on a run; the next POST /runs starts a fresh one."""
        validate_id(run_id, "run_id")
        return RunTracker(store, clock).abandon(run_id)

    return app
