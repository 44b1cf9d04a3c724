"""
HTTP surface for the recall engine: health, stats and the command endpoint.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .commands import execute
from .schemas import CommandRequest, CommandResponse, HealthResponse
from ..core.config import VERSION, debug_enabled
from ..core.engine import RecallEngine
from ..core.errors import RecallError
from ..util.logging import logger


def get_engine(request: Request) -> RecallEngine:
    return request.app.state.engine


def create_app(engine: Optional[RecallEngine] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        engine: Engine to serve; when omitted one is built from the environment
            on startup. The app closes the engine on shutdown either way.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.set_debug(debug_enabled())
        if getattr(app.state, "engine", None) is None:
            app.state.engine = RecallEngine.from_config()
        logger.info(f"Recall engine ready (version {VERSION})")
        yield
        app.state.engine.close()
        logger.info("Recall engine closed")

    app = FastAPI(
        title="Semantic Recall API",
        version=VERSION,
        description="Local semantic memory over captured pages",
        docs_url="/docs" if debug_enabled() else None,
        redoc_url="/redoc" if debug_enabled() else None,
        lifespan=lifespan
    )
    app.state.engine = engine

    # Allow the local capture extension and dashboard
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health", response_model=HealthResponse)
    def health_check_endpoint(engine: RecallEngine = Depends(get_engine)):
        """Check system health."""
        try:
            db_health = engine.store.health_check()
            record_count = engine.store.count_records()
        except RecallError as e:
            logger.warning(f"Health check failed: {e}")
            db_health = False
            record_count = 0

        return HealthResponse(
            status="healthy" if db_health else "unhealthy",
            version=VERSION,
            db_health=db_health,
            record_count=record_count,
            index_size=len(engine.index)
        )

    @app.get("/stats", response_model=CommandResponse)
    def stats_endpoint(engine: RecallEngine = Depends(get_engine)):
        try:
            return CommandResponse(success=True, data={**engine.stats(), "graph": engine.graph_stats()})
        except RecallError as e:
            return CommandResponse(success=False, error=str(e))

    @app.post("/command", response_model=CommandResponse)
    def command_endpoint(request: CommandRequest, engine: RecallEngine = Depends(get_engine)):
        return execute(engine, request.root)

    return app
