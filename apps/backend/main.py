import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from interview_research.config import settings
from interview_research.database import AsyncSessionLocal, close_db, engine, init_db
from interview_research.dependencies import build_services
from interview_research.health import collect_health
from interview_research.logging_config import configure_logging
from interview_research.routers import research

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: logging, tables, long-lived services
    configure_logging(settings.log_level)
    logger.info("Starting Interview Research backend")
    await init_db()
    logger.info("Database tables ready")
    app.state.services = build_services(AsyncSessionLocal)
    yield
    # Shutdown: interrupt active runs, then close connections
    logger.info("Shutting down Interview Research backend")
    await app.state.services.orchestrator.shutdown()
    await close_db()
    logger.info("Database connections closed")

app = FastAPI(
    title=settings.app_name,
    description="Interview preparation research pipeline",
    version="0.1.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=[settings.frontend_cors_origin],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(research.router)


@app.get("/")
async def root():
    return {"message": "Interview Research API - Ready"}

@app.get("/health")
async def health_check():
    """Health check for all service dependencies."""
    return await collect_health(
        engine, settings.ollama_base_url, settings.search_enabled
    )
