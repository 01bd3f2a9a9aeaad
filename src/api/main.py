"""FastAPI application entry point."""

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment variables before importing runtime config/services.
load_dotenv()

from .config import settings
from .logging_config import setup_logging

setup_logging(level=settings.log_level, logs_dir=settings.logs_dir)

import logging

from .routers import discussions, rooms

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Discussion Hub API",
    description="Multi-agent discussions over room conversations",
    version="1.0.0",
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(discussions.router)
app.include_router(rooms.router)

logger.info("=" * 80)
logger.info("FastAPI Application Started")
logger.info("CORS Origins: %s", settings.cors_origins)
logger.info("Discussions Dir: %s", settings.discussions_dir)
logger.info("=" * 80)


@app.on_event("startup")
async def startup_event():
    """Prepare storage and report discussions interrupted by a previous run."""
    logger.info("=== Application startup initialization ===")
    runtime = discussions.get_discussion_runtime()
    await runtime.recover_discussions()


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}
