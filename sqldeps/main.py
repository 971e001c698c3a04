"""
FastAPI application entry point for the SQL Workspace Dependency API.
"""
import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sqldeps.config import settings
from sqldeps.routers import lineage, objects, search
from sqldeps.services.index_manager import IndexManager, get_index_manager

# Configure logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Load the cached index (or auto-index a small workspace) on startup."""
    logger.info(f"Starting {settings.APP_NAME} for {settings.WORKSPACE_ROOT}...")
    manager = get_index_manager()
    try:
        auto_indexed, file_count = manager.initialize(settings.AUTO_INDEX_THRESHOLD)
        if manager.has_index():
            logger.info(f"Index ready ({file_count} files, auto-indexed: {auto_indexed})")
        else:
            logger.info(f"{file_count} SQL files found; POST /api/v1/index/rebuild to index them")
    except OSError as e:
        logger.error(f"Failed to initialize index: {e}")
    yield
    logger.info(f"Shutting down {settings.APP_NAME}...")


app = FastAPI(
    title=settings.APP_NAME,
    description="API for exploring table dependencies across a SQL workspace",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware for frontend access
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173", "http://localhost:3000", "http://127.0.0.1:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(objects.router, prefix="/api/v1")
app.include_router(lineage.router, prefix="/api/v1")
app.include_router(search.router, prefix="/api/v1")


@app.get("/")
async def root():
    return {
        "name": settings.APP_NAME,
        "version": "1.0.0",
        "docs": "/docs",
    }


@app.get("/health")
async def health(manager: IndexManager = Depends(get_index_manager)):
    """Health check endpoint."""
    return {"status": "healthy", "indexed": manager.has_index()}
