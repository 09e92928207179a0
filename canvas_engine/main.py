"""Canvas Engine: FastAPI app."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from canvas_engine.config import settings
from canvas_engine.routers import canvases, extraction, files, generation, nodes, ws
from canvas_engine.workspace import close_workspaces, workspace_count

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log configuration gaps on startup; flush pending autosaves and close workspaces on shutdown."""
    if not settings.functions_url:
        logger.warning("FUNCTIONS_URL not set: extraction and generation calls will fail")
    if not settings.supabase_url or not settings.supabase_key:
        logger.info("SUPABASE_URL/SUPABASE_KEY not set: canvases kept in memory, uploads kept locally")
    logger.info("Canvas engine started")
    yield
    await close_workspaces()
    logger.info("Canvas engine stopped")


app = FastAPI(
    title="Canvas Engine",
    description="Content-generation orchestration for the node-graph canvas",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(canvases.router)
app.include_router(nodes.router)
app.include_router(generation.router)
app.include_router(extraction.router)
app.include_router(files.router)
app.include_router(ws.router)


@app.get("/health")
async def health():
    """Health check."""
    return {
        "status": "ok",
        "workspaces": workspace_count(),
        "functions_configured": bool(settings.functions_url),
    }
