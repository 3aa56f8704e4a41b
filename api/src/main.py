import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from api.src.config import get_settings
from api.src.db.database import init_db
from api.src.routes import health_router, runs_router, webhooks_router
from api.src.services.pipeline_parser import get_pipeline_catalog

settings = get_settings()
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    print("🚀 Starting PlanGate API")
    # Fail fast on a broken catalog, it never changes while running
    catalog = get_pipeline_catalog()
    logger.info(f"Loaded pipelines: {', '.join(catalog)}")
    await init_db()
    yield
    # Shutdown
    print("👋 Shutting down PlanGate API")

app = FastAPI(
    title="PlanGate",
    description="Infrastructure change verification pipeline",
    version="0.1.0",
    lifespan=lifespan
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health_router)
app.include_router(runs_router, prefix="/api")
app.include_router(webhooks_router, prefix="/api")

@app.get("/")
async def root():
    return {
        "name": "PlanGate",
        "version": "0.1.0",
        "docs": "/docs"
    }
