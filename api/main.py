"""FastAPI application for the ScamAtlas aggregator."""

import logging
import os
import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Add project root to path for imports
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan - startup and shutdown."""
    logger.info("Starting ScamAtlas Aggregator API...")

    from db.database import init_db
    init_db()

    if os.getenv("SCHEDULER_ENABLED", "true").lower() == "true":
        try:
            from scheduler.scheduler import init_scheduler
            scheduler = init_scheduler(auto_register=True)
            if scheduler.is_available:
                scheduler.start()
                logger.info("Scheduler started successfully")
        except Exception as e:
            logger.warning(f"Could not start scheduler: {e}")

    yield

    logger.info("Shutting down ScamAtlas Aggregator API...")

    from scheduler.scheduler import get_scheduler
    scheduler = get_scheduler()
    if scheduler.is_running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")


# Create FastAPI app
app = FastAPI(
    title="ScamAtlas Aggregator API",
    description="API for crowd-sourced travel scam reports and per-location scam statistics",
    version=VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": VERSION}


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "name": "ScamAtlas Aggregator API",
        "version": VERSION,
        "endpoints": {
            "health": "/health",
            "docs": "/docs",
            "reports": "/api/reports",
            "locations": "/api/locations/stats",
            "stats": "/api/stats/scam-types",
            "pipeline": "/api/pipeline/jobs/stats",
            "scheduler": "/api/scheduler/status",
            "monitoring": "/api/monitoring/metrics",
        },
    }


# Import and include routers
from api.routes.reports import router as reports_router
from api.routes.pipeline import router as pipeline_router
from api.routes.scheduler import router as scheduler_router
from api.routes.monitoring import router as monitoring_router

app.include_router(reports_router, prefix="/api", tags=["Reports"])
app.include_router(pipeline_router, prefix="/api", tags=["Pipeline"])
app.include_router(scheduler_router, prefix="/api", tags=["Scheduler"])
app.include_router(monitoring_router, prefix="/api", tags=["Monitoring"])


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
