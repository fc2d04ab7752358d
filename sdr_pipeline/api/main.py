"""
FastAPI app for the SDR call pipeline.

Endpoints:
- Upload a daily transcript and poll its processing status
- List calls with their grades
- Retry a failed/partial transcript, re-grade a single call
- Record coaching feedback on a grade

Processing runs as background tasks in this process; one run per transcript
at a time.
"""

# Load .env BEFORE any application imports that read os.environ
from dotenv import load_dotenv
load_dotenv()

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sdr_pipeline import __version__
from sdr_pipeline.api.routes import calls, grades, transcripts
from sdr_pipeline.config.log_config import configure_logging
from sdr_pipeline.config.settings import get_settings
from sdr_pipeline.database import init_db

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Configure logging and create tables on startup."""
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_json)
    init_db()
    logger.info("api_started", version=__version__, database_url=settings.database_url)
    yield


app = FastAPI(
    title="SDR Call Pipeline API",
    description="Segments, classifies and grades SDR daily call transcripts",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# =============================================================================
# API routes
# =============================================================================

app.include_router(transcripts.router, prefix="/api", tags=["Transcripts"])
app.include_router(calls.router, prefix="/api", tags=["Calls"])
app.include_router(grades.router, prefix="/api", tags=["Grades"])


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy", "version": __version__}


# =============================================================================
# Run with: python -m sdr_pipeline.api.main
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "sdr_pipeline.api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
