"""
Rankwatch API application.

Run with:
    uvicorn api.main:app --reload
"""

import logging
import sys

from dotenv import load_dotenv
from fastapi import FastAPI
from sqlalchemy.exc import SQLAlchemyError

from rankwatch import __version__
from rankwatch.database import check_db_connection, init_db
from rankwatch.utils.config import get_settings
from api.rankings import router as rankings_router

load_dotenv()

# Configure logging to stdout
logging.basicConfig(
    level=getattr(logging, get_settings().LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    stream=sys.stdout,
    force=True,
)
logger = logging.getLogger(__name__)

# Quiet down chatty loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def create_app(initialize_database: bool = True) -> FastAPI:
    """Build the FastAPI app with the rankings router mounted."""
    app = FastAPI(
        title="Rankwatch",
        description="Rank history aggregation and month-over-month trend engine",
        version=__version__,
    )
    app.include_router(rankings_router)

    if initialize_database:
        @app.on_event("startup")
        async def startup_event():
            """Initialize database on startup."""
            logger.info("Initializing database...")
            try:
                init_db()
            except SQLAlchemyError as e:
                # The health endpoint reports the outage; reads fail with 503
                logger.error(f"Database initialization failed: {e}")
                return
            if check_db_connection():
                logger.info("Database connection verified")
            else:
                logger.warning("Database connection check failed - continuing anyway")

    @app.get("/")
    async def root():
        return {"service": "rankwatch", "version": __version__}

    return app


app = create_app()


# ============================================================================
# RUN SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
