"""
FastAPI read API for GeoResolver.

Answers "which country, region, city and timezone contain this point" from
the reference tables maintained by the update pipeline.
"""

import logging

from dotenv import load_dotenv

load_dotenv()

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from api.routes import location
from georesolver import __version__
from georesolver.config import get_settings
from georesolver.database import get_db

logger = logging.getLogger(__name__)


app = FastAPI(
    title="GeoResolver API",
    description="Point lookup over country, region, city and timezone boundaries",
    version=__version__,
)

# CORS (configured via API_CORS_ORIGINS env var)
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.api.cors_origins_list,
    allow_credentials=True,
    allow_methods=["GET", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)

app.include_router(location.router, prefix="/api/v1/location", tags=["location"])


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "version": __version__, "service": "GeoResolver API"}


@app.get("/health")
def health(db: Session = Depends(get_db)):
    """Health check including database connectivity; 503 when the database is unreachable."""
    try:
        db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}")
        return JSONResponse(
            status_code=503,
            content={"status": "error", "database": "unreachable", "service": "GeoResolver API"},
        )
    return {"status": "ok", "database": "ok", "version": __version__, "service": "GeoResolver API"}
