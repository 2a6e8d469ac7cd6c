"""FastAPI application entry point."""
import logging

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tramites.config import settings
from tramites.database import Base, engine, get_db
from tramites.errors import TramiteError

# Import routers
from tramites.routers import agencies, alert_rules, document_types
from tramites.routers import tramites as tramite_routes

# Import all models so Base.metadata knows about them
from tramites.models import (  # noqa: F401
    Agency,
    AlertRule,
    ConsecutivoReservation,
    DocumentType,
    Tramite,
    TramiteDocument,
    TramiteFile,
    TramiteHistory,
)

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Trámites",
    description="Vehicle-registration trámites: per-agency yearly consecutivos and case workflow",
    version="0.1.0",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(agencies.router, prefix="/api/agencies", tags=["Agencies"])
app.include_router(alert_rules.router, prefix="/api/alert-rules", tags=["AlertRules"])
app.include_router(document_types.router, prefix="/api/document-types", tags=["DocumentTypes"])
app.include_router(tramite_routes.router, prefix="/api/tramites", tags=["Tramites"])


@app.exception_handler(TramiteError)
async def tramite_error_handler(request: Request, exc: TramiteError):
    return JSONResponse(status_code=exc.status_code, content=exc.detail)


@app.exception_handler(SQLAlchemyError)
async def sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError):
    logger.exception("Database failure on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=503,
        content={"errorCode": "DATABASE_ERROR", "message": "Database unavailable.", "details": {}},
    )


@app.on_event("startup")
def on_startup():
    """Create database tables on startup (for SQLite dev mode)."""
    if settings.DATABASE_URL.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)


@app.get("/api/health")
def health_check(db: Session = Depends(get_db)):
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError:
        database = "error"
    return {"status": "ok", "database": database}
