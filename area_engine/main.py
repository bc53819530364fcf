from contextlib import asynccontextmanager

from fastapi import FastAPI, Depends
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from sqlalchemy import text

from area_engine.db.base import get_db
from area_engine.core.config import settings
from area_engine.core.logging import configure_logging, get_logger
from area_engine.routers import areas as areas_router
from area_engine.routers import events as events_router
from area_engine.services.engine import Engine
from area_engine.core.errors import (
    AreaException,
    area_exception_handler,
    validation_exception_handler,
    unhandled_exception_handler,
)

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    engine = Engine(settings)
    app.state.engine = engine
    await engine.startup()
    log.info("engine_started", env=settings.APP_ENV)
    try:
        yield
    finally:
        await engine.shutdown()
        log.info("engine_stopped")


app = FastAPI(
    title="AREA Engine API",
    description=(
        "**Action / REAction engine**\n\n"
        "Binds a trigger on one provider (Spotify, Gmail, Discord) to an effect on "
        "another, watches the trigger source and runs the effect once per new event.\n\n"
        "All error responses follow the `{code, message, details}` envelope."
    ),
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# --- CORS ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- Exception handlers (most specific first) ---
app.add_exception_handler(AreaException, area_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

# --- Routers ---
app.include_router(areas_router.router)
app.include_router(events_router.router)


@app.get("/health", tags=["health"], summary="Health check")
def health(db: Session = Depends(get_db)):
    """
    Returns `{"status": "ok", "db": "ok"}` when both the API and the database
    are reachable. Returns HTTP 503 if the DB is down.
    """
    try:
        db.execute(text("SELECT 1"))
        db_status = "ok"
    except Exception:
        db_status = "unreachable"

    if db_status != "ok":
        return JSONResponse(
            status_code=503,
            content={"status": "error", "db": db_status},
        )
    return {"status": "ok", "db": "ok", "env": settings.APP_ENV}
