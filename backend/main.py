from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from attendance.errors import NotFoundError, StaleRecordError, StoreError, TemporalOrderError
from backend.config import (
    CORS_ALLOW_CREDENTIALS,
    CORS_ALLOW_HEADERS,
    CORS_ALLOW_METHODS,
    CORS_ALLOW_ORIGINS,
    LOG_LEVEL,
    SCHEDULE,
)
from backend.logging_config import setup_logging
from backend.routers import admin, attendance, core, subjects
from database.db import create_tables

logger = setup_logging(LOG_LEVEL)


# -----------------------------
# Startup
# -----------------------------
@asynccontextmanager
async def lifespan(_app: FastAPI):
    create_tables()
    logger.info("Rollcall API ready with %s", SCHEDULE)
    yield


app = FastAPI(title="Rollcall API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOW_ORIGINS,
    allow_credentials=CORS_ALLOW_CREDENTIALS,
    allow_methods=CORS_ALLOW_METHODS,
    allow_headers=CORS_ALLOW_HEADERS,
)


# -----------------------------
# Error mapping
# -----------------------------
@app.exception_handler(NotFoundError)
def _not_found(_request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(TemporalOrderError)
def _temporal_order(_request: Request, exc: TemporalOrderError):
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(StaleRecordError)
def _stale_record(_request: Request, exc: StaleRecordError):
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(StoreError)
def _store_error(_request: Request, exc: StoreError):
    return JSONResponse(status_code=503, content={"detail": exc.message})


app.include_router(core.router)
app.include_router(subjects.router)
app.include_router(attendance.router)
app.include_router(admin.router)
