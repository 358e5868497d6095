from __future__ import annotations

import asyncio
import uuid
from time import perf_counter

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.trustedhost import TrustedHostMiddleware

from boardflow.automation.scanner import scan_due_dates
from boardflow.config import settings
from boardflow.db import SessionLocal
from boardflow.errors import BoardError, ConflictError, NotFoundError, ValidationError
from boardflow.log import configure_logging
from boardflow.routers.board import router as board_router
from boardflow.routers.columns import router as columns_router
from boardflow.routers.groups import router as groups_router
from boardflow.routers.notifications import router as notifications_router
from boardflow.routers.projects import router as projects_router
from boardflow.routers.rules import router as rules_router
from boardflow.routers.tasks import router as tasks_router

configure_logging()
logger = structlog.get_logger()

app = FastAPI(title="Boardflow API", version="0.1.0")


def _error_response(status_code: int, exc: BoardError) -> JSONResponse:
  content = {"detail": exc.message, "code": exc.code}
  if exc.details:
    content["details"] = exc.details
  return JSONResponse(status_code=status_code, content=content)


@app.exception_handler(ValidationError)
async def _validation_error_handler(_, exc: ValidationError) -> JSONResponse:
  return _error_response(400, exc)


@app.exception_handler(NotFoundError)
async def _not_found_handler(_, exc: NotFoundError) -> JSONResponse:
  return _error_response(404, exc)


@app.exception_handler(ConflictError)
async def _conflict_handler(_, exc: ConflictError) -> JSONResponse:
  return _error_response(409, exc)


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_origin_regex=settings.cors_origin_regex,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(projects_router)
app.include_router(columns_router)
app.include_router(groups_router)
app.include_router(tasks_router)
app.include_router(rules_router)
app.include_router(board_router)
app.include_router(notifications_router)


@app.middleware("http")
async def _request_logging_middleware(request: Request, call_next):
  start = perf_counter()
  structlog.contextvars.clear_contextvars()
  structlog.contextvars.bind_contextvars(
    request_id=request.headers.get("x-request-id") or str(uuid.uuid4()),
    method=request.method,
    path=request.url.path,
  )
  try:
    response = await call_next(request)
  except Exception:
    logger.exception("request_failed", duration_ms=round((perf_counter() - start) * 1000.0, 2))
    raise
  logger.info("request_completed", status_code=response.status_code, duration_ms=round((perf_counter() - start) * 1000.0, 2))
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  return response


@app.get("/health")
async def health() -> dict:
  return {"ok": True}


@app.get("/version")
async def version() -> dict:
  return {"version": settings.app_version, "buildSha": settings.build_sha}


_due_date_loop_task: asyncio.Task | None = None


def _is_test_db() -> bool:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  return "test" in db_name


async def _due_date_scan_loop() -> None:
  while True:
    await asyncio.sleep(max(10, int(settings.due_date_scan_interval_seconds)))
    async with SessionLocal() as db:
      try:
        await scan_due_dates(db)
        await db.commit()
      except Exception:
        # A failed pass is retried on the next tick.
        await db.rollback()
        logger.exception("due_date_scan_failed")


@app.on_event("startup")
async def _startup() -> None:
  global _due_date_loop_task
  logger.info("startup", version=settings.app_version)
  if _is_test_db():
    return
  if settings.due_date_scan_enabled and _due_date_loop_task is None:
    _due_date_loop_task = asyncio.create_task(_due_date_scan_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
  global _due_date_loop_task
  if _due_date_loop_task is not None:
    _due_date_loop_task.cancel()
    _due_date_loop_task = None
