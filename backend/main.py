import logging
import math
import os
from types import SimpleNamespace
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
import psycopg2
from dotenv import load_dotenv

from backend import app_context
from backend.app.routes.subscriptions import router as subscriptions_router
from backend.lifecycle_scheduler import (
    get_lifecycle_metrics,
    shutdown_lifecycle_scheduler,
    start_lifecycle_scheduler,
)

load_dotenv()

logger = logging.getLogger("hris_billing")


def _parse_connect_timeout(raw_value: str) -> int:
    try:
        timeout = float(raw_value)
    except ValueError as exc:
        raise ValueError("DB_CONNECT_TIMEOUT must be a number") from exc
    if timeout < 0:
        raise ValueError("DB_CONNECT_TIMEOUT must be non-negative")
    return int(math.ceil(timeout))


DB_CFG = dict(
    host=os.getenv("DB_HOST", "127.0.0.1"),
    port=int(os.getenv("DB_PORT", "5432")),
    dbname=os.getenv("DB_NAME", "hris_db"),
    user=os.getenv("DB_USER", "hris_user"),
    password=os.getenv("DB_PASSWORD", "hris_pass"),
    connect_timeout=_parse_connect_timeout(os.getenv("DB_CONNECT_TIMEOUT", "5")),
)

_COMPANY_HEADER = os.getenv("COMPANY_ID_HEADER", "X-Company-Id")
_USER_HEADER = os.getenv("USER_ID_HEADER", "X-User-Id")


def get_conn():
    return psycopg2.connect(**DB_CFG)


def get_current_user(request: Request) -> SimpleNamespace:
    """Resolve the caller from identity headers set by the upstream auth gateway."""

    company_id = request.headers.get(_COMPANY_HEADER)
    if not company_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return SimpleNamespace(id=request.headers.get(_USER_HEADER), company_id=company_id)


app_context.configure(get_conn=get_conn, get_current_user=get_current_user)

app = FastAPI(title="HRIS Subscription API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(subscriptions_router)


@app.on_event("startup")
def _start_lifecycle_scheduler() -> None:
    if os.getenv("LIFECYCLE_SCHEDULER_ENABLED", "true").strip().lower() in {"0", "false", "no", "off"}:
        logger.info("Lifecycle scheduler disabled")
        return
    start_lifecycle_scheduler()


@app.on_event("shutdown")
def _shutdown_lifecycle_scheduler() -> None:
    shutdown_lifecycle_scheduler()


@app.get("/api/metrics/lifecycle-jobs")
def read_lifecycle_metrics() -> Dict[str, Any]:
    return get_lifecycle_metrics()
