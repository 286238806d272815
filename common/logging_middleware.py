"""File-backed audit loggers and the HTTP access middleware."""
from __future__ import annotations

import logging
from pathlib import Path
from time import perf_counter

from fastapi import FastAPI, Request

LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
_FORMATTER = logging.Formatter(
    "%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)


def get_service_logger(service_name: str) -> logging.Logger:
    """``audit.<service>`` logger appending to ``logs/<service>.log``.

    The file handler is attached once per process.
    """
    logger = logging.getLogger(f"audit.{service_name}")
    if not logger.handlers:
        LOG_DIR.mkdir(exist_ok=True)
        handler = logging.FileHandler(LOG_DIR / f"{service_name}.log", encoding="utf-8")
        handler.setFormatter(_FORMATTER)
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
    return logger


def add_audit_middleware(app: FastAPI, service_name: str) -> None:
    logger = get_service_logger(service_name)

    @app.middleware("http")
    async def audit_request(request: Request, call_next):  # type: ignore[override]
        started = perf_counter()
        response = await call_next(request)
        elapsed_ms = (perf_counter() - started) * 1000
        client = request.client.host if request.client else "unknown"
        logger.info(
            "%s %s | status=%s | client=%s | duration=%.2fms",
            request.method,
            request.url.path,
            response.status_code,
            client,
            elapsed_ms,
        )
        return response
