from __future__ import annotations

import logging
import sys
import time
import uuid
from typing import Any, Dict, List

import structlog
from fastapi import Request

REQUEST_ID_HEADER = "x-request-id"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def _level_name(_: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("level", method_name)
    return event_dict


def _processors(env: str) -> List[Any]:
    """Processor chain ending in the renderer for ``env``."""
    chain: List[Any] = [
        structlog.stdlib.filter_by_level,
        structlog.contextvars.merge_contextvars,
        _level_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    if env == "production":
        chain.append(structlog.processors.JSONRenderer())
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=env == "development"))
    return chain


def configure_logging(env: str = "development", level: str = "info") -> None:
    """Route structlog through stdlib logging on stdout.

    Production emits one JSON object per line; other environments get the
    console renderer.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=LOG_LEVELS.get(level, logging.INFO),
    )
    structlog.configure(
        processors=_processors(env),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


async def request_id_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Tag every log line of a request with its id and log the request's outcome."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
    started = time.perf_counter()
    status_code = 500

    with structlog.contextvars.bound_contextvars(
        request_id=request_id, path=request.url.path
    ):
        try:
            response = await call_next(request)
            status_code = response.status_code
        finally:
            structlog.get_logger("http").info(
                "http.request",
                method=request.method,
                status=status_code,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )

    response.headers[REQUEST_ID_HEADER] = request_id
    return response
