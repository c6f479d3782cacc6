"""
structlog setup shared by the API, the importers and the offline client.

LOG_LEVEL picks the threshold (default INFO). LOG_FORMAT=console swaps the
JSON renderer for structlog's human-readable one during local development.
"""
import logging
import os
import sys
import time
from functools import wraps

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").lower()

QUIET_LOGGERS = ("sqlalchemy", "urllib3", "httpx", "openai", "multipart")


def configure_logging(level: str = LOG_LEVEL, fmt: str = LOG_FORMAT):
    renderer = structlog.dev.ConsoleRenderer() if fmt == "console" else structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level, logging.INFO))
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str = None):
    return structlog.get_logger(name)


def log_performance(func_name: str):
    """Log how long the wrapped call took, and whether it raised."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger("performance")
            started = time.perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    "function_failed",
                    function=func_name,
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    error=str(e),
                )
                raise
            logger.info(
                "function_completed",
                function=func_name,
                duration_ms=round((time.perf_counter() - started) * 1000, 2),
            )
            return result
        return wrapper
    return decorator


def log_api_request(request, response=None, error=None, duration: float = None):
    logger = get_logger("api")
    fields = {
        "method": request.method,
        "path": request.url.path,
        "client_ip": request.client.host if request.client else "unknown",
    }
    if duration is not None:
        fields["duration_ms"] = round(duration * 1000, 2)

    if error is not None:
        logger.error("api_request_failed", error=str(error), status_code=getattr(error, "status_code", 500), **fields)
    elif response is not None:
        logger.info("api_request_completed", status_code=response.status_code, **fields)
    else:
        logger.debug("api_request_started", user_agent=request.headers.get("user-agent", "unknown"), **fields)
