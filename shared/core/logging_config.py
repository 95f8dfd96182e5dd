"""
Structured logging configuration
JSON lines on stdout, one object per record, with request and shipment context
attached from context variables so every log line of a workflow operation can
be correlated.
"""

import json
import logging
import logging.handlers
import os
import re
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

# Context variables for request tracking
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
actor_var: ContextVar[Optional[str]] = ContextVar('actor', default=None)
shipment_id_var: ContextVar[Optional[str]] = ContextVar('shipment_id', default=None)

_CONTEXT_VARS = {
    "request_id": request_id_var,
    "correlation_id": correlation_id_var,
    "actor": actor_var,
    "shipment_id": shipment_id_var,
}

class StructuredFormatter(logging.Formatter):
    """JSON formatter; service identity is fixed when logging is set up."""

    def __init__(self, service: str, environment: str, version: str):
        super().__init__()
        self.service = service
        self.environment = environment
        self.version = version

    def format(self, record: logging.LogRecord) -> str:
        log_obj: Dict[str, Any] = {
            "@timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
            "environment": self.environment,
            "version": self.version,
        }

        context = current_context()
        if context:
            log_obj["context"] = context

        log_obj["location"] = {
            "file": record.pathname,
            "line": record.lineno,
            "function": record.funcName,
        }

        if record.exc_info:
            log_obj["error"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "stacktrace": traceback.format_exception(*record.exc_info),
            }

        if hasattr(record, 'extra_fields'):
            log_obj["custom"] = record.extra_fields

        if hasattr(record, 'duration_ms'):
            log_obj["performance"] = {"duration_ms": record.duration_ms}

        return json.dumps(log_obj, default=str)

class RedactionFilter(logging.Filter):
    """Mask values of sensitive keys such as ``token=...`` in rendered messages"""

    SENSITIVE_KEYS = ('password', 'token', 'api_key', 'secret', 'authorization', 'cookie')
    PATTERN = re.compile(
        r"(?i)\b(" + "|".join(SENSITIVE_KEYS) + r")(\s*[=:]\s*)(\"[^\"]*\"|'[^']*'|[^\s,;]+)"
    )

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = self.PATTERN.sub(r"\1\2***REDACTED***", message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True

def current_context() -> Dict[str, str]:
    return {name: var.get() for name, var in _CONTEXT_VARS.items() if var.get()}

def setup_logging(
    service_name: str,
    level: str = "INFO",
    version: Optional[str] = None,
    log_file: Optional[str] = None,
) -> None:
    """
    Setup structured logging for the service

    Args:
        service_name: Name reported in every log line
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        version: Service version reported in every log line
        log_file: Optional path of a rotating log file
    """
    formatter = StructuredFormatter(
        service=service_name,
        environment=os.getenv('ENVIRONMENT', 'development'),
        version=version or os.getenv('SERVICE_VERSION', '1.0.0'),
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10485760,  # 10MB
            backupCount=5,
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RedactionFilter())
        root_logger.addHandler(handler)

    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

    root_logger.info(
        "Logging initialized",
        extra={'extra_fields': {'service': service_name, 'level': level, 'file': bool(log_file)}},
    )

class LoggerAdapter(logging.LoggerAdapter):
    """Merges the adapter's bound fields into ``extra_fields`` of each record"""

    def process(self, msg, kwargs):
        extra = dict(kwargs.get('extra') or {})
        if self.extra:
            fields = dict(self.extra)
            fields.update(extra.get('extra_fields') or {})
            extra['extra_fields'] = fields
        kwargs['extra'] = extra
        return msg, kwargs

    def bind(self, **fields) -> "LoggerAdapter":
        merged = dict(self.extra or {})
        merged.update(fields)
        return LoggerAdapter(self.logger, merged)

def get_logger(name: str, **fields) -> LoggerAdapter:
    """
    Get a logger for ``name`` (usually __name__), optionally with bound fields
    """
    return LoggerAdapter(logging.getLogger(name), fields)

def set_request_context(
    request_id: Optional[str] = None,
    correlation_id: Optional[str] = None,
    actor: Optional[str] = None,
) -> None:
    if request_id:
        request_id_var.set(request_id)
    if correlation_id:
        correlation_id_var.set(correlation_id)
    if actor:
        actor_var.set(actor)

@contextmanager
def shipment_context(shipment_id: str) -> Iterator[None]:
    """Tag every log line emitted inside the block with ``shipment_id``"""
    token = shipment_id_var.set(shipment_id)
    try:
        yield
    finally:
        shipment_id_var.reset(token)

def generate_request_id() -> str:
    return str(uuid.uuid4())

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs every request with its duration and echoes X-Request-ID
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get('X-Request-ID') or generate_request_id()
        tokens = [
            request_id_var.set(request_id),
            correlation_id_var.set(request.headers.get('X-Correlation-ID')),
        ]
        logger = get_logger(__name__)
        fields = {'method': request.method, 'path': request.url.path}
        start_time = time.perf_counter()

        try:
            response = await call_next(request)
            logger.info(
                f"Request completed: {request.method} {request.url.path}",
                extra={'extra_fields': {
                    **fields,
                    'status_code': response.status_code,
                    'duration_ms': (time.perf_counter() - start_time) * 1000,
                }},
            )
            response.headers['X-Request-ID'] = request_id
            return response
        except Exception:
            logger.error(
                f"Request failed: {request.method} {request.url.path}",
                exc_info=True,
                extra={'extra_fields': {**fields, 'duration_ms': (time.perf_counter() - start_time) * 1000}},
            )
            raise
        finally:
            for var, token in zip((request_id_var, correlation_id_var), tokens):
                var.reset(token)
