"""
Observability: request correlation and logging setup.

Every request gets a correlation ID (taken from X-Correlation-ID or
generated). It is echoed back in the response, stored in a context
variable and stamped onto every log record emitted while the request is
being served, so ledger log lines can be tied to the request that caused
them.
"""

import time
import uuid
import logging
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")

# Configure structured logger
logger = logging.getLogger("troop_treasury.http")

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Adds `correlation_id` to every record passing through a handler."""
    
    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = correlation_id_var.get()
        return True


def configure_logging(level: int = logging.INFO) -> None:
    """Install a stream handler for the troop_treasury logger tree (idempotent)."""
    root = logging.getLogger("troop_treasury")
    if any(isinstance(f, CorrelationIdFilter) for h in root.handlers for f in h.filters):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    root.addHandler(handler)
    root.setLevel(level)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get("X-Correlation-ID", str(uuid.uuid4()))
        token = correlation_id_var.set(correlation_id)
        start_time = time.time()
        
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)
        
        process_time = (time.time() - start_time) * 1000  # ms
        
        response.headers["X-Correlation-ID"] = correlation_id
        response.headers["X-Process-Time"] = str(process_time)
        
        log_data = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(process_time, 2),
        }
        
        # Level by status class
        if response.status_code >= 500:
            logger.error("Request Failed %s", log_data, extra={"correlation_id": correlation_id})
        elif response.status_code >= 400:
            logger.warning("Request Error %s", log_data, extra={"correlation_id": correlation_id})
        else:
            logger.info("Request API %s", log_data, extra={"correlation_id": correlation_id})
            
        return response
