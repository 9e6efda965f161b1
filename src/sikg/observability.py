"""Observability: structured logging, engine counters, request metrics."""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from typing import Any

from fastapi import FastAPI, Request, Response

_MS_PER_SECOND = 1000
_EXTRA_FIELDS = (
    "change_count", "test_count", "session_id", "method", "path", "status_code", "duration_ms",
)


# ---------------------------------------------------------------------------
# Structured JSON logging
# ---------------------------------------------------------------------------

class JsonFormatter(logging.Formatter):
    """Emit log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_dict: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_dict["exception"] = self.formatException(record.exc_info)
        for key in _EXTRA_FIELDS:
            val = getattr(record, key, None)
            if val is not None:
                log_dict[key] = val
        return json.dumps(log_dict, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logger with JSON output."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


# ---------------------------------------------------------------------------
# Prometheus-compatible counters (no external dependency)
# ---------------------------------------------------------------------------

_lock = threading.Lock()
_counters: dict[str, int] = defaultdict(int)
_request_count: dict[tuple[str, str, str], int] = defaultdict(int)
_request_latency_sum: dict[tuple[str, str], float] = defaultdict(float)


def increment(name: str, amount: int = 1) -> None:
    with _lock:
        _counters[name] += amount


def counter(name: str) -> int:
    return _counters.get(name, 0)


def record_request(method: str, path: str, status: int, duration: float) -> None:
    with _lock:
        _request_count[(method, path, str(status))] += 1
        _request_latency_sum[(method, path)] += duration


def reset_metrics() -> None:
    with _lock:
        _counters.clear()
        _request_count.clear()
        _request_latency_sum.clear()


def generate_metrics() -> str:
    """Render metrics in Prometheus text exposition format."""
    lines: list[str] = []
    with _lock:
        for name, value in sorted(_counters.items()):
            lines.append(f"# TYPE sikg_{name}_total counter")
            lines.append(f"sikg_{name}_total {value}")

        lines.append("# HELP sikg_http_requests_total Total HTTP requests by method, path, status.")
        lines.append("# TYPE sikg_http_requests_total counter")
        for (method, path, status), count in sorted(_request_count.items()):
            lines.append(
                f'sikg_http_requests_total{{method="{method}",path="{path}",status="{status}"}} {count}'
            )
        lines.append("# TYPE sikg_http_request_duration_seconds_sum counter")
        for (method, path), total in sorted(_request_latency_sum.items()):
            lines.append(
                f'sikg_http_request_duration_seconds_sum{{method="{method}",path="{path}"}} {total:.6f}'
            )
    return "\n".join(lines) + "\n"


# ---------------------------------------------------------------------------
# FastAPI middleware
# ---------------------------------------------------------------------------

def add_observability_middleware(app: FastAPI) -> None:
    """Add request logging and metrics collection middleware."""

    @app.middleware("http")
    async def observe_request(request: Request, call_next) -> Response:
        start = time.time()
        response: Response = await call_next(request)
        duration = time.time() - start
        record_request(request.method, request.url.path, response.status_code, duration)
        logging.getLogger("sikg.access").info(
            "%s %s %d %.0fms",
            request.method, request.url.path, response.status_code, duration * _MS_PER_SECOND,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration * _MS_PER_SECOND, 1),
            },
        )
        return response
