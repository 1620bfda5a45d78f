"""Per-request access logging with request IDs."""

from __future__ import annotations

import json
import logging
import sys
import time
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from fastapi import FastAPI, Request

from picolm_gateway.config import LoggingConfig

logger = logging.getLogger(__name__)

access_logger = logging.getLogger("picolm_gateway.access")

REQUEST_ID_HEADER = "X-Request-ID"


@dataclass
class LogEntry:
    timestamp: str
    method: str
    path: str
    status: int
    duration_ms: int
    request_id: str
    client_ip: str

    def format(self, fmt: str) -> str:
        if fmt == "json":
            return json.dumps(asdict(self))
        return (
            f"{self.timestamp} {self.method} {self.path} {self.status} "
            f"{self.duration_ms}ms {self.request_id} {self.client_ip}"
        )


def should_log(level: str, status: int) -> bool:
    """Status-based filter: debug logs everything, the others a status band."""
    match level:
        case "info":
            return 200 <= status < 400
        case "warn":
            return status >= 400
        case "error":
            return status >= 500
        case _:
            return True


def generate_request_id() -> str:
    return uuid.uuid4().hex[:12]


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


def configure_access_log(config: LoggingConfig) -> None:
    """Point the access logger at stdout or the configured file."""
    access_logger.handlers.clear()
    access_logger.propagate = False
    access_logger.setLevel(logging.INFO)

    if config.output == "file":
        path = Path(config.file_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(message)s"))
    access_logger.addHandler(handler)


def install_request_logging(app: FastAPI, config: LoggingConfig) -> None:
    """Attach the access-log middleware to ``app``."""
    configure_access_log(config)
    logger.info(
        "Request logging enabled: format=%s level=%s output=%s",
        config.format, config.level, config.output,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        started = datetime.now(timezone.utc)
        start = time.monotonic()
        request_id = generate_request_id()
        request.state.request_id = request_id

        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            entry = LogEntry(
                timestamp=started.isoformat(),
                method=request.method,
                path=request.url.path,
                status=status,
                duration_ms=int((time.monotonic() - start) * 1000),
                request_id=request_id,
                client_ip=client_ip(request),
            )
            if should_log(config.level, entry.status):
                access_logger.info(entry.format(config.format))
