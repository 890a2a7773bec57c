"""Logging setup and the remote telemetry sink.

The service logs through the standard ``"shortlink"`` logger. When
``LOG_SINK_URL`` is configured, records are also shipped to a remote log
collector as ``{stack, level, package, message}`` JSON with a bearer token.
Shipping happens on a ``QueueListener`` thread, so request handlers never wait
on the collector.

Flow Diagram — one log record
=============================
::
    logger.info(...)
         │
         ├──▶ StreamHandler (stderr)
         │
         └──▶ QueueHandler ──▶ QueueListener thread ──▶ RemoteLogHandler
                                                          │
                                  token missing / POST failed?
                                  ┌────────┴────────┐
                                  │ NO              │ YES
                                  ▼                 ▼
                               collector      NDJSON fallback file

How to Use
===========
::
    logger = configure_logging(get_settings())
    ...
    shutdown_logging()
"""

import datetime
import json
import logging
import queue
import threading
from logging.handlers import QueueHandler, QueueListener
from typing import Any

import httpx

from shortlink.config import Settings

__all__ = ["LOG_FORMAT", "RemoteLogHandler", "configure_logging", "shutdown_logging"]

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_SINK_PACKAGES = {
    "shortlink.store": "db",
    "shortlink.cache": "cache",
    "shortlink.http": "route",
    "shortlink.routes": "route",
    "shortlink.allocator": "service",
    "shortlink.resolver": "service",
    "shortlink.recorder": "service",
    "shortlink.service": "service",
    "shortlink.geo": "service",
}

_listener: QueueListener | None = None


def _sink_level(levelno: int) -> str:
    # The collector only knows debug, info, error and fatal.
    if levelno >= logging.CRITICAL:
        return "fatal"
    if levelno >= logging.ERROR:
        return "error"
    if levelno >= logging.INFO:
        return "info"
    return "debug"


class RemoteLogHandler(logging.Handler):
    """Posts records to a log collector, appending to a local NDJSON file on failure."""

    def __init__(
        self,
        endpoint: str,
        token: str,
        fallback_path: str,
        timeout: float = 4.0,
        stack: str = "backend",
        client: httpx.Client | None = None,
    ) -> None:
        super().__init__()
        self._endpoint = endpoint
        self._token = token
        self._fallback_path = fallback_path
        self._stack = stack
        self._client = client or httpx.Client(timeout=timeout)
        self._file_lock = threading.Lock()

    def payload_for(self, record: logging.LogRecord) -> dict[str, Any]:
        return {
            "stack": self._stack,
            "level": _sink_level(record.levelno),
            "package": getattr(record, "package", None) or _SINK_PACKAGES.get(record.name, "handler"),
            "message": record.getMessage(),
        }

    def emit(self, record: logging.LogRecord) -> None:
        payload = self.payload_for(record)
        if not self._token:
            self._write_fallback({**payload, "note": "no token configured"}, record)
            return
        try:
            response = self._client.post(
                self._endpoint,
                json=payload,
                headers={"Authorization": f"Bearer {self._token}"},
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            self._write_fallback({**payload, "remoteError": str(exc)}, record)

    def close(self) -> None:
        self._client.close()
        super().close()

    def _write_fallback(self, entry: dict[str, Any], record: logging.LogRecord) -> None:
        line = json.dumps({"ts": datetime.datetime.now(datetime.timezone.utc).isoformat(), **entry})
        try:
            with self._file_lock, open(self._fallback_path, "a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        except OSError:
            self.handleError(record)


def configure_logging(settings: Settings) -> logging.Logger:
    """Configure the ``"shortlink"`` logger once and return it."""
    global _listener
    logger = logging.getLogger("shortlink")
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(settings.LOG_LEVEL.upper())

    if settings.LOG_SINK_URL:
        log_queue: queue.Queue[logging.LogRecord] = queue.Queue(-1)
        remote = RemoteLogHandler(
            settings.LOG_SINK_URL,
            settings.LOG_SINK_TOKEN,
            settings.LOG_FALLBACK_FILE,
            timeout=settings.LOG_SINK_TIMEOUT_SECONDS,
        )
        _listener = QueueListener(log_queue, remote, respect_handler_level=True)
        _listener.start()
        logger.addHandler(QueueHandler(log_queue))

    return logger


def shutdown_logging() -> None:
    global _listener
    if _listener is None:
        return
    _listener.stop()
    for handler in _listener.handlers:
        handler.close()
    _listener = None
