"""
Log forwarding to the agent server.

``RemoteLogHandler`` ships records to the session API's log endpoint so they
appear alongside the host's own logs. Delivery is fire-and-forget on the
running event loop; records emitted with no loop running are dropped.
"""

import asyncio
import logging

from .client import LogLevel
from .client import SessionClient

SERVICE_NAME = "async-agent"

_LEVELS: dict[int, LogLevel] = {
    logging.DEBUG: "debug",
    logging.INFO: "info",
    logging.WARNING: "warn",
    logging.ERROR: "error",
    logging.CRITICAL: "error",
}


def _remote_level(levelno: int) -> LogLevel:
    for threshold in (logging.CRITICAL, logging.ERROR, logging.WARNING, logging.INFO):
        if levelno >= threshold:
            return _LEVELS[threshold]
    return "debug"


class RemoteLogHandler(logging.Handler):
    """Forward log records to ``SessionClient.log``."""

    def __init__(self, client: SessionClient, level: int = logging.NOTSET, service: str = SERVICE_NAME):
        super().__init__(level)
        self.client = client
        self.service = service
        self._pending: set[asyncio.Task] = set()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return

        try:
            message = self.format(record)
        except Exception:
            self.handleError(record)
            return

        task = loop.create_task(self._send(record, message))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _send(self, record: logging.LogRecord, message: str) -> None:
        try:
            await self.client.log(_remote_level(record.levelno), message, service=self.service)
        except Exception:
            self.handleError(record)


def configure_logging(client: SessionClient, level: int = logging.INFO) -> RemoteLogHandler:
    """Install a RemoteLogHandler on the package logger and return it."""
    handler = RemoteLogHandler(client, level=level)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))

    package_logger = logging.getLogger("async_agent")
    package_logger.addHandler(handler)
    if package_logger.level == logging.NOTSET or package_logger.level > level:
        package_logger.setLevel(level)
    return handler
