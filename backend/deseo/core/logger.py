"""Logging setup shared by the API process and its background helpers."""
import logging
from contextvars import ContextVar
from pathlib import Path

from deseo.core.config import settings


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s [%(request_id)s] %(message)s"

# Set by the tracing middleware for the lifetime of one request.
request_id_var: ContextVar[str] = ContextVar("request_id", default="-")


class RequestIdFilter(logging.Filter):
    """Stamp each record with the id of the request being served."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        return True


def _has_file_handler(root: logging.Logger, log_path: Path) -> bool:
    target = str(log_path.resolve())
    return any(
        isinstance(handler, logging.FileHandler) and handler.baseFilename == target
        for handler in root.handlers
    )


def configure_logging() -> logging.Logger:
    level = getattr(logging, (settings.log_level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()

    new_handlers: list[logging.Handler] = []
    if not root.handlers:
        new_handlers.append(logging.StreamHandler())
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        if not _has_file_handler(root, log_path):
            new_handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    formatter = logging.Formatter(LOG_FORMAT)
    for handler in new_handlers:
        handler.setFormatter(formatter)
        handler.addFilter(RequestIdFilter())
        root.addHandler(handler)
    root.setLevel(level)

    # aiosqlite logs every statement at DEBUG
    logging.getLogger("aiosqlite").setLevel(max(level, logging.INFO))

    app_logger = logging.getLogger("deseo")
    app_logger.setLevel(level)
    return app_logger
