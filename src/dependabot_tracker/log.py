"""File-backed log sink passed explicitly to the poller and alert client."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from dependabot_tracker.models import ErrorKind, RepositoryTarget

LOGGER_NAME = "dependabot_tracker"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class LogSink:
    """Receives structured failure and event records.

    ``init()`` attaches a file handler and ``shutdown()`` removes it. An
    uninitialised sink still emits records to the ``dependabot_tracker``
    logger, so tests can capture them without touching the filesystem.
    """

    def __init__(self, path: Path | str | None = None, level: str = "INFO") -> None:
        self.path = Path(path) if path is not None else None
        self.level = level
        self.logger = logging.getLogger(LOGGER_NAME)
        self._handler: logging.Handler | None = None

    def init(self) -> None:
        """Attach the file handler."""
        if self._handler is not None or self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(self.path)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(handler)
        self.logger.setLevel(getattr(logging, self.level.upper(), logging.INFO))
        self._handler = handler

    def shutdown(self) -> None:
        """Detach and close the file handler."""
        if self._handler is None:
            return
        self.logger.removeHandler(self._handler)
        self._handler.close()
        self._handler = None

    @property
    def active(self) -> bool:
        return self._handler is not None

    def failure(self, target: RepositoryTarget, kind: ErrorKind, detail: str = "") -> None:
        """Record a repository that could not be refreshed."""
        message = f"{target.full_name}: {kind.value}"
        if detail:
            message = f"{message} ({detail})"
        self.logger.warning(
            message, extra={"repository": target.full_name, "error_kind": kind.value}
        )

    def event(self, message: str, **fields: Any) -> None:
        self.logger.info(message, extra=fields)

    def debug(self, message: str, **fields: Any) -> None:
        self.logger.debug(message, extra=fields)

    def exception(self, message: str, **fields: Any) -> None:
        self.logger.exception(message, extra=fields)

    def __enter__(self) -> LogSink:
        self.init()
        return self

    def __exit__(self, *args: Any) -> None:
        self.shutdown()
