"""structlog setup shared by the API process and the Temporal worker."""

from __future__ import annotations

import logging
import sys
from typing import IO

import structlog

from scout.config import settings

# Chatty third-party loggers. Each search round fires dozens of HTTP requests.
_QUIET_LOGGERS = ("httpx", "httpcore", "anthropic", "temporalio.activity")


class _TeeWriter:
    """Mirror log lines to stdout and an append-only JSON lines file.

    If the file cannot be opened or a write fails, file output is dropped and
    stdout keeps working.
    """

    def __init__(self, file_path: str) -> None:
        self._file: IO[str] | None = None
        try:
            self._file = open(file_path, "a")  # noqa: SIM115
        except OSError as exc:
            print(
                f"WARNING: cannot open log file {file_path!r}: {exc}; logging to stdout only.",
                file=sys.stderr,
            )

    def _disable(self, reason: str) -> None:
        self._file = None
        print(f"WARNING: log file {reason} failed; file logging disabled.", file=sys.stderr)

    def write(self, data: str) -> None:
        sys.stdout.write(data)
        if self._file is None:
            return
        try:
            self._file.write(data)
            self._file.flush()
        except (OSError, ValueError):
            self._disable("write")

    def flush(self) -> None:
        sys.stdout.flush()
        if self._file is None:
            return
        try:
            self._file.flush()
        except (OSError, ValueError):
            self._disable("flush")


def _resolve_level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(service: str = "api") -> None:
    """Configure structlog: console output in development, JSON lines elsewhere.

    ``service`` is added to every entry so API and worker logs can be told
    apart when they share a sink. Setting LOG_FILE tees output to that file.
    """
    def _add_service(_logger: object, _method: str, event_dict: dict) -> dict:
        event_dict.setdefault("service", service)
        return event_dict

    processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    if settings.environment == "development":
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors += [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    level = _resolve_level(settings.log_level)

    logger_factory: structlog.types.WrappedLogger
    if settings.log_file:
        # PrintLoggerFactory only calls write() and flush()
        logger_factory = structlog.PrintLoggerFactory(file=_TeeWriter(settings.log_file))  # type: ignore[arg-type]
    else:
        logger_factory = structlog.PrintLoggerFactory()

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=logger_factory,
        cache_logger_on_first_use=True,
    )

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
