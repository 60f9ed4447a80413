"""Structured logging for review runs.

Events are rendered by structlog through the stdlib root logger onto stderr,
so reports printed on stdout stay machine-readable. Every event passes the
secret sanitizer before rendering. The run binds ``skill`` and ``file`` as
contextvars, which keeps interleaved events of concurrent files apart.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from enum import StrEnum
from pathlib import Path
from typing import Any, cast

import structlog

from ai_review_agent.utils.security import SecretRedactor

SERVICE_NAME = "ai-review-agent"


class LogFormat(StrEnum):
    """Renderer choice: ``json`` for CI log collectors, ``console`` for people."""

    JSON = "json"
    CONSOLE = "console"


class LogLevel(StrEnum):
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


_redactor: SecretRedactor | None = None


def _get_redactor() -> SecretRedactor:
    global _redactor
    if _redactor is None:
        _redactor = SecretRedactor()
    return _redactor


def sanitize_log_value(value: Any) -> Any:
    """Redact secrets from strings, recursing into dicts, lists and tuples."""
    if isinstance(value, str):
        return _get_redactor().redact(value)
    if isinstance(value, dict):
        return {key: sanitize_log_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(sanitize_log_value(item) for item in value)
    return value


def secret_sanitizer(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Processor redacting secrets from every event value."""
    return cast(MutableMapping[str, Any], sanitize_log_value(event_dict))


def add_context_processor(
    logger: logging.Logger,
    method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Processor stamping the service name and version."""
    from ai_review_agent._version import __version__

    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", __version__)
    return event_dict


def _build_processors(log_format: LogFormat) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        add_context_processor,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        secret_sanitizer,
    ]
    if log_format is LogFormat.JSON:
        # Tracebacks become structured data the collector can index
        processors += [
            structlog.processors.dict_tracebacks,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )
    return processors


def _build_handlers(level: int, file_path: Path | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if file_path is not None:
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            handlers.append(logging.FileHandler(file_path, encoding="utf-8"))
        except OSError as e:
            # Console output alone is still useful
            print(f"warning: cannot open log file {file_path}: {e}", file=sys.stderr)
    for handler in handlers:
        handler.setLevel(level)
    return handlers


def configure_logging(
    level: LogLevel | str = LogLevel.WARNING,
    log_format: LogFormat | str = LogFormat.CONSOLE,
    file_path: Path | str | None = None,
    file_enabled: bool = False,
) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once; the CLI configures early from flags and
    again after the configuration file is loaded.

    Args:
        level: Minimum level, case-insensitive
        log_format: ``json`` or ``console``, case-insensitive
        file_path: Log file, used only when ``file_enabled`` is set
        file_enabled: Also write events to ``file_path``

    Example:
        configure_logging(level="DEBUG")  # local run
        configure_logging(level="INFO", log_format="json")  # CI
    """
    level = LogLevel(str(level).upper())
    log_format = LogFormat(str(log_format).lower())
    numeric_level = logging.getLevelName(level.value)

    structlog.configure(
        processors=_build_processors(log_format),
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    target = Path(file_path) if file_enabled and file_path else None
    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=_build_handlers(numeric_level, target),
        force=True,
    )


def bind_context(**kwargs: Any) -> None:
    """Bind values to every following event in the current context."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Bind values for the duration of a block, restoring previous ones after.

    Example:
        with log_context(file="src/db.ts"):
            log.info("hunk_analysis_failed")  # carries file=src/db.ts
    """
    with structlog.contextvars.bound_contextvars(**kwargs):
        yield


class LogEventNames:
    """Standard log event names for consistency.

    Use these constants to keep event names stable for log queries.
    """

    # Run lifecycle
    REVIEW_STARTING = "review_starting"
    REVIEW_COMPLETE = "review_complete"
    REVIEW_INTERRUPTED = "review_interrupted"
    REVIEW_ERROR = "review_error"

    # Skill execution
    SKILL_LOADED = "skill_loaded"
    SKILL_RUN_STARTED = "skill_run_started"
    SKILL_RUN_EMPTY = "skill_run_empty"
    SKILL_RUN_COMPLETE = "skill_run_complete"

    # Hunk analysis
    HUNK_ANALYSIS_FAILED = "hunk_analysis_failed"
    HUNK_ANALYSIS_CANCELLED = "hunk_analysis_cancelled"
    HUNK_OUTPUT_UNPARSEABLE = "hunk_output_unparseable"
    FINDINGS_DISCARDED = "findings_discarded"
    SECONDARY_EXTRACTION_STARTED = "secondary_extraction_started"
    SECONDARY_EXTRACTION_FAILED = "secondary_extraction_failed"

    # Analysis provider
    ANALYSIS_REQUEST_START = "analysis_request_start"
    ANALYSIS_REQUEST_COMPLETE = "analysis_request_complete"
    ANALYSIS_REQUEST_ERROR = "analysis_request_error"
    ANALYSIS_TOOL_CALL = "analysis_tool_call"
    RATE_LIMIT_HIT = "rate_limit_hit"

    # Fixes
    FIX_APPLIED = "fix_applied"
    FIX_FAILED = "fix_failed"
    FIX_SKIPPED = "fix_skipped"

    # Existing comments
    COMMENTS_FETCHED = "comments_fetched"
    DUPLICATE_FINDINGS_SKIPPED = "duplicate_findings_skipped"
    STALE_COMMENTS_FOUND = "stale_comments_found"
    STALE_RESOLUTIONS_LIMITED = "stale_resolutions_limited"

    # Security events
    PATH_REJECTED = "path_rejected"
    COMMAND_REJECTED = "command_rejected"
