"""Logging configuration utilities."""

import logging
import sys
from typing import Optional

import structlog
from structlog.contextvars import bind_contextvars


SENSITIVE_KEYS = {
    "password",
    "secret",
    "token",
    "api_key",
    "apikey",
    "authorization",
    "auth",
    "access_key",
    "accesskey",
    "secret_key",
    "secretkey",
    "jwt_secret",
    "cf_dns_api_token",
}

RESET = "\033[0m"
LEVEL_TAGS = {
    "debug": ("DEBUG", "\033[0;36m"),
    "info": ("INFO", "\033[0;32m"),
    "warning": ("WARN", "\033[1;33m"),
    "error": ("ERROR", "\033[0;31m"),
    "critical": ("ERROR", "\033[0;31m"),
    "exception": ("ERROR", "\033[0;31m"),
}
STEP_TAG = ("STEP", "\033[0;34m")

# Context keys that every line carries; the console renderer leaves them out.
_CONSOLE_HIDDEN_KEYS = {"timestamp", "run_id", "force_clean"}


def _redact_sensitive(_, __, event_dict: dict) -> dict:
    """Redact sensitive fields in the structured log."""
    for key in list(event_dict.keys()):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = "[REDACTED]"
    return event_dict


class OperatorConsoleRenderer:
    """Render events as ``[LEVEL] message key=value`` lines for operators.

    Events logged with ``step=True`` render with a ``[STEP]`` tag.
    """

    def __init__(self, colors: bool = True):
        self.colors = colors

    def __call__(self, _, __, event_dict: dict) -> str:
        is_step = event_dict.pop("step", False)
        level = event_dict.pop("level", "info")
        tag, color = STEP_TAG if is_step else LEVEL_TAGS.get(level, (level.upper(), ""))
        event = event_dict.pop("event", "")
        exc = event_dict.pop("exception", None)

        extras = " ".join(
            f"{key}={value}"
            for key, value in event_dict.items()
            if key not in _CONSOLE_HIDDEN_KEYS
        )
        prefix = f"{color}[{tag}]{RESET}" if self.colors and color else f"[{tag}]"
        line = f"{prefix} {event}"
        if extras:
            line = f"{line} {extras}"
        if exc:
            line = f"{line}\n{exc}"
        return line


def setup_logging(log_level: str = "INFO", log_format: str = "console", colors: Optional[bool] = None) -> None:
    """Configure structured logging."""

    # Configure standard logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    if colors is None:
        colors = sys.stdout.isatty()

    # Configure structlog processors
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_sensitive,
    ]

    if log_format == "json":
        processors.append(structlog.processors.format_exc_info)
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.processors.format_exc_info)
        processors.append(OperatorConsoleRenderer(colors=colors))

    structlog.configure(
        processors=processors,
        context_class=dict,
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, log_level.upper())),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=False,
    )


def bind_run_context(run_id: Optional[str] = None, force_clean: Optional[bool] = None) -> None:
    """Bind correlation fields for run logs using contextvars."""
    if run_id:
        bind_contextvars(run_id=run_id)
    if force_clean is not None:
        bind_contextvars(force_clean=force_clean)
