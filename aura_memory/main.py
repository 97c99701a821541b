"""
Entry point for the ``aura-memory`` command.

Logging is configured here once: structlog over the standard library, with a
processor that keeps memory contents and queries out of log files in full.
"""

from __future__ import annotations

import logging
import re

import structlog

# Fields that carry user-supplied text. They are masked and truncated before
# rendering so logs never hold a full copy of what a user told the agent.
SENSITIVE_KEYS = frozenset({"content", "query", "preference", "outcome", "reflection", "context"})
MAX_DISPLAY_LEN = 80

_EMAIL_RE = re.compile(r"[\w.+-]+@[\w-]+\.[\w.-]+")
_SECRET_RE = re.compile(r"\b(sk-[A-Za-z0-9_-]{8})[A-Za-z0-9_-]+")


def redact_text(text: str) -> str:
    text = _EMAIL_RE.sub("[EMAIL]", text)
    return _SECRET_RE.sub(r"\1…", text)


def _redact_sensitive_fields(logger, method_name, event_dict):
    """Structlog processor: mask and truncate free-text memory fields."""
    for key in SENSITIVE_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str):
            value = redact_text(value)
            if len(value) > MAX_DISPLAY_LEN:
                value = value[:MAX_DISPLAY_LEN] + "... [truncated]"
            event_dict[key] = value
    return event_dict


_logging_configured = False


def configure_logging(level: int = logging.WARNING) -> None:
    """Configure structlog and stdlib logging. Later calls only adjust the level."""
    global _logging_configured  # noqa: PLW0603
    if _logging_configured:
        logging.getLogger().setLevel(level)
        return
    _logging_configured = True

    logging.basicConfig(format="%(message)s", level=level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            _redact_sensitive_fields,
            structlog.dev.ConsoleRenderer(colors=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


def main() -> None:
    """Entry point for the aura-memory command."""
    configure_logging()
    from aura_memory.cli.app import cli

    cli()


if __name__ == "__main__":
    main()
