"""Structured logging for diagrender.

All components log through loguru. Each component receives a logger bound to
its name (``logger.bind(component=...)``); nothing writes to a global output
channel. Spans wrap backend calls and emit one record with timing and
attributes when they close.
"""

from __future__ import annotations

import sys
import time
from collections.abc import Generator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from loguru import logger

if TYPE_CHECKING:
    from loguru import Logger

LOG_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[component]}</cyan> | {message}"
)


def configure_logging(level: str = "INFO") -> None:
    """Route loguru output to stderr at the given level.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ...)
    """
    logger.remove()
    logger.configure(extra={"component": "diagrender"})
    logger.add(sys.stderr, level=level.upper(), format=LOG_FORMAT)


def component_logger(component: str) -> Logger:
    """Return a logger bound to a component name."""
    return logger.bind(component=component)


class LogSpan:
    """A structured logging span with timing and attributes."""

    def __init__(self, name: str, sink: Logger | None = None, **attrs: Any) -> None:
        """Initialize a log span.

        Args:
            name: Span name (e.g., "kroki.render")
            sink: Logger to emit through (defaults to the module logger)
            **attrs: Initial attributes to log
        """
        self.name = name
        self.sink = sink or logger
        self.attrs: dict[str, Any] = dict(attrs)
        self.start_time = time.monotonic()
        self.error: str | None = None

    def add(self, key: str | None = None, value: Any = None, **attrs: Any) -> LogSpan:
        """Add attributes to the span.

        Args:
            key: Attribute name (optional if using kwargs)
            value: Attribute value (required if key is provided)
            **attrs: Bulk attribute additions (e.g., status=200, bytes=512)

        Returns:
            Self for method chaining
        """
        if key is not None:
            self.attrs[key] = value
        self.attrs.update(attrs)
        return self

    @property
    def elapsed_ms(self) -> float:
        return round((time.monotonic() - self.start_time) * 1000, 2)

    def _emit(self) -> None:
        """Emit the span as a single log record."""
        fields = " ".join(f"{k}={v}" for k, v in self.attrs.items())
        message = f"{self.name} elapsed_ms={self.elapsed_ms} {fields}".rstrip()
        bound = self.sink.bind(span=self.name, **self.attrs)
        if self.error:
            bound.warning(f"{message} error={self.error}")
        else:
            bound.debug(message)


@contextmanager
def log(name: str, sink: Logger | None = None, **attrs: Any) -> Generator[LogSpan, None, None]:
    """Context manager for structured logging.

    Automatically captures timing and errors.

    Args:
        name: Span name (e.g., "kroki.render")
        sink: Logger to emit through
        **attrs: Initial attributes to log

    Yields:
        LogSpan object for adding attributes

    Example:
        >>> with log("kroki.render", type="mermaid") as span:
        ...     response = client.get(url)
        ...     span.add(status=response.status_code)
    """
    span = LogSpan(name, sink=sink, **attrs)
    try:
        yield span
    except Exception as e:
        span.error = f"{type(e).__name__}: {e}"
        raise
    finally:
        span._emit()
