"""Structured logging helpers shared by every sync component."""

import logging
from typing import Optional, Union

from .context import clear_log_context, get_log_context, log_context


class ComponentLoggerAdapter(logging.LoggerAdapter):
    """Adapter that stamps a ``component`` field onto every record.

    Fields passed through ``extra`` on an individual call win over the
    adapter defaults, so a call site can override ``component`` when needed.
    """

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(
    name: str, component: Optional[str] = None
) -> Union[logging.Logger, ComponentLoggerAdapter]:
    """Return a logger, wrapped with a component tag when one is given.

    Args:
        name: Logger name, normally ``__name__``
        component: Component label attached to all records (e.g. "sync")

    Returns:
        Plain logger or a ComponentLoggerAdapter

    Example:
        >>> logger = get_logger(__name__, component="sync")
        >>> logger.info("Sync started", extra={"event": "sync.run.started"})
    """
    base = logging.getLogger(name)
    if component:
        return ComponentLoggerAdapter(base, {"component": component})
    return base


__all__ = [
    "ComponentLoggerAdapter",
    "clear_log_context",
    "get_log_context",
    "get_logger",
    "log_context",
]
