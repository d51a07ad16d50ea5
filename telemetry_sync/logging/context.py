"""Scoped logging context.

Fields pushed here (run id, sync source, batch number, ...) are copied onto
every log record emitted inside the scope by ``ContextualFilter``. The store
is a ``ContextVar`` so scheduler threads never see each other's fields.
"""

from contextvars import ContextVar, Token
from typing import Any, Dict, Optional


_CONTEXT: ContextVar[Dict[str, Any]] = ContextVar("telemetry_sync_log_context", default={})


def get_log_context() -> Dict[str, Any]:
    """Return a copy of the fields active in the current scope."""
    return dict(_CONTEXT.get())


def push_log_context(**fields: Any) -> Token:
    """Merge ``fields`` into the active context.

    Args:
        **fields: Fields to attach to subsequent log records

    Returns:
        Token for ``pop_log_context``
    """
    return _CONTEXT.set({**_CONTEXT.get(), **fields})


def pop_log_context(token: Token) -> None:
    """Restore the context captured by ``token``."""
    _CONTEXT.reset(token)


def clear_log_context() -> None:
    """Drop every context field (used by tests)."""
    _CONTEXT.set({})


class log_context:
    """Context manager that scopes logging fields to a block.

    Example:
        >>> with log_context(run_id="3f2a", sync_source="defender"):
        ...     logger.info("Fetching inventory")
    """

    def __init__(self, **fields: Any):
        self.fields = fields
        self._token: Optional[Token] = None

    def __enter__(self) -> "log_context":
        self._token = push_log_context(**self.fields)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if self._token is not None:
            pop_log_context(self._token)
            self._token = None
        return False
