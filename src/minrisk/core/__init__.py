"""Core services and utilities for MinRisk."""

from .context import (
    ContextNotSetError,
    EvaluationContext,
    create_context,
    evaluation_context,
    get_current_context,
    get_current_context_or_none,
    reset_context,
    set_context,
)
from .logging import (
    LogContext,
    bind_contextvars,
    clear_contextvars,
    get_logger,
    log_provider_failure,
    setup_logging,
    unbind_contextvars,
)

__all__ = [
    # Context
    "ContextNotSetError",
    "EvaluationContext",
    "create_context",
    "evaluation_context",
    "get_current_context",
    "get_current_context_or_none",
    "reset_context",
    "set_context",
    # Logging
    "LogContext",
    "bind_contextvars",
    "clear_contextvars",
    "get_logger",
    "log_provider_failure",
    "setup_logging",
    "unbind_contextvars",
]
