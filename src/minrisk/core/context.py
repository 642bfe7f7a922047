"""Evaluation context for async-safe, organization-scoped engine runs.

Carries the organization, actor and correlation identifiers of the current
evaluation through ``contextvars`` so that log events emitted deep inside
the engine can be tied back to the request or recalculation run that
triggered them.

Usage:
    from minrisk.core.context import create_context, evaluation_context

    ctx = create_context(organization_id=org_id, actor_id="scheduler")

    with evaluation_context(ctx):
        await coordinator.recalculate_organization(org_id)
"""

from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import UTC, datetime
from typing import Iterator
from uuid import UUID

from pydantic import BaseModel, Field
from uuid_utils.compat import uuid7

from minrisk.utils.exceptions import MinRiskError


class ContextNotSetError(MinRiskError):
    """Raised when the evaluation context is required but not set."""

    def __init__(self, message: str = "Evaluation context is not set"):
        super().__init__(message)


class EvaluationContext(BaseModel):
    """Context for a single evaluation or recalculation run."""

    organization_id: UUID
    actor_id: str | None = None
    correlation_id: UUID = Field(default_factory=uuid7)
    run_id: UUID | None = None
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    model_config = {"frozen": True}


_current_context: ContextVar[EvaluationContext | None] = ContextVar(
    "minrisk_evaluation_context", default=None
)


def create_context(
    organization_id: UUID,
    actor_id: str | None = None,
    run_id: UUID | None = None,
) -> EvaluationContext:
    """Create a new evaluation context."""
    return EvaluationContext(
        organization_id=organization_id,
        actor_id=actor_id,
        run_id=run_id,
    )


def get_current_context() -> EvaluationContext:
    """Get the current evaluation context.

    Raises:
        ContextNotSetError: If no context is active.
    """
    ctx = _current_context.get()
    if ctx is None:
        raise ContextNotSetError()
    return ctx


def get_current_context_or_none() -> EvaluationContext | None:
    """Get the current evaluation context, or None when unset."""
    return _current_context.get()


def set_context(ctx: EvaluationContext) -> Token[EvaluationContext | None]:
    """Set the evaluation context and return a reset token."""
    return _current_context.set(ctx)


def reset_context(token: Token[EvaluationContext | None]) -> None:
    """Restore the context that was active before ``set_context``."""
    _current_context.reset(token)


@contextmanager
def evaluation_context(ctx: EvaluationContext) -> Iterator[EvaluationContext]:
    """Activate ``ctx`` for the duration of the block."""
    token = set_context(ctx)
    try:
        yield ctx
    finally:
        reset_context(token)
