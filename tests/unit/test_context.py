"""Unit tests for the evaluation context."""

import asyncio
from uuid import uuid4

import pytest

from minrisk.core.context import (
    ContextNotSetError,
    EvaluationContext,
    create_context,
    evaluation_context,
    get_current_context,
    get_current_context_or_none,
    reset_context,
    set_context,
)


class TestEvaluationContext:
    def test_create_context(self):
        org_id = uuid4()
        run_id = uuid4()

        ctx = create_context(org_id, actor_id="scheduler", run_id=run_id)

        assert ctx.organization_id == org_id
        assert ctx.actor_id == "scheduler"
        assert ctx.run_id == run_id
        assert ctx.correlation_id is not None
        assert ctx.started_at.tzinfo is not None

    def test_correlation_ids_are_unique(self):
        org_id = uuid4()
        assert create_context(org_id).correlation_id != create_context(org_id).correlation_id

    def test_frozen(self):
        ctx = create_context(uuid4())
        with pytest.raises(Exception):
            ctx.actor_id = "someone"


class TestContextPropagation:
    def test_unset_context(self):
        assert get_current_context_or_none() is None
        with pytest.raises(ContextNotSetError):
            get_current_context()

    def test_context_manager_restores_previous(self):
        outer = create_context(uuid4())
        inner = create_context(uuid4())

        with evaluation_context(outer):
            with evaluation_context(inner):
                assert get_current_context() is inner
            assert get_current_context() is outer

        assert get_current_context_or_none() is None

    def test_reset_after_error(self):
        ctx = create_context(uuid4())
        with pytest.raises(RuntimeError):
            with evaluation_context(ctx):
                raise RuntimeError("boom")
        assert get_current_context_or_none() is None

    def test_set_and_reset_token(self):
        ctx = EvaluationContext(organization_id=uuid4())
        token = set_context(ctx)
        assert get_current_context() is ctx
        reset_context(token)
        assert get_current_context_or_none() is None

    @pytest.mark.asyncio
    async def test_isolated_between_tasks(self):
        seen = {}

        async def run(name):
            ctx = create_context(uuid4(), actor_id=name)
            with evaluation_context(ctx):
                await asyncio.sleep(0.01)
                seen[name] = get_current_context().actor_id

        await asyncio.gather(run("a"), run("b"))

        assert seen == {"a": "a", "b": "b"}
