"""Unit tests for organization-wide recalculation."""

import asyncio
from uuid import uuid4

import pytest

from minrisk.appetite import (
    InMemoryAppetiteStore,
    RecalcRunType,
    RecalcStatus,
    RecalculationCoordinator,
    create_raf_scorer,
    create_recalculation_coordinator,
)
from minrisk.config.settings import RAFEngineConfig


class FlakyStore(InMemoryAppetiteStore):
    """Store whose risk lookups fail for selected risks."""

    def __init__(self, failing: set | None = None, delay: float = 0.0):
        super().__init__()
        self.failing = failing or set()
        self.delay = delay

    async def get_risk(self, risk_id):
        if self.delay:
            await asyncio.sleep(self.delay)
        if risk_id in self.failing:
            raise RuntimeError(f"corrupt row {risk_id}")
        return await super().get_risk(risk_id)


class PeakTrackingStore(InMemoryAppetiteStore):
    """Store that records how many score writes were in flight at once."""

    def __init__(self):
        super().__init__()
        self.in_flight = 0
        self.peak = 0

    async def save_risk_scores(self, *args, **kwargs):
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            await super().save_risk_scores(*args, **kwargs)
        finally:
            self.in_flight -= 1


def seed(store, make_risk, make_tolerance, org_id, count=3):
    risks = []
    for i in range(count):
        risk = make_risk(org_id, likelihood=2, impact=i % 5 + 1)
        store.add_risk(risk, [make_tolerance(current_value=5 * i)])
        risks.append(risk)
    return risks


class TestRecalculateOrganization:
    @pytest.mark.asyncio
    async def test_updates_every_risk(self, store, make_risk, make_tolerance, org_id, now):
        risks = seed(store, make_risk, make_tolerance, org_id)

        summary = await create_recalculation_coordinator(store).recalculate_organization(
            org_id, actor_id="scheduler", now=now
        )

        assert summary.acquired is True
        assert summary.status == RecalcStatus.COMPLETED
        assert summary.updated == 3
        assert summary.errors == 0
        assert summary.processed == 3
        assert set(store.saved_scores) == {r.risk_id for r in risks}

        run = await store.get_recalc_run(summary.run_id)
        assert run.status == RecalcStatus.COMPLETED
        assert run.run_type == RecalcRunType.FULL
        assert run.created_by == "scheduler"
        assert run.risks_updated == 3
        assert run.completed_at is not None

    @pytest.mark.asyncio
    async def test_other_organizations_untouched(self, store, make_risk, make_tolerance, org_id, now):
        seed(store, make_risk, make_tolerance, org_id, count=1)
        other = seed(store, make_risk, make_tolerance, uuid4(), count=2)

        summary = await create_recalculation_coordinator(store).recalculate_organization(
            org_id, now=now
        )

        assert summary.updated == 1
        assert not any(r.risk_id in store.saved_scores for r in other)

    @pytest.mark.asyncio
    async def test_empty_organization_completes(self, store, org_id, now):
        summary = await create_recalculation_coordinator(store).recalculate_organization(
            org_id, now=now
        )

        assert summary.status == RecalcStatus.COMPLETED
        assert summary.updated == 0
        assert summary.errors == 0

    @pytest.mark.asyncio
    async def test_single_risk_failure_does_not_abort(self, make_risk, make_tolerance, org_id, now):
        store = FlakyStore()
        risks = seed(store, make_risk, make_tolerance, org_id)
        store.failing = {risks[1].risk_id}

        summary = await create_recalculation_coordinator(store).recalculate_organization(
            org_id, now=now
        )

        assert summary.status == RecalcStatus.COMPLETED
        assert summary.updated == 2
        assert summary.errors == 1
        assert risks[1].risk_id not in store.saved_scores
        run = await store.get_recalc_run(summary.run_id)
        assert run.risks_failed == 1
        assert run.risks_processed == 3

    @pytest.mark.asyncio
    async def test_worker_pool_bounds_concurrency(self, make_risk, make_tolerance, org_id, now):
        store = PeakTrackingStore()
        seed(store, make_risk, make_tolerance, org_id, count=10)
        config = RAFEngineConfig(max_concurrent_risk_updates=4)

        summary = await create_recalculation_coordinator(store, config).recalculate_organization(
            org_id, now=now
        )

        assert summary.updated == 10
        assert summary.errors == 0
        assert len(store.saved_scores) == 10
        assert 1 < store.peak <= 4

    @pytest.mark.asyncio
    async def test_rerun_converges(self, store, make_risk, make_tolerance, org_id, now):
        seed(store, make_risk, make_tolerance, org_id)
        coordinator = create_recalculation_coordinator(store)

        await coordinator.recalculate_organization(org_id, now=now)
        first = {k: dict(v) for k, v in store.saved_scores.items()}
        await coordinator.recalculate_organization(org_id, now=now)

        assert store.saved_scores == first


class TestRunLock:
    @pytest.mark.asyncio
    async def test_second_caller_is_refused(self, store, make_risk, make_tolerance, org_id, now):
        seed(store, make_risk, make_tolerance, org_id)
        held = await store.acquire_recalc_lock(org_id)

        summary = await create_recalculation_coordinator(store).recalculate_organization(
            org_id, now=now
        )

        assert summary.acquired is False
        assert summary.updated == 0
        assert summary.errors == 0
        assert summary.run_id is None
        assert store.saved_scores == {}
        assert (await store.get_recalc_run(held)).status == RecalcStatus.RUNNING

    @pytest.mark.asyncio
    async def test_concurrent_runs_only_one_acquires(self, make_risk, make_tolerance, org_id, now):
        store = FlakyStore(delay=0.01)
        seed(store, make_risk, make_tolerance, org_id)
        coordinator = create_recalculation_coordinator(store)

        results = await asyncio.gather(
            coordinator.recalculate_organization(org_id, now=now),
            coordinator.recalculate_organization(org_id, now=now),
        )

        assert sorted(r.acquired for r in results) == [False, True]
        runs = await store.list_recalc_runs(org_id)
        assert len(runs) == 1
        assert runs[0].status == RecalcStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_lock_released_after_run(self, store, make_risk, make_tolerance, org_id, now):
        seed(store, make_risk, make_tolerance, org_id)
        coordinator = create_recalculation_coordinator(store)

        first = await coordinator.recalculate_organization(org_id, now=now)
        second = await coordinator.recalculate_organization(org_id, now=now)

        assert first.acquired is True
        assert second.acquired is True
        assert first.run_id != second.run_id

    @pytest.mark.asyncio
    async def test_locks_are_per_organization(self, store):
        assert await store.acquire_recalc_lock(uuid4()) is not None
        assert await store.acquire_recalc_lock(uuid4()) is not None


class TestRunFailure:
    @pytest.mark.asyncio
    async def test_timeout_marks_failed_and_releases(self, make_risk, make_tolerance, org_id, now):
        store = FlakyStore(delay=0.5)
        seed(store, make_risk, make_tolerance, org_id)
        config = RAFEngineConfig(recalc_timeout_seconds=0.05)
        coordinator = create_recalculation_coordinator(store, config)

        summary = await coordinator.recalculate_organization(org_id, now=now)

        assert summary.acquired is True
        assert summary.status == RecalcStatus.FAILED
        assert summary.errors == 1
        run = await coordinator.get_run(summary.run_id)
        assert run.status == RecalcStatus.FAILED
        assert "timed out" in run.error_message
        assert await store.acquire_recalc_lock(org_id) is not None

    @pytest.mark.asyncio
    async def test_listing_failure_marks_failed(self, make_risk, make_tolerance, org_id, now):
        class BrokenListing(InMemoryAppetiteStore):
            async def list_risk_ids(self, organization_id):
                raise RuntimeError("database unavailable")

        store = BrokenListing()
        summary = await create_recalculation_coordinator(store).recalculate_organization(
            org_id, now=now
        )

        assert summary.status == RecalcStatus.FAILED
        run = await store.get_recalc_run(summary.run_id)
        assert run.error_message == "database unavailable"
        assert await store.acquire_recalc_lock(org_id) is not None

    @pytest.mark.asyncio
    async def test_cancellation_marks_failed_and_releases(
        self, make_risk, make_tolerance, org_id, now
    ):
        store = FlakyStore(delay=1.0)
        seed(store, make_risk, make_tolerance, org_id)
        coordinator = create_recalculation_coordinator(store)

        task = asyncio.create_task(coordinator.recalculate_organization(org_id, now=now))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        runs = await store.list_recalc_runs(org_id)
        assert runs[0].status == RecalcStatus.FAILED
        assert runs[0].error_message == "Recalculation cancelled"
        assert await store.acquire_recalc_lock(org_id) is not None

    @pytest.mark.asyncio
    async def test_coordinator_wiring(self, store):
        scorer = create_raf_scorer(store)
        coordinator = RecalculationCoordinator(scorer=scorer, risks=store, locks=store)
        assert coordinator.config is scorer.config
