"""Unit tests for breach detection, lifecycle and KRI thresholds."""

import asyncio
from datetime import timedelta
from uuid import uuid4

import pytest

from minrisk.appetite import (
    ALLOWED_TRANSITIONS,
    BreachDirection,
    BreachManager,
    BreachNotFoundError,
    BreachRecord,
    BreachSeverity,
    BreachStatus,
    BreachType,
    InMemoryAppetiteStore,
    InvalidBreachTransitionError,
    KRIDefinition,
    KRINotFoundError,
    Severity,
    ToleranceEvaluator,
    ToleranceNotFoundError,
    can_transition,
    compute_variance,
    detect_breach,
)
from minrisk.utils.exceptions import ConfigurationError


@pytest.fixture
def manager(store: InMemoryAppetiteStore) -> BreachManager:
    return BreachManager(store=store, kris=store)


class TestDetectBreach:
    def test_hard_limit_wins(self):
        result = detect_breach(25, tolerance_threshold=5, soft_limit=10, hard_limit=20)

        assert result.is_breach is True
        assert result.breach_type == BreachType.HARD
        assert result.severity == BreachSeverity.CRITICAL
        assert result.threshold_value == 20
        assert result.variance_amount == 5
        assert result.variance_percentage == 25.0

    def test_soft_limit(self):
        result = detect_breach(15, tolerance_threshold=5, soft_limit=10, hard_limit=20)
        assert result.breach_type == BreachType.SOFT
        assert result.severity == BreachSeverity.HIGH

    def test_tolerance_threshold(self):
        result = detect_breach(7, tolerance_threshold=5, soft_limit=10, hard_limit=20)
        assert result.breach_type == BreachType.SOFT
        assert result.severity == BreachSeverity.MEDIUM

    def test_comparisons_are_strict(self):
        assert detect_breach(20, None, None, 20).is_breach is False

    def test_down_direction(self):
        result = detect_breach(90, None, 110, 100, BreachDirection.DOWN)
        assert result.breach_type == BreachType.HARD
        assert result.variance_percentage == 10.0

    def test_no_breach(self):
        result = detect_breach(1, 5, 10, 20)
        assert result.is_breach is False
        assert result.breach_type is None

    def test_zero_threshold_variance(self):
        assert compute_variance(3, 0) == (3, 0.0)


class TestTransitions:
    def test_no_backward_moves(self):
        order = [
            BreachStatus.OPEN,
            BreachStatus.ACKNOWLEDGED,
            BreachStatus.INVESTIGATING,
            BreachStatus.REMEDIATION_IN_PROGRESS,
            BreachStatus.PENDING_APPROVAL,
        ]
        for index, current in enumerate(order):
            for earlier in order[:index]:
                assert can_transition(current, earlier) is False

    def test_resolution_from_any_active_state(self):
        for status, targets in ALLOWED_TRANSITIONS.items():
            if status not in (BreachStatus.RESOLVED, BreachStatus.CLOSED):
                assert BreachStatus.RESOLVED in targets

    def test_closed_is_terminal(self):
        assert ALLOWED_TRANSITIONS[BreachStatus.CLOSED] == frozenset()


class TestCreateBreach:
    @pytest.mark.asyncio
    async def test_soft_breach_not_escalated(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)

        assert breach.status == BreachStatus.OPEN
        assert breach.escalated_to_cro is False
        assert breach.escalated_to_board is False
        assert breach.variance_amount == 2
        assert breach.variance_percentage == 20.0

    @pytest.mark.asyncio
    async def test_hard_breach_escalates_to_cro(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.HARD, 25, 20, at=now)

        assert breach.escalated_to_cro is True
        assert breach.escalated_to_cro_at == now
        assert breach.escalated_to_board is False

    @pytest.mark.asyncio
    async def test_critical_breach_escalates_to_board(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.CRITICAL, 50, 20, at=now)

        assert breach.escalated_to_cro is True
        assert breach.escalated_to_board is True
        assert breach.escalated_to_board_at == now

    @pytest.mark.asyncio
    async def test_from_tolerance_status_prefers_hard_limit(
        self, manager, store, make_tolerance, org_id, now
    ):
        tolerance = make_tolerance(current_value=25)
        status = ToleranceEvaluator().evaluate(tolerance, now)

        breach = await manager.record_tolerance_breach(tolerance, status, org_id, at=now)

        assert breach is not None
        assert breach.breach_type == BreachType.HARD
        assert breach.threshold_value == 20
        assert breach.severity == BreachSeverity.CRITICAL
        assert await store.get_breach(breach.breach_id) == breach

    @pytest.mark.asyncio
    async def test_from_soft_tolerance_status(self, manager, make_tolerance, org_id, now):
        tolerance = make_tolerance(
            current_value=12, escalation_severity_on_soft_breach=Severity.CRITICAL
        )
        status = ToleranceEvaluator().evaluate(tolerance, now)

        breach = await manager.record_tolerance_breach(tolerance, status, org_id, at=now)

        assert breach.breach_type == BreachType.SOFT
        assert breach.threshold_value == 10
        assert breach.severity == BreachSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_no_breach_for_healthy_or_missing(self, manager, make_tolerance, org_id, now):
        evaluator = ToleranceEvaluator()
        healthy = make_tolerance(current_value=1)
        missing = make_tolerance(current_value=None)

        assert (
            await manager.record_tolerance_breach(healthy, evaluator.evaluate(healthy, now), org_id)
            is None
        )
        assert (
            await manager.record_tolerance_breach(missing, evaluator.evaluate(missing, now), org_id)
            is None
        )


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.HARD, 25, 20, at=now)
        bid = breach.breach_id

        await manager.acknowledge(bid, "officer", now + timedelta(hours=1), "seen")
        await manager.start_investigation(bid, "officer", now + timedelta(hours=2))
        await manager.start_remediation(bid, "owner", now + timedelta(days=1))
        await manager.submit_for_approval(bid, "owner", now + timedelta(days=2))
        await manager.approve(bid, "cro", now + timedelta(days=3))
        await manager.resolve(bid, "cro", now + timedelta(days=4), "fixed", "patched the feed")
        closed = await manager.close(bid, "cro", now + timedelta(days=5))

        assert closed.status == BreachStatus.CLOSED
        assert closed.acknowledged_by == "officer"
        assert closed.acknowledged_notes == "seen"
        assert closed.resolved_by == "cro"
        assert closed.resolution_notes == "fixed"
        assert closed.resolution_actions == "patched the feed"
        assert closed.closed_at == now + timedelta(days=5)
        assert [t.to_status for t in closed.transitions] == [
            BreachStatus.ACKNOWLEDGED,
            BreachStatus.INVESTIGATING,
            BreachStatus.REMEDIATION_IN_PROGRESS,
            BreachStatus.PENDING_APPROVAL,
            BreachStatus.APPROVED,
            BreachStatus.RESOLVED,
            BreachStatus.CLOSED,
        ]

    @pytest.mark.asyncio
    async def test_resolve_directly_from_open(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)

        resolved = await manager.resolve(breach.breach_id, "officer", now, "false positive")

        assert resolved.status == BreachStatus.RESOLVED
        assert resolved.is_active is False

    @pytest.mark.asyncio
    async def test_rejected_remediation_only_resolves(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)
        bid = breach.breach_id
        await manager.acknowledge(bid, "officer", now)
        await manager.start_investigation(bid, "officer", now)
        await manager.start_remediation(bid, "owner", now)
        await manager.submit_for_approval(bid, "owner", now)

        rejected = await manager.reject(bid, "cro", now, "insufficient evidence")

        assert rejected.status == BreachStatus.REJECTED
        assert rejected.transitions[-1].notes == "insufficient evidence"
        with pytest.raises(InvalidBreachTransitionError):
            await manager.start_remediation(bid, "owner", now)
        resolved = await manager.resolve(bid, "cro", now, "accepted risk")
        assert resolved.status == BreachStatus.RESOLVED

    @pytest.mark.asyncio
    async def test_skipping_is_rejected(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)

        with pytest.raises(InvalidBreachTransitionError) as exc_info:
            await manager.start_remediation(breach.breach_id, "officer", now)

        assert exc_info.value.current == BreachStatus.OPEN
        assert exc_info.value.target == BreachStatus.REMEDIATION_IN_PROGRESS
        assert (await manager.get_breach(breach.breach_id)).status == BreachStatus.OPEN

    @pytest.mark.asyncio
    async def test_resolved_cannot_reopen(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)
        await manager.resolve(breach.breach_id, "officer", now, "done")

        with pytest.raises(InvalidBreachTransitionError):
            await manager.acknowledge(breach.breach_id, "officer", now)

    @pytest.mark.asyncio
    async def test_actor_required(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)

        with pytest.raises(ValueError):
            await manager.acknowledge(breach.breach_id, "", now)

    @pytest.mark.asyncio
    async def test_unknown_breach(self, manager, now):
        with pytest.raises(BreachNotFoundError):
            await manager.acknowledge(uuid4(), "officer", now)


class InterleavingStore(InMemoryAppetiteStore):
    """Yields to the event loop after every breach read."""

    async def get_breach(self, breach_id):
        breach = await super().get_breach(breach_id)
        await asyncio.sleep(0)
        return breach


class TestConcurrentTransitions:
    def test_record_rejects_invalid_move(self, org_id, now):
        breach = BreachRecord(
            organization_id=org_id, breach_type=BreachType.SOFT, breach_value=12, threshold_value=10
        )

        with pytest.raises(InvalidBreachTransitionError) as exc_info:
            breach.apply_transition(BreachStatus.CLOSED, actor="officer", at=now)

        assert exc_info.value.current == BreachStatus.OPEN
        assert exc_info.value.target == BreachStatus.CLOSED

    @pytest.mark.asyncio
    async def test_store_checks_stored_status(self, manager, store, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)
        await manager.resolve(breach.breach_id, "officer", now, "done")

        with pytest.raises(InvalidBreachTransitionError):
            await store.update_breach_status(
                breach.breach_id, BreachStatus.ACKNOWLEDGED, actor="officer", at=now
            )

        stored = await store.get_breach(breach.breach_id)
        assert stored.status == BreachStatus.RESOLVED
        assert len(stored.transitions) == 1

    @pytest.mark.asyncio
    async def test_concurrent_acknowledge_applies_once(self, org_id, now):
        store = InterleavingStore()
        manager = BreachManager(store=store, kris=store)
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)

        results = await asyncio.gather(
            manager.acknowledge(breach.breach_id, "alice", now),
            manager.acknowledge(breach.breach_id, "bob", now),
            return_exceptions=True,
        )

        errors = [r for r in results if isinstance(r, Exception)]
        assert len(errors) == 1
        assert isinstance(errors[0], InvalidBreachTransitionError)
        stored = await store.get_breach(breach.breach_id)
        assert stored.status == BreachStatus.ACKNOWLEDGED
        assert len(stored.transitions) == 1

    @pytest.mark.asyncio
    async def test_resolution_not_overwritten_by_late_acknowledge(self, org_id, now):
        store = InterleavingStore()
        manager = BreachManager(store=store, kris=store)
        breach = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now)

        results = await asyncio.gather(
            manager.resolve(breach.breach_id, "cro", now, "false positive"),
            manager.acknowledge(breach.breach_id, "officer", now),
            return_exceptions=True,
        )

        assert isinstance(results[1], InvalidBreachTransitionError)
        stored = await store.get_breach(breach.breach_id)
        assert stored.status == BreachStatus.RESOLVED
        assert stored.resolved_by == "cro"
        assert stored.acknowledged_by is None
        assert [t.to_status for t in stored.transitions] == [BreachStatus.RESOLVED]


class TestKRIThresholds:
    @pytest.fixture
    def kri(self, store, org_id) -> KRIDefinition:
        kri = KRIDefinition(
            kri_id=uuid4(),
            organization_id=org_id,
            name="failed logins",
            warning_threshold=100.0,
            critical_threshold=200.0,
        )
        store.add_kri(kri)
        return kri

    @pytest.mark.asyncio
    async def test_tighten_by_default_fraction(self, manager, store, kri, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 120, 100, at=now)

        tightened = await manager.tighten_kri_thresholds(kri.kri_id, breach.breach_id)

        assert tightened.warning_threshold == pytest.approx(80.0)
        assert tightened.critical_threshold == pytest.approx(160.0)
        marked = await store.get_breach(breach.breach_id)
        assert marked.kri_threshold_tightened is True
        assert marked.kri_threshold_tightened_by_percent == 20.0

    @pytest.mark.asyncio
    async def test_tighten_null_threshold_stays_null(self, manager, store, org_id, now):
        kri = KRIDefinition(kri_id=uuid4(), warning_threshold=50.0, critical_threshold=None)
        store.add_kri(kri)
        breach = await manager.create_breach(org_id, BreachType.SOFT, 60, 50, at=now)

        tightened = await manager.tighten_kri_thresholds(kri.kri_id, breach.breach_id, 0.5)

        assert tightened.warning_threshold == 25.0
        assert tightened.critical_threshold is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("fraction", [0.0, 1.0, -0.1, 1.5])
    async def test_invalid_fraction(self, manager, kri, org_id, now, fraction):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 120, 100, at=now)
        with pytest.raises(ValueError):
            await manager.tighten_kri_thresholds(kri.kri_id, breach.breach_id, fraction)

    @pytest.mark.asyncio
    async def test_unknown_kri(self, manager, org_id, now):
        breach = await manager.create_breach(org_id, BreachType.SOFT, 120, 100, at=now)
        with pytest.raises(KRINotFoundError):
            await manager.tighten_kri_thresholds(uuid4(), breach.breach_id)

    @pytest.mark.asyncio
    async def test_reset_restores_tolerance_limits(
        self, manager, store, kri, make_tolerance, org_id, now
    ):
        tolerance = make_tolerance(soft_limit=90, hard_limit=180)
        store.add_tolerance(tolerance)
        breach = await manager.create_breach(org_id, BreachType.SOFT, 120, 100, at=now)
        await manager.tighten_kri_thresholds(kri.kri_id, breach.breach_id)

        reset = await manager.reset_kri_thresholds(kri.kri_id, tolerance.tolerance_id)

        assert reset.warning_threshold == 90
        assert reset.critical_threshold == 180

    @pytest.mark.asyncio
    async def test_reset_unknown_tolerance(self, manager, kri):
        with pytest.raises(ToleranceNotFoundError):
            await manager.reset_kri_thresholds(kri.kri_id, uuid4())

    @pytest.mark.asyncio
    async def test_unknown_breach_leaves_kri_untouched(self, manager, store, kri):
        with pytest.raises(BreachNotFoundError):
            await manager.tighten_kri_thresholds(kri.kri_id, uuid4())

        unchanged = await store.get_kri(kri.kri_id)
        assert unchanged.warning_threshold == 100.0
        assert unchanged.critical_threshold == 200.0

    @pytest.mark.asyncio
    async def test_requires_kri_store(self, store, kri, make_tolerance, org_id, now):
        manager = BreachManager(store=store)
        breach = await manager.create_breach(org_id, BreachType.SOFT, 120, 100, at=now)

        with pytest.raises(ConfigurationError):
            await manager.tighten_kri_thresholds(kri.kri_id, breach.breach_id)
        with pytest.raises(ConfigurationError):
            await manager.reset_kri_thresholds(kri.kri_id, make_tolerance().tolerance_id)

        assert (await store.get_breach(breach.breach_id)).kri_threshold_tightened is False


class TestKRIReadings:
    @pytest.mark.asyncio
    async def test_linked_kri_uses_tolerance_limits(self, manager, store, make_tolerance, org_id, now):
        tolerance = make_tolerance(soft_limit=10, hard_limit=20)
        store.add_tolerance(tolerance)
        kri = KRIDefinition(
            kri_id=uuid4(),
            organization_id=org_id,
            tolerance_id=tolerance.tolerance_id,
            warning_threshold=5,
            critical_threshold=30,
        )
        store.add_kri(kri)

        result, breach = await manager.check_kri_reading(kri.kri_id, 22, at=now)

        assert result.breach_type == BreachType.HARD
        assert breach is not None
        assert breach.kri_id == kri.kri_id
        assert breach.tolerance_id == tolerance.tolerance_id
        assert breach.escalated_to_cro is True

    @pytest.mark.asyncio
    async def test_standalone_kri_is_not_persisted(self, manager, store, org_id, now):
        kri = KRIDefinition(
            kri_id=uuid4(), organization_id=org_id, warning_threshold=5, critical_threshold=30
        )
        store.add_kri(kri)

        result, breach = await manager.check_kri_reading(kri.kri_id, 40, at=now)

        assert result.breach_type == BreachType.HARD
        assert breach is None
        assert await store.list_breaches(org_id) == []


class TestQueries:
    @pytest.mark.asyncio
    async def test_active_breaches_newest_first(self, manager, org_id, now):
        old = await manager.create_breach(org_id, BreachType.SOFT, 12, 10, at=now - timedelta(days=3))
        new = await manager.create_breach(org_id, BreachType.HARD, 25, 20, at=now)
        done = await manager.create_breach(org_id, BreachType.SOFT, 11, 10, at=now)
        await manager.resolve(done.breach_id, "officer", now, "ok")

        active = await manager.get_active_breaches(org_id)

        assert [b.breach_id for b in active] == [new.breach_id, old.breach_id]

    @pytest.mark.asyncio
    async def test_statistics(self, manager, org_id, now):
        first = await manager.create_breach(
            org_id, BreachType.SOFT, 12, 10, severity=BreachSeverity.HIGH, at=now
        )
        second = await manager.create_breach(
            org_id, BreachType.HARD, 25, 20, severity=BreachSeverity.CRITICAL, at=now
        )
        await manager.create_breach(org_id, BreachType.SOFT, 11, 10, at=now)
        await manager.resolve(first.breach_id, "officer", now + timedelta(days=2), "ok")
        await manager.resolve(second.breach_id, "officer", now + timedelta(days=5), "ok")

        stats = await manager.get_breach_statistics(org_id)

        assert stats.total == 3
        assert stats.open == 1
        assert stats.by_type[BreachType.SOFT] == 2
        assert stats.by_type[BreachType.HARD] == 1
        assert stats.by_type[BreachType.CRITICAL] == 0
        assert stats.by_severity[BreachSeverity.MEDIUM] == 1
        assert stats.avg_resolution_days == 3.5

    @pytest.mark.asyncio
    async def test_statistics_empty(self, manager, org_id):
        stats = await manager.get_breach_statistics(org_id)
        assert stats.total == 0
        assert stats.avg_resolution_days == 0.0
