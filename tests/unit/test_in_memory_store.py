"""Unit tests for the history helpers and the in-memory store."""

from datetime import UTC, date, datetime, timedelta
from uuid import uuid4

import pytest

from minrisk.appetite import (
    BreachHistoryEntry,
    BreachType,
    RecalcStatus,
    create_in_memory_store,
)
from minrisk.appetite.providers import count_consecutive_periods, window_start


def entry(period, *, breach_type=BreachType.SOFT, resolved=False, tolerance_id=None):
    return BreachHistoryEntry(
        tolerance_id=tolerance_id or uuid4(),
        period_number=period,
        measurement_date=date(2026, 1, 1) + timedelta(days=30 * period),
        breach_type=breach_type,
        resolved=resolved,
    )


class TestCountConsecutivePeriods:
    def test_empty(self):
        assert count_consecutive_periods([]) == 0

    def test_unbroken_run(self):
        assert count_consecutive_periods([entry(3), entry(1), entry(2)]) == 3

    def test_stops_at_gap(self):
        assert count_consecutive_periods([entry(5), entry(4), entry(2), entry(1)]) == 2

    def test_resolved_and_hard_rows_ignored(self):
        entries = [
            entry(4),
            entry(3, resolved=True),
            entry(2, breach_type=BreachType.HARD),
        ]
        assert count_consecutive_periods(entries) == 1


class TestWindowStart:
    def test_days_back_from_reference(self):
        as_of = datetime(2026, 3, 31, 23, 30, tzinfo=UTC)
        assert window_start(90, as_of) == date(2025, 12, 31)

    def test_naive_reference_treated_as_utc(self):
        assert window_start(1, datetime(2026, 3, 31, 12, 0)) == date(2026, 3, 30)


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_breaches_in_window_counts_recent_soft_rows(self):
        store = create_in_memory_store()
        tolerance_id = uuid4()
        as_of = datetime(2026, 3, 31, tzinfo=UTC)
        for days_ago, breach_type in [(10, BreachType.SOFT), (40, BreachType.SOFT),
                                      (20, BreachType.HARD), (200, BreachType.SOFT)]:
            store.add_history(
                BreachHistoryEntry(
                    tolerance_id=tolerance_id,
                    period_number=days_ago,
                    measurement_date=(as_of - timedelta(days=days_ago)).date(),
                    breach_type=breach_type,
                )
            )

        assert await store.count_breaches_in_window(tolerance_id, 90, as_of=as_of) == 2
        assert await store.count_breaches_in_window(tolerance_id, 30, as_of=as_of) == 1

    @pytest.mark.asyncio
    async def test_save_scores_updates_residual(self, store, make_risk, org_id):
        risk = make_risk(org_id)
        store.add_risk(risk)

        await store.save_risk_scores(risk.risk_id, 3.33, 6.66, True, snapshot={"k": "v"})

        assert (await store.get_risk(risk.risk_id)).residual_score == 3.33
        assert store.saved_scores[risk.risk_id]["out_of_appetite"] is True

    @pytest.mark.asyncio
    async def test_run_lifecycle(self, store, org_id):
        run_id = await store.acquire_recalc_lock(org_id, created_by="ops")
        assert await store.acquire_recalc_lock(org_id) is None

        await store.complete_recalc_run(
            run_id, RecalcStatus.COMPLETED, processed=2, updated=2, failed=0
        )

        run = await store.get_recalc_run(run_id)
        assert run.status == RecalcStatus.COMPLETED
        assert run.created_by == "ops"
        assert run.risks_updated == 2
        assert await store.acquire_recalc_lock(org_id) is not None
