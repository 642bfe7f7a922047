"""Provider contracts consumed by the decision engine.

The engine owns no storage. Risks, tolerances, controls, breach history,
materiality inputs and the persistence sinks are reached through the
Protocols below. ``InMemoryAppetiteStore`` implements all of them and is
used by tests and single-process deployments; ``minrisk.db`` provides the
SQL implementation.
"""

import asyncio
from dataclasses import replace
from datetime import UTC, date, datetime, timedelta
from typing import Any, Protocol
from uuid import UUID

from minrisk.appetite.residual import round_half_up
from minrisk.appetite.types import (
    AggregationScope,
    BreachHistoryEntry,
    BreachNotFoundError,
    BreachRecord,
    BreachStatus,
    BreachType,
    Control,
    IncidentEvent,
    KRIDefinition,
    KRINotFoundError,
    MaterialityRule,
    MaterialityRuleType,
    RecalcRun,
    RecalcRunType,
    RecalcStatus,
    RiskProfile,
    ToleranceMetric,
    ensure_utc,
)

# =============================================================================
# Read Providers
# =============================================================================


class RiskProvider(Protocol):
    """Protocol for loading risks."""

    async def get_risk(self, risk_id: UUID) -> RiskProfile | None:
        """Get a risk with its appetite category, or None."""
        ...

    async def list_risk_ids(self, organization_id: UUID) -> list[UUID]:
        """List the ids of every risk of an organization."""
        ...


class ToleranceProvider(Protocol):
    """Protocol for loading the tolerances linked to a risk."""

    async def get_tolerances_for_risk(self, risk_id: UUID) -> list[ToleranceMetric]:
        """Get tolerances with current value and measurement date."""
        ...


class BreachHistoryProvider(Protocol):
    """Protocol for historical breach counts used by breach rules."""

    async def count_consecutive_breach_periods(self, tolerance_id: UUID) -> int:
        """Count the unbroken run of most recent breached periods."""
        ...

    async def count_breaches_in_window(
        self,
        tolerance_id: UUID,
        window_days: int,
        *,
        as_of: datetime | None = None,
    ) -> int:
        """Count breaches measured within the last ``window_days``."""
        ...


class ControlProvider(Protocol):
    """Protocol for loading the controls linked to a risk."""

    async def get_controls_for_risk(self, risk_id: UUID) -> list[Control]:
        """Get linked controls with their DIME sub-scores."""
        ...


class MaterialityProvider(Protocol):
    """Protocol for materiality inputs (event counts, exposure amounts)."""

    async def get_materiality_inputs(
        self,
        risk_id: UUID,
        organization_id: UUID,
        rule: MaterialityRule,
        *,
        as_of: datetime | None = None,
    ) -> float | None:
        """Get the measured quantity for ``rule``.

        Returns None when no data source exists for the rule type.
        """
        ...


# =============================================================================
# Persistence Sinks
# =============================================================================


class RiskScoreSink(Protocol):
    """Protocol for persisting a risk's recomputed scores."""

    async def save_risk_scores(
        self,
        risk_id: UUID,
        residual: float,
        raf_adjusted: float,
        out_of_appetite: bool,
        snapshot: dict[str, Any] | None = None,
    ) -> None:
        """Persist residual, RAF-adjusted score, verdict and its snapshot."""
        ...


class BreachStore(Protocol):
    """Protocol for breach record storage."""

    async def save_breach(self, breach: BreachRecord) -> BreachRecord:
        """Insert a new breach record."""
        ...

    async def get_breach(self, breach_id: UUID) -> BreachRecord | None:
        """Get a breach record by ID."""
        ...

    async def update_breach_status(
        self,
        breach_id: UUID,
        status: BreachStatus,
        actor: str,
        at: datetime,
        notes: str | None = None,
        resolution_actions: str | None = None,
    ) -> BreachRecord:
        """Move a breach to ``status``, recording actor and timestamp.

        The move is checked against the status read inside the same update,
        so two concurrent callers cannot both move the breach from one state.

        Raises:
            BreachNotFoundError: If the breach does not exist.
            InvalidBreachTransitionError: If ``status`` may not follow the
                stored status.
        """
        ...

    async def list_breaches(self, organization_id: UUID) -> list[BreachRecord]:
        """List every breach of an organization."""
        ...


class KRIStore(Protocol):
    """Protocol for KRI thresholds and their governing tolerances."""

    async def get_kri(self, kri_id: UUID) -> KRIDefinition | None:
        """Get a KRI definition by ID."""
        ...

    async def tighten_kri_thresholds(
        self, kri_id: UUID, fraction: float, breach_id: UUID | None = None
    ) -> KRIDefinition:
        """Shrink warning/critical thresholds by ``fraction``.

        When ``breach_id`` is given the breach is flagged as tightened in the
        same unit of work; either both changes persist or neither does.

        Raises:
            KRINotFoundError: If the KRI does not exist.
            BreachNotFoundError: If ``breach_id`` does not exist.
        """
        ...

    async def set_kri_thresholds(
        self,
        kri_id: UUID,
        warning_threshold: float | None,
        critical_threshold: float | None,
    ) -> KRIDefinition:
        """Overwrite warning/critical thresholds."""
        ...

    async def get_tolerance(self, tolerance_id: UUID) -> ToleranceMetric | None:
        """Get a tolerance metric by ID."""
        ...


class RecalcLockStore(Protocol):
    """Protocol for the organization-scoped recalculation lock."""

    async def acquire_recalc_lock(
        self,
        organization_id: UUID,
        run_type: RecalcRunType = RecalcRunType.FULL,
        created_by: str | None = None,
    ) -> UUID | None:
        """Atomically create a RUNNING run; None if one is already active."""
        ...

    async def complete_recalc_run(
        self,
        run_id: UUID,
        status: RecalcStatus,
        *,
        processed: int,
        updated: int,
        failed: int,
        error_message: str | None = None,
    ) -> None:
        """Close a run with its terminal status and counts."""
        ...

    async def get_recalc_run(self, run_id: UUID) -> RecalcRun | None:
        """Get a recalculation run by ID."""
        ...


# =============================================================================
# In-Memory Store
# =============================================================================


def count_consecutive_periods(entries: list[BreachHistoryEntry]) -> int:
    """Length of the unbroken run of most recent unresolved soft breaches.

    Walks periods newest first and stops at the first gap in
    ``period_number``.
    """
    periods = sorted(
        (e.period_number for e in entries if e.breach_type == BreachType.SOFT and not e.resolved),
        reverse=True,
    )
    if not periods:
        return 0
    count = 1
    for previous, current in zip(periods, periods[1:]):
        if current != previous - 1:
            break
        count += 1
    return count


def window_start(window_days: int, as_of: datetime | None = None) -> date:
    """First calendar day included in a rolling ``window_days`` window."""
    reference = ensure_utc(as_of) if as_of is not None else datetime.now(UTC)
    return (reference - timedelta(days=window_days)).date()


class InMemoryAppetiteStore:
    """In-memory implementation of every engine provider for testing."""

    def __init__(self) -> None:
        self._risks: dict[UUID, RiskProfile] = {}
        self._tolerances: dict[UUID, ToleranceMetric] = {}
        self._risk_tolerances: dict[UUID, list[UUID]] = {}
        self._controls: dict[UUID, list[Control]] = {}
        self._history: dict[UUID, list[BreachHistoryEntry]] = {}
        self._incidents: list[IncidentEvent] = []
        self._kris: dict[UUID, KRIDefinition] = {}
        self._breaches: dict[UUID, BreachRecord] = {}
        self._runs: dict[UUID, RecalcRun] = {}
        self._lock = asyncio.Lock()
        self.saved_scores: dict[UUID, dict[str, Any]] = {}

    # -------------------------------------------------------------------------
    # Seeding
    # -------------------------------------------------------------------------

    def add_risk(
        self,
        risk: RiskProfile,
        tolerances: list[ToleranceMetric] | None = None,
        controls: list[Control] | None = None,
    ) -> None:
        """Register a risk together with its linked tolerances and controls."""
        self._risks[risk.risk_id] = risk
        self._risk_tolerances[risk.risk_id] = []
        for tolerance in tolerances or []:
            self._tolerances[tolerance.tolerance_id] = tolerance
            self._risk_tolerances[risk.risk_id].append(tolerance.tolerance_id)
        self._controls[risk.risk_id] = list(controls or [])

    def add_tolerance(self, tolerance: ToleranceMetric) -> None:
        """Register or replace a tolerance metric."""
        self._tolerances[tolerance.tolerance_id] = tolerance

    def add_history(self, entry: BreachHistoryEntry) -> None:
        """Record one breached period of a tolerance."""
        self._history.setdefault(entry.tolerance_id, []).append(entry)

    def add_incident(self, incident: IncidentEvent) -> None:
        """Record an incident."""
        self._incidents.append(incident)

    def add_kri(self, kri: KRIDefinition) -> None:
        """Register or replace a KRI definition."""
        self._kris[kri.kri_id] = kri

    # -------------------------------------------------------------------------
    # RiskProvider / ToleranceProvider / ControlProvider
    # -------------------------------------------------------------------------

    async def get_risk(self, risk_id: UUID) -> RiskProfile | None:
        """Get a risk by ID."""
        return self._risks.get(risk_id)

    async def list_risk_ids(self, organization_id: UUID) -> list[UUID]:
        """List risk ids of an organization in insertion order."""
        return [r.risk_id for r in self._risks.values() if r.organization_id == organization_id]

    async def get_tolerances_for_risk(self, risk_id: UUID) -> list[ToleranceMetric]:
        """Get tolerances linked to a risk."""
        return [
            self._tolerances[tid]
            for tid in self._risk_tolerances.get(risk_id, [])
            if tid in self._tolerances
        ]

    async def get_controls_for_risk(self, risk_id: UUID) -> list[Control]:
        """Get controls linked to a risk."""
        return list(self._controls.get(risk_id, []))

    # -------------------------------------------------------------------------
    # BreachHistoryProvider
    # -------------------------------------------------------------------------

    async def count_consecutive_breach_periods(self, tolerance_id: UUID) -> int:
        """Count the unbroken run of most recent breached periods."""
        return count_consecutive_periods(self._history.get(tolerance_id, []))

    async def count_breaches_in_window(
        self,
        tolerance_id: UUID,
        window_days: int,
        *,
        as_of: datetime | None = None,
    ) -> int:
        """Count soft breaches measured within the window."""
        start = window_start(window_days, as_of)
        return sum(
            1
            for e in self._history.get(tolerance_id, [])
            if e.breach_type == BreachType.SOFT and e.measurement_date >= start
        )

    # -------------------------------------------------------------------------
    # MaterialityProvider
    # -------------------------------------------------------------------------

    async def get_materiality_inputs(
        self,
        risk_id: UUID,
        organization_id: UUID,
        rule: MaterialityRule,
        *,
        as_of: datetime | None = None,
    ) -> float | None:
        """Count incidents or return the residual score, per rule type."""
        risk = self._risks.get(risk_id)

        if rule.rule_type == MaterialityRuleType.SCORE_BAND:
            if risk is None or risk.residual_score is None:
                return None
            return float(risk.residual_score)

        if rule.rule_type != MaterialityRuleType.COUNT:
            return None

        since = ensure_utc(as_of or datetime.now(UTC)) - timedelta(
            days=rule.measurement_window_days
        )
        category_id = (
            risk.appetite_category.category_id
            if risk is not None and risk.appetite_category is not None
            else None
        )

        def in_scope(incident: IncidentEvent) -> bool:
            if incident.organization_id != organization_id:
                return False
            if rule.aggregation_scope == AggregationScope.RISK:
                return incident.risk_id == risk_id
            if rule.aggregation_scope == AggregationScope.CATEGORY:
                return category_id is not None and incident.category_id == category_id
            return True

        return float(
            sum(
                1
                for incident in self._incidents
                if in_scope(incident) and ensure_utc(incident.occurred_at) >= since
            )
        )

    # -------------------------------------------------------------------------
    # RiskScoreSink
    # -------------------------------------------------------------------------

    async def save_risk_scores(
        self,
        risk_id: UUID,
        residual: float,
        raf_adjusted: float,
        out_of_appetite: bool,
        snapshot: dict[str, Any] | None = None,
    ) -> None:
        """Persist recomputed scores on the risk."""
        risk = self._risks.get(risk_id)
        if risk is not None:
            self._risks[risk_id] = risk.model_copy(update={"residual_score": residual})
        self.saved_scores[risk_id] = {
            "residual_score": residual,
            "raf_adjusted_score": raf_adjusted,
            "out_of_appetite": out_of_appetite,
            "snapshot": snapshot,
        }

    # -------------------------------------------------------------------------
    # BreachStore
    # -------------------------------------------------------------------------

    async def save_breach(self, breach: BreachRecord) -> BreachRecord:
        """Insert a new breach record."""
        self._breaches[breach.breach_id] = breach
        return breach

    async def get_breach(self, breach_id: UUID) -> BreachRecord | None:
        """Get a breach record by ID."""
        return self._breaches.get(breach_id)

    async def update_breach_status(
        self,
        breach_id: UUID,
        status: BreachStatus,
        actor: str,
        at: datetime,
        notes: str | None = None,
        resolution_actions: str | None = None,
    ) -> BreachRecord:
        """Move a breach to ``status``.

        Raises:
            BreachNotFoundError: If the breach does not exist.
            InvalidBreachTransitionError: If ``status`` may not follow the
                stored status.
        """
        async with self._lock:
            breach = self._breaches.get(breach_id)
            if breach is None:
                raise BreachNotFoundError(breach_id)
            updated = breach.apply_transition(
                status, actor=actor, at=at, notes=notes, resolution_actions=resolution_actions
            )
            self._breaches[breach_id] = updated
            return updated

    async def list_breaches(self, organization_id: UUID) -> list[BreachRecord]:
        """List every breach of an organization."""
        return [b for b in self._breaches.values() if b.organization_id == organization_id]

    # -------------------------------------------------------------------------
    # KRIStore
    # -------------------------------------------------------------------------

    async def get_kri(self, kri_id: UUID) -> KRIDefinition | None:
        """Get a KRI definition by ID."""
        return self._kris.get(kri_id)

    async def tighten_kri_thresholds(
        self, kri_id: UUID, fraction: float, breach_id: UUID | None = None
    ) -> KRIDefinition:
        """Shrink KRI thresholds by ``fraction`` and flag ``breach_id``."""
        async with self._lock:
            kri = self._kris.get(kri_id)
            if kri is None:
                raise KRINotFoundError(kri_id)
            breach = None
            if breach_id is not None:
                breach = self._breaches.get(breach_id)
                if breach is None:
                    raise BreachNotFoundError(breach_id)

            tightened = kri.tightened(fraction)
            self._kris[kri_id] = tightened
            if breach is not None:
                self._breaches[breach.breach_id] = replace(
                    breach,
                    kri_threshold_tightened=True,
                    kri_threshold_tightened_by_percent=round_half_up(fraction * 100),
                    updated_at=datetime.now(UTC),
                )
            return tightened

    async def set_kri_thresholds(
        self,
        kri_id: UUID,
        warning_threshold: float | None,
        critical_threshold: float | None,
    ) -> KRIDefinition:
        """Overwrite KRI thresholds."""
        kri = self._kris.get(kri_id)
        if kri is None:
            raise KRINotFoundError(kri_id)
        updated = kri.model_copy(
            update={
                "warning_threshold": warning_threshold,
                "critical_threshold": critical_threshold,
            }
        )
        self._kris[kri_id] = updated
        return updated

    async def get_tolerance(self, tolerance_id: UUID) -> ToleranceMetric | None:
        """Get a tolerance metric by ID."""
        return self._tolerances.get(tolerance_id)

    # -------------------------------------------------------------------------
    # RecalcLockStore
    # -------------------------------------------------------------------------

    async def acquire_recalc_lock(
        self,
        organization_id: UUID,
        run_type: RecalcRunType = RecalcRunType.FULL,
        created_by: str | None = None,
    ) -> UUID | None:
        """Create a RUNNING run unless the organization already has one."""
        async with self._lock:
            for run in self._runs.values():
                if run.organization_id == organization_id and run.status == RecalcStatus.RUNNING:
                    return None
            run = RecalcRun(
                organization_id=organization_id, run_type=run_type, created_by=created_by
            )
            self._runs[run.run_id] = run
            return run.run_id

    async def complete_recalc_run(
        self,
        run_id: UUID,
        status: RecalcStatus,
        *,
        processed: int,
        updated: int,
        failed: int,
        error_message: str | None = None,
    ) -> None:
        """Close a run with its terminal status and counts."""
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                return
            run.status = status
            run.completed_at = datetime.now(UTC)
            run.risks_processed = processed
            run.risks_updated = updated
            run.risks_failed = failed
            run.error_message = error_message

    async def get_recalc_run(self, run_id: UUID) -> RecalcRun | None:
        """Get a recalculation run by ID."""
        return self._runs.get(run_id)

    async def list_recalc_runs(self, organization_id: UUID) -> list[RecalcRun]:
        """List runs of an organization, newest first."""
        runs = [r for r in self._runs.values() if r.organization_id == organization_id]
        return sorted(runs, key=lambda r: r.started_at, reverse=True)


def create_in_memory_store() -> InMemoryAppetiteStore:
    """Create an empty in-memory store."""
    return InMemoryAppetiteStore()
