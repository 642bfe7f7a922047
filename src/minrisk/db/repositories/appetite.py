"""SQL implementation of the decision engine's provider contracts.

``SqlAppetiteStore`` opens one short-lived session per operation, so a
single instance can be shared by the concurrent per-risk workers of a
recalculation run.

Usage:
    from minrisk.db.config import create_session_factory
    from minrisk.db.repositories import SqlAppetiteStore

    store = SqlAppetiteStore(create_session_factory())
    scorer = create_raf_scorer(store)
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from uuid_utils.compat import uuid7

from minrisk.appetite.providers import count_consecutive_periods, window_start
from minrisk.appetite.residual import round_half_up
from minrisk.appetite.types import (
    AggregationScope,
    AppetiteCategory,
    AppetiteLevel,
    BreachDirection,
    BreachHistoryEntry,
    BreachNotFoundError,
    BreachRecord,
    BreachRule,
    BreachRuleConfig,
    BreachSeverity,
    BreachStatus,
    BreachTransition,
    BreachType,
    ComparisonOperator,
    Control,
    KRIDefinition,
    KRINotFoundError,
    MaterialityRule,
    MaterialityRuleType,
    ProviderError,
    RecalcRun,
    RecalcRunType,
    RecalcStatus,
    RiskProfile,
    Severity,
    ToleranceMetric,
    ensure_utc,
)
from minrisk.core.logging import get_logger
from minrisk.db.models import (
    AppetiteCategoryModel,
    IncidentModel,
    KRIDefinitionModel,
    RecalcRunModel,
    RiskBreachModel,
    RiskControlModel,
    RiskModel,
    RiskToleranceLinkModel,
    ToleranceBreachHistoryModel,
    ToleranceMetricModel,
)

logger = get_logger(__name__)


# =============================================================================
# Row Mapping
# =============================================================================


def as_single(related: Any) -> Any:
    """Collapse a related record delivered as a list or an object.

    Returns the first element of a list, the object itself otherwise, and
    None for an empty list.
    """
    if isinstance(related, (list, tuple)):
        return related[0] if related else None
    return related


def _utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


def category_from_row(row: AppetiteCategoryModel | None) -> AppetiteCategory | None:
    """Map an appetite category row, parsing its JSON materiality rule."""
    if row is None:
        return None
    rule = MaterialityRule.model_validate(row.materiality_rule) if row.materiality_rule else None
    return AppetiteCategory(
        category_id=row.category_id,
        appetite_level=AppetiteLevel(row.appetite_level),
        risk_category=row.risk_category,
        materiality_rule=rule,
    )


def risk_from_row(row: RiskModel) -> RiskProfile:
    """Map a risk row and its (optional) category."""
    return RiskProfile(
        risk_id=row.risk_id,
        organization_id=row.organization_id,
        title=row.title,
        likelihood_inherent=row.likelihood_inherent,
        impact_inherent=row.impact_inherent,
        appetite_category=category_from_row(as_single(row.appetite_category)),
        residual_score=row.residual_score,
    )


def tolerance_from_row(row: ToleranceMetricModel) -> ToleranceMetric:
    """Map a tolerance metric row."""
    return ToleranceMetric(
        tolerance_id=row.tolerance_id,
        metric_name=row.metric_name,
        metric_id=row.metric_id,
        kri_id=row.kri_id,
        soft_limit=row.soft_limit,
        hard_limit=row.hard_limit,
        breach_direction=BreachDirection(row.breach_direction),
        comparison_operator=ComparisonOperator(row.comparison_operator),
        breach_rule=BreachRule(row.breach_rule),
        breach_rule_config=BreachRuleConfig.model_validate(row.breach_rule_config or {}),
        measurement_window_days=row.measurement_window_days,
        escalation_severity_on_soft_breach=Severity(row.escalation_severity_on_soft_breach),
        current_value=row.current_value,
        last_measurement_date=_utc(row.last_measurement_date),
    )


def control_from_row(row: RiskControlModel) -> Control:
    """Map a risk control row."""
    return Control(
        control_id=row.control_id,
        name=row.name,
        design_score=row.design_score,
        implementation_score=row.implementation_score,
        monitoring_score=row.monitoring_score,
        evaluation_score=row.evaluation_score,
    )


def kri_from_row(row: KRIDefinitionModel) -> KRIDefinition:
    """Map a KRI definition row."""
    return KRIDefinition(
        kri_id=row.kri_id,
        organization_id=row.organization_id,
        tolerance_id=row.tolerance_id,
        name=row.name,
        warning_threshold=row.warning_threshold,
        critical_threshold=row.critical_threshold,
    )


def _transition_from_dict(data: dict[str, Any]) -> BreachTransition:
    return BreachTransition(
        from_status=BreachStatus(data["from_status"]),
        to_status=BreachStatus(data["to_status"]),
        actor=data["actor"],
        at=ensure_utc(datetime.fromisoformat(data["at"])),
        notes=data.get("notes"),
    )


def breach_from_row(row: RiskBreachModel) -> BreachRecord:
    """Map a breach row, including its transition trail."""
    return BreachRecord(
        breach_id=row.breach_id,
        organization_id=row.organization_id,
        tolerance_id=row.tolerance_id,
        risk_id=row.risk_id,
        kri_id=row.kri_id,
        breach_type=BreachType(row.breach_type),
        breach_date=ensure_utc(row.breach_date),
        breach_value=row.breach_value,
        threshold_value=row.threshold_value,
        variance_amount=row.variance_amount,
        variance_percentage=row.variance_percentage,
        severity=BreachSeverity(row.severity),
        status=BreachStatus(row.status),
        escalated_to_cro=row.escalated_to_cro,
        escalated_to_cro_at=_utc(row.escalated_to_cro_at),
        escalated_to_board=row.escalated_to_board,
        escalated_to_board_at=_utc(row.escalated_to_board_at),
        kri_threshold_tightened=row.kri_threshold_tightened,
        kri_threshold_tightened_by_percent=row.kri_threshold_tightened_by_percent,
        acknowledged_by=row.acknowledged_by,
        acknowledged_at=_utc(row.acknowledged_at),
        acknowledged_notes=row.acknowledged_notes,
        resolved_by=row.resolved_by,
        resolved_at=_utc(row.resolved_at),
        resolution_notes=row.resolution_notes,
        resolution_actions=row.resolution_actions,
        closed_at=_utc(row.closed_at),
        transitions=[_transition_from_dict(t) for t in row.transitions or []],
        updated_at=_utc(row.updated_at) or datetime.now(UTC),
    )


def _breach_columns(breach: BreachRecord) -> dict[str, Any]:
    """Column values of a breach record (everything but the primary key)."""
    return {
        "organization_id": breach.organization_id,
        "tolerance_id": breach.tolerance_id,
        "risk_id": breach.risk_id,
        "kri_id": breach.kri_id,
        "breach_type": breach.breach_type.value,
        "breach_date": ensure_utc(breach.breach_date),
        "breach_value": breach.breach_value,
        "threshold_value": breach.threshold_value,
        "variance_amount": breach.variance_amount,
        "variance_percentage": breach.variance_percentage,
        "severity": breach.severity.value,
        "status": breach.status.value,
        "escalated_to_cro": breach.escalated_to_cro,
        "escalated_to_cro_at": _utc(breach.escalated_to_cro_at),
        "escalated_to_board": breach.escalated_to_board,
        "escalated_to_board_at": _utc(breach.escalated_to_board_at),
        "kri_threshold_tightened": breach.kri_threshold_tightened,
        "kri_threshold_tightened_by_percent": breach.kri_threshold_tightened_by_percent,
        "acknowledged_by": breach.acknowledged_by,
        "acknowledged_at": _utc(breach.acknowledged_at),
        "acknowledged_notes": breach.acknowledged_notes,
        "resolved_by": breach.resolved_by,
        "resolved_at": _utc(breach.resolved_at),
        "resolution_notes": breach.resolution_notes,
        "resolution_actions": breach.resolution_actions,
        "closed_at": _utc(breach.closed_at),
        "transitions": [t.to_dict() for t in breach.transitions],
    }


# Columns a lifecycle move writes. KRI tightening only writes its own pair.
TRANSITION_COLUMNS = (
    "status",
    "acknowledged_by",
    "acknowledged_at",
    "acknowledged_notes",
    "resolved_by",
    "resolved_at",
    "resolution_notes",
    "resolution_actions",
    "closed_at",
    "transitions",
)


def recalc_run_from_row(row: RecalcRunModel) -> RecalcRun:
    """Map a recalculation run row."""
    return RecalcRun(
        run_id=row.run_id,
        organization_id=row.organization_id,
        run_type=RecalcRunType(row.run_type),
        status=RecalcStatus(row.status),
        started_at=ensure_utc(row.started_at),
        completed_at=_utc(row.completed_at),
        risks_processed=row.risks_processed,
        risks_updated=row.risks_updated,
        risks_failed=row.risks_failed,
        error_message=row.error_message,
        created_by=row.created_by,
    )


# =============================================================================
# SQL Store
# =============================================================================


class SqlAppetiteStore:
    """Database-backed implementation of every engine provider.

    Database failures surface as ProviderError carrying the failed
    operation; callers never see raw SQLAlchemy exceptions.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        """Initialize the store.

        Args:
            session_factory: Factory for async sessions bound to the engine.
        """
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                logger.warning("database_operation_failed", operation=operation, error=str(e))
                raise ProviderError(
                    f"Database error during {operation}", operation=operation
                ) from e

    # -------------------------------------------------------------------------
    # RiskProvider / ToleranceProvider / ControlProvider
    # -------------------------------------------------------------------------

    async def get_risk(self, risk_id: UUID) -> RiskProfile | None:
        """Get a risk with its appetite category, or None."""
        async with self._session("get_risk") as session:
            stmt = (
                select(RiskModel)
                .options(selectinload(RiskModel.appetite_category))
                .where(RiskModel.risk_id == risk_id)
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return risk_from_row(row) if row is not None else None

    async def list_risk_ids(self, organization_id: UUID) -> list[UUID]:
        """List the ids of every risk of an organization, oldest first."""
        async with self._session("list_risk_ids") as session:
            stmt = (
                select(RiskModel.risk_id)
                .where(RiskModel.organization_id == organization_id)
                .order_by(RiskModel.created_at, RiskModel.risk_id)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def get_tolerances_for_risk(self, risk_id: UUID) -> list[ToleranceMetric]:
        """Get the tolerances linked to a risk."""
        async with self._session("get_tolerances_for_risk") as session:
            stmt = (
                select(ToleranceMetricModel)
                .join(
                    RiskToleranceLinkModel,
                    RiskToleranceLinkModel.tolerance_id == ToleranceMetricModel.tolerance_id,
                )
                .where(RiskToleranceLinkModel.risk_id == risk_id)
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [tolerance_from_row(row) for row in rows]

    async def get_controls_for_risk(self, risk_id: UUID) -> list[Control]:
        """Get the controls linked to a risk."""
        async with self._session("get_controls_for_risk") as session:
            stmt = select(RiskControlModel).where(RiskControlModel.risk_id == risk_id)
            rows = (await session.execute(stmt)).scalars().all()
            return [control_from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # BreachHistoryProvider
    # -------------------------------------------------------------------------

    async def count_consecutive_breach_periods(self, tolerance_id: UUID) -> int:
        """Count the unbroken run of most recent unresolved soft breaches."""
        async with self._session("count_consecutive_breach_periods") as session:
            stmt = (
                select(ToleranceBreachHistoryModel)
                .where(ToleranceBreachHistoryModel.tolerance_id == tolerance_id)
                .where(ToleranceBreachHistoryModel.breach_type == BreachType.SOFT.value)
                .where(ToleranceBreachHistoryModel.resolved.is_(False))
                .order_by(ToleranceBreachHistoryModel.period_number.desc())
            )
            rows = (await session.execute(stmt)).scalars().all()
            return count_consecutive_periods(
                [
                    BreachHistoryEntry(
                        tolerance_id=row.tolerance_id,
                        period_number=row.period_number,
                        measurement_date=row.measurement_date,
                        breach_type=BreachType(row.breach_type),
                        measured_value=row.measured_value,
                        resolved=row.resolved,
                    )
                    for row in rows
                ]
            )

    async def count_breaches_in_window(
        self,
        tolerance_id: UUID,
        window_days: int,
        *,
        as_of: datetime | None = None,
    ) -> int:
        """Count soft breaches measured within the last ``window_days``."""
        start: date = window_start(window_days, as_of)
        async with self._session("count_breaches_in_window") as session:
            stmt = (
                select(func.count())
                .select_from(ToleranceBreachHistoryModel)
                .where(ToleranceBreachHistoryModel.tolerance_id == tolerance_id)
                .where(ToleranceBreachHistoryModel.breach_type == BreachType.SOFT.value)
                .where(ToleranceBreachHistoryModel.measurement_date >= start)
            )
            return int((await session.execute(stmt)).scalar_one())

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
        """Count incidents in scope, or return the stored residual score.

        Amount and percentage rules have no data source and return None.
        """
        if rule.rule_type not in (MaterialityRuleType.COUNT, MaterialityRuleType.SCORE_BAND):
            return None

        async with self._session("get_materiality_inputs") as session:
            risk = await session.get(RiskModel, risk_id)

            if rule.rule_type == MaterialityRuleType.SCORE_BAND:
                if risk is None or risk.residual_score is None:
                    return None
                return float(risk.residual_score)

            since = ensure_utc(as_of or datetime.now(UTC)) - timedelta(
                days=rule.measurement_window_days
            )
            stmt = (
                select(func.count())
                .select_from(IncidentModel)
                .where(IncidentModel.organization_id == organization_id)
                .where(IncidentModel.occurred_at >= since)
            )
            if rule.aggregation_scope == AggregationScope.RISK:
                stmt = stmt.where(IncidentModel.risk_id == risk_id)
            elif rule.aggregation_scope == AggregationScope.CATEGORY:
                category_id = risk.appetite_category_id if risk is not None else None
                if category_id is None:
                    return 0.0
                stmt = stmt.where(IncidentModel.category_id == category_id)

            return float((await session.execute(stmt)).scalar_one())

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
        """Persist the recomputed scores and verdict snapshot on the risk row."""
        async with self._session("save_risk_scores") as session:
            await session.execute(
                update(RiskModel)
                .where(RiskModel.risk_id == risk_id)
                .values(
                    residual_score=residual,
                    raf_adjusted_score=raf_adjusted,
                    out_of_appetite=out_of_appetite,
                    appetite_status=snapshot,
                    last_scored_at=datetime.now(UTC),
                )
            )
            await session.commit()

    # -------------------------------------------------------------------------
    # BreachStore
    # -------------------------------------------------------------------------

    async def save_breach(self, breach: BreachRecord) -> BreachRecord:
        """Insert a new breach record."""
        async with self._session("save_breach") as session:
            session.add(RiskBreachModel(breach_id=breach.breach_id, **_breach_columns(breach)))
            await session.commit()
        return breach

    async def get_breach(self, breach_id: UUID) -> BreachRecord | None:
        """Get a breach record by ID."""
        async with self._session("get_breach") as session:
            row = await session.get(RiskBreachModel, breach_id)
            return breach_from_row(row) if row is not None else None

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

        The UPDATE only matches while the row still holds the status the move
        was checked against. When another writer got there first the row is
        reloaded and the move checked again, so it either applies on top of
        the newer state or fails with ``InvalidBreachTransitionError``.
        """
        operation = "update_breach_status"
        async with self._session(operation) as session:
            # Statuses only move forward, so a breach can lose at most this many races
            for _ in range(len(BreachStatus)):
                row = await session.get(RiskBreachModel, breach_id, populate_existing=True)
                if row is None:
                    raise BreachNotFoundError(breach_id)
                current = breach_from_row(row)
                updated = current.apply_transition(
                    status, actor=actor, at=at, notes=notes, resolution_actions=resolution_actions
                )
                columns = _breach_columns(updated)
                result = await session.execute(
                    update(RiskBreachModel)
                    .where(
                        RiskBreachModel.breach_id == breach_id,
                        RiskBreachModel.status == current.status.value,
                    )
                    .values({name: columns[name] for name in TRANSITION_COLUMNS})
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    await session.commit()
                    return updated
                await session.rollback()
                logger.debug(
                    "breach_status_conflict",
                    breach_id=str(breach_id),
                    expected_status=current.status.value,
                    target_status=status.value,
                )

        raise ProviderError(
            f"Breach {breach_id} kept changing while moving it to {status.value}",
            operation=operation,
            details={"breach_id": str(breach_id)},
        )

    async def list_breaches(self, organization_id: UUID) -> list[BreachRecord]:
        """List every breach of an organization, newest first."""
        async with self._session("list_breaches") as session:
            stmt = (
                select(RiskBreachModel)
                .where(RiskBreachModel.organization_id == organization_id)
                .order_by(RiskBreachModel.breach_date.desc())
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [breach_from_row(row) for row in rows]

    # -------------------------------------------------------------------------
    # KRIStore
    # -------------------------------------------------------------------------

    async def get_kri(self, kri_id: UUID) -> KRIDefinition | None:
        """Get a KRI definition by ID."""
        async with self._session("get_kri") as session:
            row = await session.get(KRIDefinitionModel, kri_id)
            return kri_from_row(row) if row is not None else None

    async def tighten_kri_thresholds(
        self, kri_id: UUID, fraction: float, breach_id: UUID | None = None
    ) -> KRIDefinition:
        """Shrink thresholds by ``fraction`` and flag ``breach_id`` in one transaction."""
        async with self._session("tighten_kri_thresholds") as session:
            row = await session.get(KRIDefinitionModel, kri_id, with_for_update=True)
            if row is None:
                raise KRINotFoundError(kri_id)
            if breach_id is not None:
                result = await session.execute(
                    update(RiskBreachModel)
                    .where(RiskBreachModel.breach_id == breach_id)
                    .values(
                        kri_threshold_tightened=True,
                        kri_threshold_tightened_by_percent=round_half_up(fraction * 100),
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise BreachNotFoundError(breach_id)
            tightened = kri_from_row(row).tightened(fraction)
            row.warning_threshold = tightened.warning_threshold
            row.critical_threshold = tightened.critical_threshold
            await session.commit()
            return tightened

    async def set_kri_thresholds(
        self,
        kri_id: UUID,
        warning_threshold: float | None,
        critical_threshold: float | None,
    ) -> KRIDefinition:
        """Overwrite warning/critical thresholds."""
        async with self._session("set_kri_thresholds") as session:
            row = await session.get(KRIDefinitionModel, kri_id, with_for_update=True)
            if row is None:
                raise KRINotFoundError(kri_id)
            row.warning_threshold = warning_threshold
            row.critical_threshold = critical_threshold
            updated = kri_from_row(row)
            await session.commit()
            return updated

    async def get_tolerance(self, tolerance_id: UUID) -> ToleranceMetric | None:
        """Get a tolerance metric by ID."""
        async with self._session("get_tolerance") as session:
            row = await session.get(ToleranceMetricModel, tolerance_id)
            return tolerance_from_row(row) if row is not None else None

    # -------------------------------------------------------------------------
    # RecalcLockStore
    # -------------------------------------------------------------------------

    async def acquire_recalc_lock(
        self,
        organization_id: UUID,
        run_type: RecalcRunType = RecalcRunType.FULL,
        created_by: str | None = None,
    ) -> UUID | None:
        """Insert a RUNNING run; None if the organization already has one.

        The partial unique index on running runs makes the insert itself
        the check-and-set.
        """
        run_id = uuid7()
        async with self._session("acquire_recalc_lock") as session:
            session.add(
                RecalcRunModel(
                    run_id=run_id,
                    organization_id=organization_id,
                    run_type=run_type.value,
                    status=RecalcStatus.RUNNING.value,
                    started_at=datetime.now(UTC),
                    created_by=created_by,
                )
            )
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                logger.debug("recalc_lock_held", organization_id=str(organization_id))
                return None
        return run_id

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
        """Close a run with its terminal status and counts, releasing the lock."""
        async with self._session("complete_recalc_run") as session:
            await session.execute(
                update(RecalcRunModel)
                .where(RecalcRunModel.run_id == run_id)
                .values(
                    status=status.value,
                    completed_at=datetime.now(UTC),
                    risks_processed=processed,
                    risks_updated=updated,
                    risks_failed=failed,
                    error_message=error_message,
                )
            )
            await session.commit()

    async def get_recalc_run(self, run_id: UUID) -> RecalcRun | None:
        """Get a recalculation run by ID."""
        async with self._session("get_recalc_run") as session:
            row = await session.get(RecalcRunModel, run_id)
            return recalc_run_from_row(row) if row is not None else None

    async def list_recalc_runs(self, organization_id: UUID) -> list[RecalcRun]:
        """List runs of an organization, newest first."""
        async with self._session("list_recalc_runs") as session:
            stmt = (
                select(RecalcRunModel)
                .where(RecalcRunModel.organization_id == organization_id)
                .order_by(RecalcRunModel.started_at.desc())
            )
            rows = (await session.execute(stmt)).scalars().all()
            return [recalc_run_from_row(row) for row in rows]


def create_sql_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlAppetiteStore:
    """Create a SQL store bound to a session factory."""
    return SqlAppetiteStore(session_factory)
