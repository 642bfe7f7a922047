"""Breach management.

Persists breach records derived from tolerance evaluation or KRI readings,
applies severity-gated escalation, drives the review lifecycle and tightens
or resets KRI thresholds.

Lifecycle:
    OPEN -> ACKNOWLEDGED -> INVESTIGATING -> REMEDIATION_IN_PROGRESS
    -> PENDING_APPROVAL -> APPROVED | REJECTED -> RESOLVED -> CLOSED

Resolution may be recorded from any active state. No other step may be
skipped and no step moves backwards.
"""

from datetime import UTC, datetime
from uuid import UUID

from minrisk.appetite.providers import BreachStore, KRIStore
from minrisk.appetite.residual import round_half_up
from minrisk.appetite.types import (
    INACTIVE_BREACH_STATUSES,
    BreachDetectionResult,
    BreachDirection,
    BreachNotFoundError,
    BreachRecord,
    BreachSeverity,
    BreachStatistics,
    BreachStatus,
    BreachType,
    InvalidBreachTransitionError,
    KRIDefinition,
    KRINotFoundError,
    Severity,
    ToleranceMetric,
    ToleranceNotFoundError,
    ToleranceStatus,
    can_transition,
    ensure_utc,
)
from minrisk.config.settings import RAFEngineConfig
from minrisk.core.logging import get_logger
from minrisk.observability.metrics import (
    record_breach_created,
    record_breach_transition,
    record_kri_tightening,
)
from minrisk.utils.exceptions import ConfigurationError

logger = get_logger(__name__)

# =============================================================================
# Severity
# =============================================================================

# Evaluation severity of a soft breach -> breach record severity
SOFT_BREACH_SEVERITY: dict[Severity, BreachSeverity] = {
    Severity.INFO: BreachSeverity.MEDIUM,
    Severity.WARN: BreachSeverity.HIGH,
    Severity.CRITICAL: BreachSeverity.CRITICAL,
}


# =============================================================================
# Detection
# =============================================================================


def compute_variance(value: float, threshold: float) -> tuple[float, float]:
    """Absolute variance and variance as a percentage of |threshold|."""
    amount = abs(value - threshold)
    percentage = amount / abs(threshold) * 100 if threshold != 0 else 0.0
    return amount, percentage


def detect_breach(
    value: float,
    tolerance_threshold: float | None,
    soft_limit: float | None,
    hard_limit: float | None,
    direction: BreachDirection = BreachDirection.UP,
) -> BreachDetectionResult:
    """Classify a reading against hard limit, soft limit and tolerance threshold.

    Checks run in that order and the first exceeded threshold wins.
    Comparisons are strict.
    """

    def exceeds(threshold: float) -> bool:
        return value > threshold if direction == BreachDirection.UP else value < threshold

    checks = (
        (hard_limit, BreachType.HARD, BreachSeverity.CRITICAL),
        (soft_limit, BreachType.SOFT, BreachSeverity.HIGH),
        (tolerance_threshold, BreachType.SOFT, BreachSeverity.MEDIUM),
    )
    for threshold, breach_type, severity in checks:
        if threshold is not None and exceeds(threshold):
            amount, percentage = compute_variance(value, threshold)
            return BreachDetectionResult(
                is_breach=True,
                breach_type=breach_type,
                severity=severity,
                breach_value=value,
                threshold_value=threshold,
                variance_amount=amount,
                variance_percentage=percentage,
            )

    return BreachDetectionResult(
        is_breach=False,
        breach_type=None,
        severity=BreachSeverity.LOW,
        breach_value=value,
        threshold_value=0.0,
        variance_amount=0.0,
        variance_percentage=0.0,
    )


# =============================================================================
# Breach Manager
# =============================================================================


class BreachManager:
    """Creates breach records and drives their lifecycle.

    Example:
        ```python
        manager = BreachManager(store=store, kris=store)
        breach = await manager.record_tolerance_breach(tolerance, status, org_id)
        await manager.acknowledge(breach.breach_id, actor="risk.officer", at=now)
        ```
    """

    def __init__(
        self,
        store: BreachStore,
        kris: KRIStore | None = None,
        config: RAFEngineConfig | None = None,
    ) -> None:
        """Initialize the breach manager.

        Args:
            store: Breach record storage.
            kris: KRI storage, required for tightening and reset.
            config: Engine configuration (tightening fraction).
        """
        self.store = store
        self.kris = kris
        self.config = config or RAFEngineConfig()

    # -------------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------------

    async def create_breach(
        self,
        organization_id: UUID,
        breach_type: BreachType,
        breach_value: float,
        threshold_value: float,
        *,
        severity: BreachSeverity = BreachSeverity.MEDIUM,
        tolerance_id: UUID | None = None,
        risk_id: UUID | None = None,
        kri_id: UUID | None = None,
        at: datetime | None = None,
    ) -> BreachRecord:
        """Create an OPEN breach record and apply escalation.

        HARD and CRITICAL breaches are escalated to the CRO; CRITICAL
        breaches are also escalated to the board.
        """
        at = ensure_utc(at) if at is not None else datetime.now(UTC)
        amount, percentage = compute_variance(breach_value, threshold_value)

        breach = BreachRecord(
            organization_id=organization_id,
            breach_type=breach_type,
            breach_value=breach_value,
            threshold_value=threshold_value,
            tolerance_id=tolerance_id,
            risk_id=risk_id,
            kri_id=kri_id,
            breach_date=at,
            variance_amount=amount,
            variance_percentage=percentage,
            severity=severity,
            status=BreachStatus.OPEN,
            updated_at=at,
        )

        if breach_type in (BreachType.HARD, BreachType.CRITICAL):
            breach.escalated_to_cro = True
            breach.escalated_to_cro_at = at
        if breach_type == BreachType.CRITICAL:
            breach.escalated_to_board = True
            breach.escalated_to_board_at = at

        saved = await self.store.save_breach(breach)
        record_breach_created(breach_type.value, severity.value)

        logger.info(
            "breach_created",
            breach_id=str(saved.breach_id),
            breach_type=breach_type.value,
            severity=severity.value,
            tolerance_id=str(tolerance_id) if tolerance_id else None,
            escalated_to_cro=saved.escalated_to_cro,
            escalated_to_board=saved.escalated_to_board,
        )
        return saved

    async def record_tolerance_breach(
        self,
        tolerance: ToleranceMetric,
        status: ToleranceStatus,
        organization_id: UUID,
        *,
        risk_id: UUID | None = None,
        at: datetime | None = None,
    ) -> BreachRecord | None:
        """Persist a breach from a tolerance evaluation.

        The hard limit is the reference threshold when both limits are
        breached. Returns None when the status carries no breach.
        """
        if status.is_data_missing or status.current_value is None:
            return None

        if status.is_hard_breached and tolerance.hard_limit is not None:
            breach_type = BreachType.HARD
            severity = BreachSeverity.CRITICAL
            threshold = tolerance.hard_limit
        elif status.is_soft_breached and tolerance.soft_limit is not None:
            breach_type = BreachType.SOFT
            severity = SOFT_BREACH_SEVERITY[tolerance.escalation_severity_on_soft_breach]
            threshold = tolerance.soft_limit
        else:
            return None

        return await self.create_breach(
            organization_id,
            breach_type,
            status.current_value,
            threshold,
            severity=severity,
            tolerance_id=tolerance.tolerance_id,
            risk_id=risk_id,
            kri_id=tolerance.kri_id,
            at=at,
        )

    async def check_kri_reading(
        self,
        kri_id: UUID,
        value: float,
        *,
        at: datetime | None = None,
    ) -> tuple[BreachDetectionResult, BreachRecord | None]:
        """Check a KRI reading and record a breach against its tolerance.

        A KRI linked to a tolerance is checked against the tolerance's
        limits and direction, with the KRI warning threshold as the
        tolerance threshold; a breach is persisted. A standalone KRI is
        checked against its own thresholds and nothing is persisted.

        Raises:
            KRINotFoundError: If the KRI does not exist.
        """
        kri = await self._require_kri(kri_id)
        tolerance = None
        if kri.tolerance_id is not None and self.kris is not None:
            tolerance = await self.kris.get_tolerance(kri.tolerance_id)

        if tolerance is None:
            result = detect_breach(
                value, kri.warning_threshold, None, kri.critical_threshold, BreachDirection.UP
            )
            return result, None

        result = detect_breach(
            value,
            kri.warning_threshold,
            tolerance.soft_limit,
            tolerance.hard_limit,
            tolerance.breach_direction,
        )
        if not result.is_breach or result.breach_type is None or kri.organization_id is None:
            return result, None

        breach = await self.create_breach(
            kri.organization_id,
            result.breach_type,
            result.breach_value,
            result.threshold_value,
            severity=result.severity,
            tolerance_id=tolerance.tolerance_id,
            kri_id=kri_id,
            at=at,
        )
        return result, breach

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def get_breach(self, breach_id: UUID) -> BreachRecord:
        """Get a breach record.

        Raises:
            BreachNotFoundError: If the breach does not exist.
        """
        breach = await self.store.get_breach(breach_id)
        if breach is None:
            raise BreachNotFoundError(breach_id)
        return breach

    async def transition(
        self,
        breach_id: UUID,
        target: BreachStatus,
        actor: str,
        at: datetime,
        notes: str | None = None,
        resolution_actions: str | None = None,
    ) -> BreachRecord:
        """Move a breach to ``target``.

        Raises:
            BreachNotFoundError: If the breach does not exist.
            InvalidBreachTransitionError: If the move is not permitted.
            ValueError: If no actor is given.
        """
        if not actor:
            raise ValueError("Breach transitions require an actor")

        breach = await self.get_breach(breach_id)
        if not can_transition(breach.status, target):
            raise InvalidBreachTransitionError(breach_id, breach.status, target)

        # The store re-checks against the status it reloads
        updated = await self.store.update_breach_status(
            breach_id,
            target,
            actor=actor,
            at=at,
            notes=notes,
            resolution_actions=resolution_actions,
        )
        record_breach_transition(target.value)
        logger.info(
            "breach_transitioned",
            breach_id=str(breach_id),
            from_status=updated.transitions[-1].from_status.value,
            to_status=target.value,
            actor=actor,
        )
        return updated

    async def acknowledge(
        self, breach_id: UUID, actor: str, at: datetime, notes: str | None = None
    ) -> BreachRecord:
        """Acknowledge an open breach."""
        return await self.transition(breach_id, BreachStatus.ACKNOWLEDGED, actor, at, notes)

    async def start_investigation(
        self, breach_id: UUID, actor: str, at: datetime, notes: str | None = None
    ) -> BreachRecord:
        """Begin investigating an acknowledged breach."""
        return await self.transition(breach_id, BreachStatus.INVESTIGATING, actor, at, notes)

    async def start_remediation(
        self, breach_id: UUID, actor: str, at: datetime, notes: str | None = None
    ) -> BreachRecord:
        """Begin remediation after investigation."""
        return await self.transition(
            breach_id, BreachStatus.REMEDIATION_IN_PROGRESS, actor, at, notes
        )

    async def submit_for_approval(
        self, breach_id: UUID, actor: str, at: datetime, notes: str | None = None
    ) -> BreachRecord:
        """Submit completed remediation for approval."""
        return await self.transition(breach_id, BreachStatus.PENDING_APPROVAL, actor, at, notes)

    async def approve(
        self, breach_id: UUID, actor: str, at: datetime, notes: str | None = None
    ) -> BreachRecord:
        """Approve the remediation."""
        return await self.transition(breach_id, BreachStatus.APPROVED, actor, at, notes)

    async def reject(
        self, breach_id: UUID, actor: str, at: datetime, notes: str | None = None
    ) -> BreachRecord:
        """Reject the remediation."""
        return await self.transition(breach_id, BreachStatus.REJECTED, actor, at, notes)

    async def resolve(
        self,
        breach_id: UUID,
        actor: str,
        at: datetime,
        notes: str,
        resolution_actions: str | None = None,
    ) -> BreachRecord:
        """Resolve a breach from any active state."""
        return await self.transition(
            breach_id, BreachStatus.RESOLVED, actor, at, notes, resolution_actions
        )

    async def close(
        self, breach_id: UUID, actor: str, at: datetime, notes: str | None = None
    ) -> BreachRecord:
        """Close a resolved breach."""
        return await self.transition(breach_id, BreachStatus.CLOSED, actor, at, notes)

    # -------------------------------------------------------------------------
    # KRI thresholds
    # -------------------------------------------------------------------------

    def _kri_store(self) -> KRIStore:
        if self.kris is None:
            raise ConfigurationError("BreachManager has no KRI store configured")
        return self.kris

    async def tighten_kri_thresholds(
        self,
        kri_id: UUID,
        breach_id: UUID,
        fraction: float | None = None,
    ) -> KRIDefinition:
        """Shrink a KRI's thresholds after a breach.

        The KRI is tightened and the breach flagged in a single store call,
        so a failure leaves neither change behind.

        Args:
            kri_id: KRI to tighten.
            breach_id: Breach that triggered the tightening.
            fraction: Shrink fraction (defaults to the configured 20%).

        Returns:
            The tightened KRI definition.

        Raises:
            ValueError: If ``fraction`` is not strictly between 0 and 1.
            ConfigurationError: If the manager has no KRI store.
            KRINotFoundError: If the KRI does not exist.
            BreachNotFoundError: If the breach does not exist.
        """
        fraction = self.config.kri_tightening_fraction if fraction is None else fraction
        if not 0.0 < fraction < 1.0:
            raise ValueError(f"Tightening fraction must be between 0 and 1, got {fraction}")

        tightened = await self._kri_store().tighten_kri_thresholds(
            kri_id, fraction, breach_id=breach_id
        )
        record_kri_tightening()

        logger.info(
            "kri_thresholds_tightened",
            kri_id=str(kri_id),
            breach_id=str(breach_id),
            tightened_by_percent=round_half_up(fraction * 100),
            warning_threshold=tightened.warning_threshold,
            critical_threshold=tightened.critical_threshold,
        )
        return tightened

    async def reset_kri_thresholds(self, kri_id: UUID, tolerance_id: UUID) -> KRIDefinition:
        """Restore a KRI's thresholds from its governing tolerance.

        Warning threshold becomes the tolerance's soft limit and critical
        threshold its hard limit. Never called automatically.

        Raises:
            ConfigurationError: If the manager has no KRI store.
            KRINotFoundError: If the KRI does not exist.
            ToleranceNotFoundError: If the tolerance does not exist.
        """
        kris = self._kri_store()
        if await kris.get_kri(kri_id) is None:
            raise KRINotFoundError(kri_id)

        tolerance = await kris.get_tolerance(tolerance_id)
        if tolerance is None:
            raise ToleranceNotFoundError(tolerance_id)

        reset = await kris.set_kri_thresholds(
            kri_id, tolerance.soft_limit, tolerance.hard_limit
        )
        logger.info(
            "kri_thresholds_reset",
            kri_id=str(kri_id),
            tolerance_id=str(tolerance_id),
            warning_threshold=reset.warning_threshold,
            critical_threshold=reset.critical_threshold,
        )
        return reset

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def get_active_breaches(self, organization_id: UUID) -> list[BreachRecord]:
        """Breaches that are neither resolved nor closed, newest first."""
        breaches = await self.store.list_breaches(organization_id)
        active = [b for b in breaches if b.status not in INACTIVE_BREACH_STATUSES]
        return sorted(active, key=lambda b: b.breach_date, reverse=True)

    async def get_breach_statistics(self, organization_id: UUID) -> BreachStatistics:
        """Counts by type, severity and status plus mean resolution time."""
        breaches = await self.store.list_breaches(organization_id)
        stats = BreachStatistics(total=len(breaches))

        total_days = 0.0
        resolved = 0
        for breach in breaches:
            stats.by_type[breach.breach_type] += 1
            stats.by_severity[breach.severity] += 1
            if breach.status not in INACTIVE_BREACH_STATUSES:
                stats.open += 1
            if breach.resolved_at is not None:
                elapsed = ensure_utc(breach.resolved_at) - ensure_utc(breach.breach_date)
                total_days += elapsed.total_seconds() / 86400
                resolved += 1

        if resolved:
            stats.avg_resolution_days = round_half_up(total_days / resolved, 1)
        return stats


# =============================================================================
# Factory Function
# =============================================================================


def create_breach_manager(
    store: BreachStore,
    kris: KRIStore | None = None,
    config: RAFEngineConfig | None = None,
) -> BreachManager:
    """Create a breach manager."""
    return BreachManager(store=store, kris=kris, config=config)
