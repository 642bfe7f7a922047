"""Organization-wide RAF recalculation.

Re-scores every risk of an organization under an exclusive, durable
per-organization run lock. A second caller while a run is active gets an
empty summary back immediately; there is no queuing and no retry.

The run always ends with a terminal status and counts. Individual risk
failures are counted and logged but never abort the run; a timeout,
cancellation or unexpected error marks it FAILED. The lock is released in
every case.
"""

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID

from minrisk.appetite.providers import RecalcLockStore, RiskProvider
from minrisk.appetite.scoring import RAFScorer, create_raf_scorer
from minrisk.appetite.types import RecalcRun, RecalcRunType, RecalcStatus, RecalcSummary
from minrisk.config.settings import RAFEngineConfig
from minrisk.core.context import create_context, evaluation_context
from minrisk.core.logging import get_logger
from minrisk.observability.metrics import (
    observe_recalc_duration,
    record_lock_contention,
    record_recalc_risk_failure,
)

logger = get_logger(__name__)


@dataclass
class _RunCounters:
    """Mutable tallies shared by the per-risk workers of one run."""

    updated: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.updated + self.failed


class RecalculationCoordinator:
    """Fans RAF scoring out across all risks of an organization.

    Example:
        ```python
        coordinator = RecalculationCoordinator(scorer=scorer, risks=store, locks=store)
        summary = await coordinator.recalculate_organization(org_id, actor_id="scheduler")
        if not summary.acquired:
            ...  # another run is active
        ```
    """

    def __init__(
        self,
        scorer: RAFScorer,
        risks: RiskProvider,
        locks: RecalcLockStore,
        config: RAFEngineConfig | None = None,
    ) -> None:
        """Initialize the coordinator.

        Args:
            scorer: Per-risk scorer; must carry a score sink to persist.
            risks: Lists the organization's risks.
            locks: Run lock and audit record storage.
            config: Engine configuration (timeout, worker pool size).
        """
        self.scorer = scorer
        self.risks = risks
        self.locks = locks
        self.config = config or scorer.config

    async def recalculate_organization(
        self,
        organization_id: UUID,
        *,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> RecalcSummary:
        """Recalculate and persist RAF scores for every risk of an organization.

        Args:
            organization_id: Organization to recalculate.
            actor_id: User or service that requested the run.
            now: Evaluation instant shared by every risk in the run.

        Returns:
            RecalcSummary. ``acquired`` is False, with zero counts, when
            another run already holds the lock.
        """
        run_id = await self.locks.acquire_recalc_lock(
            organization_id, RecalcRunType.FULL, created_by=actor_id
        )
        if run_id is None:
            record_lock_contention()
            logger.info(
                "recalc_lock_contended",
                organization_id=str(organization_id),
                actor_id=actor_id,
            )
            return RecalcSummary(updated=0, errors=0, processed=0, acquired=False)

        now = now or datetime.now(UTC)
        counters = _RunCounters()
        status = RecalcStatus.FAILED
        error_message: str | None = None
        timeout = self.config.recalc_timeout_seconds

        ctx = create_context(organization_id, actor_id=actor_id, run_id=run_id)
        with evaluation_context(ctx), observe_recalc_duration() as metrics_ctx:
            logger.info("recalc_started", timeout_seconds=timeout)
            try:
                async with asyncio.timeout(timeout):
                    risk_ids = await self.risks.list_risk_ids(organization_id)
                    await self._update_all(risk_ids, counters, now)
                status = RecalcStatus.COMPLETED
            except TimeoutError:
                error_message = f"Recalculation timed out after {timeout} seconds"
                logger.error("recalc_timed_out", processed=counters.processed)
            except asyncio.CancelledError:
                error_message = "Recalculation cancelled"
                logger.warning("recalc_cancelled", processed=counters.processed)
                raise
            except Exception as e:
                error_message = str(e) or type(e).__name__
                logger.error("recalc_failed", error=error_message, exc_info=True)
            finally:
                metrics_ctx["status"] = status.value
                await self._complete(run_id, status, counters, error_message)

        logger.info(
            "recalc_finished",
            organization_id=str(organization_id),
            run_id=str(run_id),
            status=status.value,
            updated=counters.updated,
            errors=counters.failed,
        )
        errors = counters.failed
        if status == RecalcStatus.FAILED and errors == 0:
            errors = 1
        return RecalcSummary(
            updated=counters.updated,
            errors=errors,
            processed=counters.processed,
            run_id=run_id,
            acquired=True,
            status=status,
        )

    async def get_run(self, run_id: UUID) -> RecalcRun | None:
        """Get the audit record of a run."""
        return await self.locks.get_recalc_run(run_id)

    async def _update_all(
        self,
        risk_ids: list[UUID],
        counters: _RunCounters,
        now: datetime,
    ) -> None:
        semaphore = asyncio.Semaphore(self.config.max_concurrent_risk_updates)

        async def update_one(risk_id: UUID) -> None:
            async with semaphore:
                try:
                    await self.scorer.update_risk(risk_id, now=now)
                except Exception:
                    # A single risk's failure is counted, never fatal to the run
                    counters.failed += 1
                    record_recalc_risk_failure()
                    logger.error("risk_update_failed", risk_id=str(risk_id), exc_info=True)
                else:
                    counters.updated += 1

        await asyncio.gather(*(update_one(risk_id) for risk_id in risk_ids))

    async def _complete(
        self,
        run_id: UUID,
        status: RecalcStatus,
        counters: _RunCounters,
        error_message: str | None,
    ) -> None:
        try:
            await self.locks.complete_recalc_run(
                run_id,
                status,
                processed=counters.processed,
                updated=counters.updated,
                failed=counters.failed,
                error_message=error_message,
            )
        except Exception:
            logger.error("recalc_run_completion_failed", run_id=str(run_id), exc_info=True)


# =============================================================================
# Factory Function
# =============================================================================


def create_recalculation_coordinator(
    store: object,
    config: RAFEngineConfig | None = None,
) -> RecalculationCoordinator:
    """Create a coordinator backed by one store implementing every provider.

    Args:
        store: An object implementing the provider, sink and lock protocols,
            such as InMemoryAppetiteStore or SqlAppetiteStore.
        config: Optional engine configuration.

    Returns:
        Configured RecalculationCoordinator.
    """
    scorer = create_raf_scorer(store, config=config)
    return RecalculationCoordinator(
        scorer=scorer,
        risks=store,  # type: ignore[arg-type]
        locks=store,  # type: ignore[arg-type]
        config=config,
    )
