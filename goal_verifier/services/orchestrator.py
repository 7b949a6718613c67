"""Verification orchestrator - scheduled, webhook and manual verification cycles"""

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from goal_verifier.config import Settings
from goal_verifier.domain.conditions import is_goal_satisfied, required_days
from goal_verifier.domain.exceptions import GoalNotVerifiableError, VerificationCycleError
from goal_verifier.domain.models import (
    CycleReport,
    Goal,
    GoalStatus,
    HealthDataType,
    HealthRecord,
    VerificationResult,
)
from goal_verifier.domain.normalizer import normalize_health_data
from goal_verifier.domain.streaks import evaluate_streak
from goal_verifier.infrastructure.clients.whoop import WhoopClient
from goal_verifier.infrastructure.database.repositories import GoalStore
from goal_verifier.infrastructure.observability.logging import log_cycle, log_verification
from goal_verifier.infrastructure.observability.metrics import (
    record_cycle,
    vendor_fetch_failures_counter,
    verification_counter,
)
from goal_verifier.services.payouts import PayoutExecutor
from goal_verifier.utils.date_utils import utcnow

TRIGGER_SCHEDULED = "scheduled"
TRIGGER_MANUAL = "manual"
TRIGGER_WEBHOOK = "webhook"


@dataclass(frozen=True)
class VerificationConfig:
    """Runtime knobs of the orchestrator"""

    verification_interval_seconds: float = 3600.0
    scheduled_lookback_days: int = 30
    webhook_lookback_days: int = 7
    auto_payout: bool = True
    vendor_fetch_timeout_seconds: float = 30.0
    max_concurrent_goals: int = 10

    @classmethod
    def from_settings(cls, settings: Settings) -> "VerificationConfig":
        return cls(
            verification_interval_seconds=settings.verification_interval_seconds,
            scheduled_lookback_days=settings.scheduled_lookback_days,
            webhook_lookback_days=settings.webhook_lookback_days,
            auto_payout=settings.auto_payout,
            vendor_fetch_timeout_seconds=settings.vendor_fetch_timeout_seconds,
            max_concurrent_goals=settings.max_concurrent_goals,
        )


class VerificationOrchestrator:
    """
    Coordinates fetch -> evaluate -> decide -> payout -> persist.

    All three trigger paths share one cycle implementation and may run
    concurrently; double payouts are prevented by the GoalStore claim and the
    PayoutExecutor, not by serializing cycles.
    """

    def __init__(
        self,
        store: GoalStore,
        vendor: WhoopClient,
        payout_executor: PayoutExecutor,
        config: VerificationConfig | None = None,
    ):
        self.store = store
        self.vendor = vendor
        self.payout_executor = payout_executor
        self.config = config or VerificationConfig()
        self.is_running = False
        self.last_verification: Optional[datetime] = None
        self.last_report: Optional[CycleReport] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the scheduled loop; the first cycle runs immediately"""
        if self.is_running:
            logging.info("Verification scheduler already running")
            return

        logging.info(
            "Starting verification scheduler",
            extra={"step": "scheduler_start", "config": asdict(self.config)},
        )
        self.is_running = True
        stop_event = asyncio.Event()
        self._stop_event = stop_event

        # A stopped loop may still be finishing its last cycle; never run two loops
        if self._task is not None and not self._task.done():
            await self._task
        if stop_event.is_set():
            return
        self._task = asyncio.create_task(self._scheduler_loop(stop_event))

    def stop(self) -> None:
        """Prevent new cycles from starting; an in-flight cycle runs to completion"""
        if self._stop_event is not None:
            self._stop_event.set()
        self.is_running = False
        logging.info("Verification scheduler stopped", extra={"step": "scheduler_stop"})

    async def join(self) -> None:
        """Wait for the scheduler loop (and its in-flight cycle) to finish"""
        if self._task is not None:
            await self._task
            self._task = None

    async def _scheduler_loop(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self._run_cycle(TRIGGER_SCHEDULED, self.store.list_active, self.config.scheduled_lookback_days)
            except Exception as e:
                # Next tick retries naturally
                logging.error(f"Scheduled verification cycle failed: {e!r}", extra={"step": "cycle_failed"})

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.config.verification_interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def trigger_manual_verification(self) -> CycleReport:
        """On-demand cycle over all active goals"""
        logging.info("Manual verification triggered", extra={"step": "trigger", "trigger": TRIGGER_MANUAL})
        return await self._run_cycle(TRIGGER_MANUAL, self.store.list_active, self.config.scheduled_lookback_days)

    async def trigger_verification_for_data_type(
        self,
        data_type: HealthDataType,
        event_payload: Dict[str, Any] | None = None,
    ) -> CycleReport:
        """Webhook cycle: only goals of one data type, over a shorter window"""
        data_type = HealthDataType(data_type)
        logging.info(
            f"Webhook-triggered verification for {data_type.value}",
            extra={
                "step": "trigger",
                "trigger": TRIGGER_WEBHOOK,
                "event_type": (event_payload or {}).get("event_type"),
            },
        )

        def select(now: datetime) -> List[Goal]:
            return self.store.list_active_by_data_type(data_type, now)

        return await self._run_cycle(TRIGGER_WEBHOOK, select, self.config.webhook_lookback_days)

    async def verify_goal(self, goal_id: str) -> VerificationResult:
        """
        Verify a single goal on demand.

        Raises:
            GoalNotFoundError: Unknown goal id
            GoalNotVerifiableError: Goal is completed or past its deadline
        """
        goal = self.store.get(goal_id)
        now = utcnow()
        status = goal.status(now)
        if status != GoalStatus.ACTIVE:
            raise GoalNotVerifiableError(f"Goal {goal_id} is {status.value}")

        records = await self._fetch_records(self.config.scheduled_lookback_days)
        if not records:
            # Data unavailable leaves the goal untouched
            return VerificationResult(
                goal_id=goal.id,
                is_successful=False,
                consecutive_days=goal.consecutive_success_days,
                required_days=goal.required_consecutive_days,
                timestamp=now,
                message="No vendor data available",
            )

        result, _ = await self._verify_goal(goal, records, TRIGGER_MANUAL)
        return result

    def update_config(self, **changes: Any) -> VerificationConfig:
        """Apply config changes; the interval takes effect after the current wait"""
        self.config = replace(self.config, **changes)
        logging.info("Verification config updated", extra={"step": "config_update", "config": asdict(self.config)})
        return self.config

    def get_status(self) -> Dict[str, Any]:
        return {
            "is_running": self.is_running,
            "config": asdict(self.config),
            "last_verification": self.last_verification.isoformat() if self.last_verification else None,
            "webhook_enabled": True,
        }

    async def _run_cycle(
        self,
        trigger: str,
        select_goals: Callable[[datetime], List[Goal]],
        lookback_days: int,
    ) -> CycleReport:
        """
        One verification pass.

        Flow:
        1. Select candidate goals (store failure aborts the cycle)
        2. Fetch and normalize vendor records (no data skips the cycle)
        3. Verify every goal independently; one goal's error never stops the rest
        """
        report = CycleReport(trigger=trigger, started_at=utcnow())

        # 1. Candidate goals
        try:
            goals = select_goals(report.started_at)
        except Exception as e:
            logging.error(f"Goal selection failed: {e!r}", extra={"step": "select_goals", "trigger": trigger})
            raise VerificationCycleError(f"Could not load goals: {e}") from e

        report.goals_selected = len(goals)
        if not goals:
            return self._finish(report, skipped_reason="no_goals")

        # 2. Vendor data
        records = await self._fetch_records(lookback_days)
        if not records:
            return self._finish(report, skipped_reason="no_data")

        # 3. Per-goal verification with failure isolation
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrent_goals))

        async def verify_isolated(goal: Goal) -> None:
            async with semaphore:
                try:
                    result, submitted = await self._verify_goal(goal, records, trigger)
                    if result.is_successful:
                        report.goals_verified += 1
                    if submitted:
                        report.payouts_executed += 1
                except Exception as e:
                    report.errors[goal.id] = str(e)
                    verification_counter.labels(outcome="error").inc()
                    logging.error(
                        f"Verification failed for goal {goal.id}: {e!r}",
                        extra={"goal_id": goal.id, "step": "goal_verification", "trigger": trigger},
                    )

        await asyncio.gather(*(verify_isolated(goal) for goal in goals))
        return self._finish(report)

    async def _verify_goal(
        self, goal: Goal, records: List[HealthRecord], trigger: str
    ) -> Tuple[VerificationResult, bool]:
        """Evaluate one goal, persist the attempt, and pay out when satisfied; True when a ledger claim was sent"""
        consecutive_days = evaluate_streak(
            records, goal.health_data_type, goal.target_value, goal.comparison_direction
        )
        required = required_days(goal.conditions)
        successful = is_goal_satisfied(goal.conditions, consecutive_days)

        result = VerificationResult(
            goal_id=goal.id,
            is_successful=successful,
            consecutive_days=consecutive_days,
            required_days=required,
            timestamp=utcnow(),
            message="Goal verification successful" if successful else "Goal verification failed",
        )

        # Attempt is persisted regardless of outcome; False means a concurrent cycle completed the goal
        still_open = self.store.record_attempt(goal.id, result)
        verification_counter.labels(outcome="success" if successful else "unmet").inc()
        log_verification(goal, result, trigger)

        submitted = False
        if successful and still_open and self.config.auto_payout:
            _, submitted = await self.payout_executor.execute(goal, result)

        return result, submitted

    async def _fetch_records(self, days: int) -> List[HealthRecord]:
        """Vendor records for the window; any vendor problem means "no data", never a crash"""
        if not self.vendor.is_authenticated():
            logging.info("Vendor not authenticated, skipping verification", extra={"step": "fetch_records"})
            return []

        try:
            raw = await asyncio.wait_for(
                self.vendor.get_all_health_data(days),
                timeout=self.config.vendor_fetch_timeout_seconds,
            )
        except Exception as e:
            vendor_fetch_failures_counter.inc()
            logging.warning(f"Vendor fetch failed: {e!r}", extra={"step": "fetch_records"})
            return []

        if not isinstance(raw, list):
            logging.warning("Invalid vendor data received", extra={"step": "fetch_records"})
            return []

        return normalize_health_data(raw)

    def _finish(self, report: CycleReport, skipped_reason: str | None = None) -> CycleReport:
        report.skipped_reason = skipped_reason
        report.finished_at = utcnow()
        self.last_verification = report.finished_at
        self.last_report = report
        record_cycle(report)
        log_cycle(report)
        return report
