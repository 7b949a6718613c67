"""Idempotent payout execution for verified goals"""

import asyncio
import logging
from typing import Optional, Tuple

from goal_verifier.config import settings
from goal_verifier.domain.exceptions import PayoutError
from goal_verifier.domain.models import Goal, PayoutRecord, VerificationResult
from goal_verifier.infrastructure.clients.ledger import LedgerClient
from goal_verifier.infrastructure.database.repositories import GoalStore, PayoutRepository
from goal_verifier.infrastructure.observability.logging import log_payout
from goal_verifier.infrastructure.observability.metrics import payout_counter
from goal_verifier.utils.date_utils import utcnow


class PayoutExecutor:
    """
    Submits one claim per goal to the ledger and records the result.

    Three independent guards keep a goal from being paid twice when the
    scheduled, webhook and manual cycles race:
    1. An existing PayoutRecord short-circuits before any ledger call
    2. GoalStore.claim_payout lets exactly one caller into the submission
    3. The payout table is unique on goal_id
    """

    def __init__(
        self,
        store: GoalStore,
        payouts: PayoutRepository,
        ledger: LedgerClient,
        timeout_seconds: float | None = None,
        claim_ttl_seconds: float | None = None,
        network: str | None = None,
    ):
        self.store = store
        self.payouts = payouts
        self.ledger = ledger
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.payout_timeout_seconds
        self.claim_ttl_seconds = claim_ttl_seconds if claim_ttl_seconds is not None else settings.payout_claim_ttl_seconds
        # The claim must outlive the ledger call it guards
        if self.claim_ttl_seconds <= self.timeout_seconds:
            raise ValueError(
                f"payout claim TTL ({self.claim_ttl_seconds}s) must exceed the payout timeout ({self.timeout_seconds}s)"
            )
        self.network = network or settings.ledger_network

    async def execute(self, goal: Goal, result: VerificationResult) -> Tuple[Optional[PayoutRecord], bool]:
        """
        Pay out a verified goal.

        Returns:
            (record, submitted): the goal's PayoutRecord (new or pre-existing),
            or None when another cycle currently holds the payout claim; submitted
            is True only when this call sent the claim to the ledger

        Raises:
            PayoutError: Ledger failed or timed out; the goal stays open for retry
        """
        # 1. Already paid: make sure the goal reflects it, never resubmit
        existing = self.payouts.get_by_goal(goal.id)
        if existing is not None:
            self.store.mark_completed(goal.id, result)
            payout_counter.labels(outcome="duplicate").inc()
            logging.info("Payout already recorded", extra={"goal_id": goal.id, "step": "payout"})
            return existing, False

        # 2. Only one caller may submit
        if not self.store.claim_payout(goal.id, utcnow(), self.claim_ttl_seconds):
            payout_counter.labels(outcome="in_progress").inc()
            logging.info("Payout claimed by another cycle", extra={"goal_id": goal.id, "step": "payout"})
            return None, False

        # 3. Submit claim to the ledger
        try:
            transaction_reference = await asyncio.wait_for(
                self.ledger.submit_claim(self._claim_payload(goal, result)),
                timeout=self.timeout_seconds,
            )
        except Exception as e:
            self.store.release_payout_claim(goal.id)
            payout_counter.labels(outcome="failed").inc()
            logging.error(f"Ledger claim failed: {e!r}", extra={"goal_id": goal.id, "step": "payout"})
            raise PayoutError(goal.id, repr(e)) from e

        # 4. Record payout and close the goal
        record = self.payouts.create(
            PayoutRecord(
                goal_id=goal.id,
                amount=goal.reward,
                transaction_reference=transaction_reference,
                executed_at=utcnow(),
            )
        )
        self.store.mark_completed(goal.id, result)

        payout_counter.labels(outcome="executed").inc()
        log_payout(goal, record)
        return record, True

    def _claim_payload(self, goal: Goal, result: VerificationResult) -> dict:
        return {
            "goalId": goal.id,
            "amount": goal.reward,
            "payerContext": {
                "sponsor": goal.sponsor,
                "network": self.network,
                "healthDataType": goal.health_data_type.value,
                "consecutiveDays": result.consecutive_days,
                "verifiedAt": result.timestamp.isoformat(),
            },
        }
