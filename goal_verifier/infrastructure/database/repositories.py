"""Data access layer for goals and payouts"""

import uuid
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from goal_verifier.domain.exceptions import ConcurrentUpdateError, GoalNotFoundError
from goal_verifier.domain.models import (
    Goal,
    GoalStatus,
    HealthDataType,
    PayoutRecord,
    VerificationResult,
    VerificationType,
)
from goal_verifier.infrastructure.database.models import GoalRow, PayoutRow
from goal_verifier.utils.date_utils import ensure_utc, utcnow

SessionFactory = Callable[[], Session]

# Fields callers may patch through GoalStore.update
UPDATABLE_FIELDS = {
    "title",
    "description",
    "target_value",
    "conditions",
    "reward",
    "deadline",
    "sponsor",
    "verification_type",
    "is_verified",
    "consecutive_success_days",
    "last_verification_attempt",
}


def _to_goal(row: GoalRow) -> Goal:
    return Goal(
        id=row.id,
        title=row.title,
        description=row.description,
        health_data_type=HealthDataType(row.health_data_type),
        target_value=row.target_value,
        reward=row.reward,
        deadline=ensure_utc(row.deadline),
        sponsor=row.sponsor,
        conditions=list(row.conditions or []),
        verification_type=VerificationType(row.verification_type),
        is_verified=row.is_verified,
        is_completed=row.is_completed,
        consecutive_success_days=row.consecutive_success_days,
        last_verification_attempt=ensure_utc(row.last_verification_attempt),
        created_at=ensure_utc(row.created_at),
        updated_at=ensure_utc(row.updated_at),
        version=row.version,
    )


def _to_payout(row: PayoutRow) -> PayoutRecord:
    return PayoutRecord(
        goal_id=row.goal_id,
        amount=row.amount,
        transaction_reference=row.transaction_reference,
        executed_at=ensure_utc(row.executed_at),
    )


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


class GoalStore:
    """
    Single source of truth for goal state.

    Every mutation is one conditional UPDATE statement, so concurrent
    verification cycles never interleave a read-modify-write on the same goal.
    No lock is held beyond the statement itself.
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def create(
        self,
        title: str,
        health_data_type: HealthDataType,
        target_value: float,
        reward: float,
        deadline: datetime,
        sponsor: str,
        conditions: List[str] | None = None,
        description: str = "",
        verification_type: VerificationType = VerificationType.AUTOMATIC,
        goal_id: str | None = None,
    ) -> Goal:
        """Persist a new goal contract"""
        now = utcnow()
        row = GoalRow(
            id=goal_id or str(uuid.uuid4()),
            title=title,
            description=description,
            health_data_type=_column_value(HealthDataType(health_data_type)),
            target_value=target_value,
            conditions=list(conditions or []),
            reward=reward,
            deadline=ensure_utc(deadline),
            sponsor=sponsor,
            verification_type=_column_value(VerificationType(verification_type)),
            created_at=now,
            updated_at=now,
        )
        with self._session_factory() as db:
            db.add(row)
            db.commit()
            db.refresh(row)
            return _to_goal(row)

    def get(self, goal_id: str) -> Goal:
        with self._session_factory() as db:
            row = db.get(GoalRow, goal_id)
            if row is None:
                raise GoalNotFoundError(goal_id)
            return _to_goal(row)

    def list_active(self, now: datetime) -> List[Goal]:
        """Open automatic goals whose deadline has not passed"""
        return self._list_active(now)

    def list_active_by_data_type(self, data_type: HealthDataType, now: datetime) -> List[Goal]:
        """Open automatic goals of one data type (webhook-triggered verification)"""
        return self._list_active(now, data_type)

    def _list_active(self, now: datetime, data_type: HealthDataType | None = None) -> List[Goal]:
        with self._session_factory() as db:
            query = db.query(GoalRow).filter(
                GoalRow.is_completed.is_(False),
                GoalRow.verification_type == VerificationType.AUTOMATIC.value,
                GoalRow.deadline >= ensure_utc(now),
            )
            if data_type is not None:
                query = query.filter(GoalRow.health_data_type == HealthDataType(data_type).value)
            return [_to_goal(row) for row in query.order_by(GoalRow.deadline.asc()).all()]

    def list_expired(self, now: datetime) -> List[Goal]:
        """Goals past their deadline that never completed"""
        with self._session_factory() as db:
            rows = (
                db.query(GoalRow)
                .filter(GoalRow.is_completed.is_(False), GoalRow.deadline < ensure_utc(now))
                .order_by(GoalRow.deadline.desc())
                .all()
            )
            return [_to_goal(row) for row in rows]

    def list_completed(self) -> List[Goal]:
        with self._session_factory() as db:
            rows = db.query(GoalRow).filter(GoalRow.is_completed.is_(True)).all()
            return [_to_goal(row) for row in rows]

    def list_goals(self, status: GoalStatus | None = None, now: datetime | None = None) -> List[Goal]:
        """All goals, optionally filtered by derived status"""
        now = ensure_utc(now) or utcnow()
        with self._session_factory() as db:
            goals = [_to_goal(row) for row in db.query(GoalRow).order_by(GoalRow.created_at.desc()).all()]
        if status is None:
            return goals
        return [goal for goal in goals if goal.status(now) == status]

    def update(self, goal_id: str, patch: Dict[str, Any], expected_version: int | None = None) -> Goal:
        """
        Atomic partial update.

        Raises:
            ValueError: patch names a field that is not updatable
            GoalNotFoundError: goal does not exist
            ConcurrentUpdateError: expected_version no longer matches
        """
        unknown = set(patch) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        values = {key: _column_value(value) for key, value in patch.items()}
        values["version"] = GoalRow.version + 1
        values["updated_at"] = utcnow()

        with self._session_factory() as db:
            query = db.query(GoalRow).filter(GoalRow.id == goal_id)
            if expected_version is not None:
                query = query.filter(GoalRow.version == expected_version)
            updated = query.update(values, synchronize_session=False)
            db.commit()

        if not updated:
            goal = self.get(goal_id)  # raises GoalNotFoundError
            raise ConcurrentUpdateError(
                f"Goal {goal_id} is at version {goal.version}, expected {expected_version}"
            )
        return self.get(goal_id)

    def record_attempt(self, goal_id: str, result: VerificationResult) -> bool:
        """Persist streak and attempt time of an open goal; completed goals are left untouched"""
        values: Dict[str, Any] = {
            "consecutive_success_days": result.consecutive_days,
            "last_verification_attempt": ensure_utc(result.timestamp),
            "version": GoalRow.version + 1,
            "updated_at": utcnow(),
        }
        if result.is_successful:
            values["is_verified"] = True
        return self._transition(goal_id, values)

    def mark_completed(self, goal_id: str, result: VerificationResult) -> bool:
        """
        Flip an open goal to completed.

        Returns False (and changes nothing) when the goal was already completed.
        """
        return self._transition(
            goal_id,
            {
                "is_completed": True,
                "is_verified": True,
                "consecutive_success_days": result.consecutive_days,
                "payout_claimed_at": None,
                "version": GoalRow.version + 1,
                "updated_at": utcnow(),
            },
        )

    def claim_payout(self, goal_id: str, now: datetime, ttl_seconds: float) -> bool:
        """
        Take the payout claim for an open goal.

        Only one caller wins; a claim older than ttl_seconds is considered
        abandoned (crashed cycle) and can be taken again.
        """
        now = ensure_utc(now)
        stale_before = now - timedelta(seconds=ttl_seconds)
        with self._session_factory() as db:
            claimed = (
                db.query(GoalRow)
                .filter(
                    GoalRow.id == goal_id,
                    GoalRow.is_completed.is_(False),
                    or_(GoalRow.payout_claimed_at.is_(None), GoalRow.payout_claimed_at < stale_before),
                )
                .update({"payout_claimed_at": now}, synchronize_session=False)
            )
            db.commit()
        return bool(claimed)

    def release_payout_claim(self, goal_id: str) -> None:
        with self._session_factory() as db:
            db.query(GoalRow).filter(GoalRow.id == goal_id, GoalRow.is_completed.is_(False)).update(
                {"payout_claimed_at": None}, synchronize_session=False
            )
            db.commit()

    def stats(self, now: datetime) -> Dict[str, int]:
        """Goal counts by status for dashboards"""
        goals = self.list_goals(now=now)
        statuses = [goal.status(now) for goal in goals]
        return {
            "total_goals": len(goals),
            "active_goals": statuses.count(GoalStatus.ACTIVE),
            "completed_goals": statuses.count(GoalStatus.COMPLETED),
            "expired_goals": statuses.count(GoalStatus.EXPIRED),
            "pending_verification": sum(
                1
                for goal, status in zip(goals, statuses)
                if status == GoalStatus.ACTIVE and goal.verification_type == VerificationType.AUTOMATIC
            ),
        }

    def _transition(self, goal_id: str, values: Dict[str, Any]) -> bool:
        with self._session_factory() as db:
            updated = (
                db.query(GoalRow)
                .filter(GoalRow.id == goal_id, GoalRow.is_completed.is_(False))
                .update(values, synchronize_session=False)
            )
            db.commit()

        if not updated:
            self.get(goal_id)  # raises GoalNotFoundError for unknown ids
            return False
        return True


class PayoutRepository:
    """Append-only store of executed payouts"""

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory

    def get_by_goal(self, goal_id: str) -> Optional[PayoutRecord]:
        with self._session_factory() as db:
            row = db.query(PayoutRow).filter(PayoutRow.goal_id == goal_id).first()
            return _to_payout(row) if row else None

    def create(self, record: PayoutRecord) -> PayoutRecord:
        """Insert the payout; if one already exists for the goal, that one is returned"""
        with self._session_factory() as db:
            db.add(
                PayoutRow(
                    goal_id=record.goal_id,
                    amount=record.amount,
                    transaction_reference=record.transaction_reference,
                    executed_at=ensure_utc(record.executed_at),
                )
            )
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                existing = self.get_by_goal(record.goal_id)
                if existing is None:
                    raise
                return existing
        return record
