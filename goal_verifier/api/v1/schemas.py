"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional

from goal_verifier.domain.models import (
    ComparisonDirection,
    Goal,
    GoalStatus,
    HealthDataType,
    PayoutRecord,
    VerificationResult,
    VerificationType,
    CycleReport,
)


class GoalCreateRequest(BaseModel):
    """Request body for POST /v1/goals"""

    title: str = Field(..., min_length=1)
    description: str = ""
    health_data_type: HealthDataType
    target_value: float
    reward: float = Field(..., gt=0, description="Reward paid out on completion")
    deadline: datetime
    sponsor: str = Field(..., min_length=1, description="Sponsor identifier")
    conditions: List[str] = Field(default_factory=list, description='e.g. ["consecutive_nights >= 5"]')
    verification_type: VerificationType = VerificationType.AUTOMATIC


class GoalResponse(BaseModel):
    """Goal with its derived verification fields"""

    id: str
    title: str
    description: str
    health_data_type: HealthDataType
    target_value: float
    comparison_direction: ComparisonDirection
    conditions: List[str]
    required_consecutive_days: int
    reward: float
    deadline: datetime
    sponsor: str
    verification_type: VerificationType
    status: GoalStatus
    is_verified: bool
    is_completed: bool
    consecutive_success_days: int
    last_verification_attempt: Optional[datetime] = None

    @classmethod
    def from_goal(cls, goal: Goal, now: datetime) -> "GoalResponse":
        return cls(
            id=goal.id,
            title=goal.title,
            description=goal.description,
            health_data_type=goal.health_data_type,
            target_value=goal.target_value,
            comparison_direction=goal.comparison_direction,
            conditions=goal.conditions,
            required_consecutive_days=goal.required_consecutive_days,
            reward=goal.reward,
            deadline=goal.deadline,
            sponsor=goal.sponsor,
            verification_type=goal.verification_type,
            status=goal.status(now),
            is_verified=goal.is_verified,
            is_completed=goal.is_completed,
            consecutive_success_days=goal.consecutive_success_days,
            last_verification_attempt=goal.last_verification_attempt,
        )


class GoalListResponse(BaseModel):
    goals: List[GoalResponse]


class GoalStatsResponse(BaseModel):
    """Response for GET /v1/goals/stats"""

    total_goals: int
    active_goals: int
    completed_goals: int
    expired_goals: int
    pending_verification: int


class PayoutResponse(BaseModel):
    """Response for GET /v1/goals/{goal_id}/payout"""

    goal_id: str
    amount: float
    transaction_reference: str
    executed_at: datetime

    @classmethod
    def from_record(cls, record: PayoutRecord) -> "PayoutResponse":
        return cls(
            goal_id=record.goal_id,
            amount=record.amount,
            transaction_reference=record.transaction_reference,
            executed_at=record.executed_at,
        )


class VerificationResultResponse(BaseModel):
    """Response for POST /v1/goals/{goal_id}/verify"""

    goal_id: str
    is_successful: bool
    consecutive_days: int
    required_days: int
    timestamp: datetime
    message: str

    @classmethod
    def from_result(cls, result: VerificationResult) -> "VerificationResultResponse":
        return cls(
            goal_id=result.goal_id,
            is_successful=result.is_successful,
            consecutive_days=result.consecutive_days,
            required_days=result.required_days,
            timestamp=result.timestamp,
            message=result.message,
        )


class CycleReportResponse(BaseModel):
    """Response for POST /v1/agent/verify"""

    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    goals_selected: int
    goals_verified: int
    payouts_executed: int
    errors: Dict[str, str]
    skipped_reason: Optional[str] = None

    @classmethod
    def from_report(cls, report: CycleReport) -> "CycleReportResponse":
        return cls(
            trigger=report.trigger,
            started_at=report.started_at,
            finished_at=report.finished_at,
            goals_selected=report.goals_selected,
            goals_verified=report.goals_verified,
            payouts_executed=report.payouts_executed,
            errors=report.errors,
            skipped_reason=report.skipped_reason,
        )


class AgentStatusResponse(BaseModel):
    """Response for GET /v1/agent/status"""

    is_running: bool
    config: Dict[str, Any]
    last_verification: Optional[str] = None
    webhook_enabled: bool


class AgentConfigUpdate(BaseModel):
    """Request body for PATCH /v1/agent/config; omitted fields keep their value"""

    verification_interval_seconds: Optional[float] = Field(None, gt=0)
    scheduled_lookback_days: Optional[int] = Field(None, gt=0)
    webhook_lookback_days: Optional[int] = Field(None, gt=0)
    auto_payout: Optional[bool] = None
    vendor_fetch_timeout_seconds: Optional[float] = Field(None, gt=0)
    max_concurrent_goals: Optional[int] = Field(None, gt=0)


class WebhookEvent(BaseModel):
    """Inbound WHOOP webhook payload"""

    event_type: str
    user_id: str
    timestamp: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class WebhookAck(BaseModel):
    """Acknowledgement returned to WHOOP regardless of verification outcome"""

    success: bool = True
    message: str
    event_type: str
    health_data_type: Optional[HealthDataType] = None
    timestamp: datetime
