"""Domain models - pure Python dataclasses representing business entities"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional

from goal_verifier.domain.conditions import required_days


class HealthDataType(str, Enum):
    SLEEP = "sleep"
    STEPS = "steps"
    RECOVERY = "recovery"
    STRAIN = "strain"
    HEART_RATE = "heart_rate"
    WEIGHT = "weight"


class ComparisonDirection(str, Enum):
    GTE = "gte"  # value >= target
    LTE = "lte"  # value <= target


class VerificationType(str, Enum):
    AUTOMATIC = "automatic"
    MANUAL = "manual"


class GoalStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    EXPIRED = "expired"


# Lower is better for strain, resting heart rate and weight; higher for everything else.
COMPARISON_DIRECTIONS: Dict[HealthDataType, ComparisonDirection] = {
    HealthDataType.SLEEP: ComparisonDirection.GTE,
    HealthDataType.STEPS: ComparisonDirection.GTE,
    HealthDataType.RECOVERY: ComparisonDirection.GTE,
    HealthDataType.STRAIN: ComparisonDirection.LTE,
    HealthDataType.HEART_RATE: ComparisonDirection.LTE,
    HealthDataType.WEIGHT: ComparisonDirection.LTE,
}

# HealthRecord attribute holding each data type's daily value
RECORD_FIELDS: Dict[HealthDataType, str] = {
    HealthDataType.SLEEP: "sleep_score",
    HealthDataType.STEPS: "steps",
    HealthDataType.RECOVERY: "recovery_score",
    HealthDataType.STRAIN: "strain_score",
    HealthDataType.HEART_RATE: "heart_rate",
    HealthDataType.WEIGHT: "weight",
}


@dataclass(frozen=True)
class HealthRecord:
    """One calendar day of aggregated biometrics. None means not measured."""

    date: date
    sleep_score: Optional[float] = None
    steps: Optional[int] = None
    recovery_score: Optional[float] = None
    strain_score: Optional[float] = None
    heart_rate: Optional[float] = None
    weight: Optional[float] = None

    def value_for(self, data_type: HealthDataType) -> Optional[float]:
        return getattr(self, RECORD_FIELDS[data_type])


@dataclass
class Goal:
    """Verifiable commitment with a reward paid out once the streak is met"""

    id: str
    title: str
    description: str
    health_data_type: HealthDataType
    target_value: float
    reward: float
    deadline: datetime
    sponsor: str
    conditions: List[str] = field(default_factory=list)
    verification_type: VerificationType = VerificationType.AUTOMATIC
    is_verified: bool = False
    is_completed: bool = False
    consecutive_success_days: int = 0
    last_verification_attempt: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    version: int = 1

    @property
    def comparison_direction(self) -> ComparisonDirection:
        return COMPARISON_DIRECTIONS[self.health_data_type]

    @property
    def required_consecutive_days(self) -> int:
        return required_days(self.conditions)

    def status(self, now: datetime) -> GoalStatus:
        """Completed is terminal; an unmet goal past its deadline is expired, never failed."""
        if self.is_completed:
            return GoalStatus.COMPLETED
        if now > self.deadline:
            return GoalStatus.EXPIRED
        return GoalStatus.ACTIVE


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of one verification attempt for one goal (not persisted)"""

    goal_id: str
    is_successful: bool
    consecutive_days: int
    timestamp: datetime
    required_days: int = 0
    message: str = ""


@dataclass(frozen=True)
class PayoutRecord:
    """Ledger payout for a completed goal; at most one per goal"""

    goal_id: str
    amount: float
    transaction_reference: str
    executed_at: datetime


@dataclass
class CycleReport:
    """Aggregated outcome of one verification cycle"""

    trigger: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    goals_selected: int = 0
    goals_verified: int = 0
    payouts_executed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    skipped_reason: Optional[str] = None
