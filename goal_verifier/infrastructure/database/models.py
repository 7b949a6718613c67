"""SQLAlchemy ORM models for goals and payouts"""

import uuid
from sqlalchemy import Column, String, Boolean, Float, DateTime, Integer, Text, JSON, ForeignKey
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


class GoalRow(Base):
    """Goal contract and its verification state"""

    __tablename__ = "goal"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=False, default="")
    health_data_type = Column(String(32), nullable=False, index=True)
    target_value = Column(Float, nullable=False)
    conditions = Column(JSON, nullable=False, default=list)
    reward = Column(Float, nullable=False)
    deadline = Column(DateTime(timezone=True), nullable=False, index=True)
    sponsor = Column(Text, nullable=False)
    verification_type = Column(String(16), nullable=False, default="automatic")
    is_verified = Column(Boolean, nullable=False, default=False)
    is_completed = Column(Boolean, nullable=False, default=False, index=True)
    consecutive_success_days = Column(Integer, nullable=False, default=0)
    last_verification_attempt = Column(DateTime(timezone=True), nullable=True)
    # Set while one cycle owns the payout critical section for this goal
    payout_claimed_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PayoutRow(Base):
    """Executed ledger payout; goal_id is the idempotency key"""

    __tablename__ = "goal_payout"

    id = Column(Integer, primary_key=True, autoincrement=True)
    goal_id = Column(String(64), ForeignKey("goal.id"), nullable=False, unique=True)
    amount = Column(Float, nullable=False)
    transaction_reference = Column(Text, nullable=False)
    executed_at = Column(DateTime(timezone=True), nullable=False)
