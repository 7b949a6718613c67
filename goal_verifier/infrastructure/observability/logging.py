"""Structured JSON logging for production observability"""

import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from goal_verifier.domain.models import CycleReport, Goal, PayoutRecord, VerificationResult


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Custom JSON formatter with timestamp and service metadata"""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = "goal-verifier"


def setup_logging(level: str = "INFO") -> None:
    """Configure structured JSON logging"""
    logger = logging.getLogger()
    logger.setLevel(level)

    # Remove existing handlers
    logger.handlers.clear()

    # JSON handler for stdout
    handler = logging.StreamHandler(sys.stdout)
    formatter = CustomJsonFormatter(
        "%(timestamp)s %(level)s %(name)s %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)


def log_verification(goal: Goal, result: VerificationResult, trigger: str) -> None:
    """Log one goal's verification attempt"""
    logging.info(
        "Goal verified" if result.is_successful else "Goal not yet satisfied",
        extra={
            "goal_id": goal.id,
            "step": "goal_verification",
            "trigger": trigger,
            "health_data_type": goal.health_data_type.value,
            "outcome": "success" if result.is_successful else "unmet",
            "consecutive_days": result.consecutive_days,
            "required_days": result.required_days,
        },
    )


def log_payout(goal: Goal, record: PayoutRecord) -> None:
    logging.info(
        "Payout executed",
        extra={
            "goal_id": goal.id,
            "step": "payout",
            "amount": record.amount,
            "transaction_reference": record.transaction_reference,
        },
    )


def log_cycle(report: CycleReport) -> None:
    """Log structured cycle outcome for analysis"""
    duration_ms = None
    if report.finished_at is not None:
        duration_ms = (report.finished_at - report.started_at).total_seconds() * 1000

    logging.info(
        "Verification cycle completed",
        extra={
            "step": "cycle_complete",
            "trigger": report.trigger,
            "goals_selected": report.goals_selected,
            "goals_verified": report.goals_verified,
            "payouts_executed": report.payouts_executed,
            "error_count": len(report.errors),
            "skipped_reason": report.skipped_reason,
            "duration_ms": duration_ms,
        },
    )
