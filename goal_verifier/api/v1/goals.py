"""/v1/goals - goal contracts, verification state and payouts"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Query, Request

from goal_verifier.api.dependencies import get_goal_store, get_orchestrator, get_payout_repository, get_request_id
from goal_verifier.api.v1.schemas import (
    GoalCreateRequest,
    GoalListResponse,
    GoalResponse,
    GoalStatsResponse,
    PayoutResponse,
    VerificationResultResponse,
)
from goal_verifier.domain.exceptions import GoalNotFoundError, GoalNotVerifiableError, PayoutError
from goal_verifier.domain.models import GoalStatus
from goal_verifier.infrastructure.database.repositories import GoalStore, PayoutRepository
from goal_verifier.services.orchestrator import VerificationOrchestrator
from goal_verifier.utils.date_utils import utcnow

router = APIRouter()


@router.post("/goals", response_model=GoalResponse, status_code=201)
def create_goal(body: GoalCreateRequest, store: GoalStore = Depends(get_goal_store)):
    """Register a new goal contract"""
    goal = store.create(
        title=body.title,
        description=body.description,
        health_data_type=body.health_data_type,
        target_value=body.target_value,
        reward=body.reward,
        deadline=body.deadline,
        sponsor=body.sponsor,
        conditions=body.conditions,
        verification_type=body.verification_type,
    )
    logging.info("Goal created", extra={"goal_id": goal.id, "health_data_type": goal.health_data_type.value})
    return GoalResponse.from_goal(goal, utcnow())


@router.get("/goals", response_model=GoalListResponse)
def list_goals(
    status: GoalStatus | None = Query(None, description="active | completed | expired"),
    store: GoalStore = Depends(get_goal_store),
):
    now = utcnow()
    goals = store.list_goals(status=status, now=now)
    return GoalListResponse(goals=[GoalResponse.from_goal(goal, now) for goal in goals])


@router.get("/goals/stats", response_model=GoalStatsResponse)
def goal_stats(store: GoalStore = Depends(get_goal_store)):
    return GoalStatsResponse(**store.stats(utcnow()))


@router.get("/goals/{goal_id}", response_model=GoalResponse)
def get_goal(goal_id: str, store: GoalStore = Depends(get_goal_store)):
    try:
        goal = store.get(goal_id)
    except GoalNotFoundError:
        raise HTTPException(status_code=404, detail="Goal not found")
    return GoalResponse.from_goal(goal, utcnow())


@router.post("/goals/{goal_id}/verify", response_model=VerificationResultResponse)
async def verify_goal(
    goal_id: str,
    request: Request,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """
    Verify one goal now ("verify now" from the UI).

    Returns:
        The verification result; a satisfied goal is paid out before returning
    """
    try:
        result = await orchestrator.verify_goal(goal_id)
    except GoalNotFoundError:
        raise HTTPException(status_code=404, detail="Goal not found")
    except GoalNotVerifiableError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except PayoutError as e:
        logging.error(str(e), extra={"request_id": get_request_id(request), "goal_id": goal_id})
        raise HTTPException(status_code=503, detail="Payout failed, it will be retried on the next cycle")
    return VerificationResultResponse.from_result(result)


@router.get("/goals/{goal_id}/payout", response_model=PayoutResponse)
def get_payout(
    goal_id: str,
    store: GoalStore = Depends(get_goal_store),
    payouts: PayoutRepository = Depends(get_payout_repository),
):
    try:
        store.get(goal_id)
    except GoalNotFoundError:
        raise HTTPException(status_code=404, detail="Goal not found")

    record = payouts.get_by_goal(goal_id)
    if record is None:
        raise HTTPException(status_code=404, detail="No payout for this goal")
    return PayoutResponse.from_record(record)
