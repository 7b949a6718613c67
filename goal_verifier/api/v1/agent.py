"""/v1/agent - control surface of the verification orchestrator"""

import logging
from fastapi import APIRouter, Depends, HTTPException, Request

from goal_verifier.api.dependencies import get_orchestrator, get_request_id
from goal_verifier.api.v1.schemas import AgentConfigUpdate, AgentStatusResponse, CycleReportResponse
from goal_verifier.domain.exceptions import VerificationCycleError
from goal_verifier.services.orchestrator import VerificationOrchestrator

router = APIRouter()


@router.get("/agent/status", response_model=AgentStatusResponse)
def get_status(orchestrator: VerificationOrchestrator = Depends(get_orchestrator)):
    return AgentStatusResponse(**orchestrator.get_status())


@router.post("/agent/start", response_model=AgentStatusResponse)
async def start_agent(orchestrator: VerificationOrchestrator = Depends(get_orchestrator)):
    """Start scheduled verification (no-op when already running)"""
    await orchestrator.start()
    return AgentStatusResponse(**orchestrator.get_status())


@router.post("/agent/stop", response_model=AgentStatusResponse)
def stop_agent(orchestrator: VerificationOrchestrator = Depends(get_orchestrator)):
    """Stop scheduling new cycles; an in-flight cycle still completes"""
    orchestrator.stop()
    return AgentStatusResponse(**orchestrator.get_status())


@router.post("/agent/verify", response_model=CycleReportResponse)
async def trigger_manual_verification(
    request: Request,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Run a full verification cycle now and report its outcome"""
    try:
        report = await orchestrator.trigger_manual_verification()
    except VerificationCycleError as e:
        logging.error(f"Manual verification aborted: {e}", extra={"request_id": get_request_id(request)})
        raise HTTPException(status_code=503, detail="Goal store unavailable")
    return CycleReportResponse.from_report(report)


@router.patch("/agent/config", response_model=AgentStatusResponse)
def update_config(
    body: AgentConfigUpdate,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    orchestrator.update_config(**body.model_dump(exclude_none=True))
    return AgentStatusResponse(**orchestrator.get_status())
