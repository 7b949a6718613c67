"""POST /v1/webhooks/whoop - WHOOP event ingress triggering narrow verification"""

import base64
import hashlib
import hmac
import logging
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from pydantic import ValidationError

from goal_verifier.api.dependencies import get_orchestrator, get_request_id
from goal_verifier.api.v1.schemas import WebhookAck, WebhookEvent
from goal_verifier.domain.models import HealthDataType
from goal_verifier.services.orchestrator import VerificationOrchestrator
from goal_verifier.utils.date_utils import utcnow

router = APIRouter()

EVENT_DATA_TYPES = {
    "sleep_completed": HealthDataType.SLEEP,
    "workout_completed": HealthDataType.STEPS,
    "recovery_updated": HealthDataType.RECOVERY,
    "strain_updated": HealthDataType.STRAIN,
}

SIGNATURE_HEADER = "x-whoop-signature"
TIMESTAMP_HEADERS = ("x-whoop-signature-timestamp", "x-whoop-timestamp")


def verify_signature(body: bytes, signature: str | None, timestamp: str | None, secret: str | None) -> bool:
    """
    Check WHOOP webhook authenticity.

    Signature and timestamp headers are always required. When a secret is
    configured the signature must equal base64(HMAC-SHA256(timestamp + body)).
    """
    if not signature or not timestamp:
        return False
    if not secret:
        return True

    digest = hmac.new(secret.encode(), timestamp.encode() + body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode()
    return hmac.compare_digest(expected, signature)


async def run_webhook_verification(
    orchestrator: VerificationOrchestrator,
    data_type: HealthDataType,
    event: dict,
    request_id: str,
) -> None:
    """Background task: a failed cycle is logged, never surfaced to WHOOP"""
    try:
        await orchestrator.trigger_verification_for_data_type(data_type, event)
    except Exception as e:
        logging.error(
            f"Webhook-triggered verification failed: {e!r}",
            extra={"request_id": request_id, "step": "webhook_verification"},
        )


@router.post("/webhooks/whoop", response_model=WebhookAck)
async def receive_whoop_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """
    Acknowledge a WHOOP event and schedule verification for matching goals.

    Flow:
    1. Verify signature headers (401 on failure)
    2. Map event_type to a health data type
    3. Schedule the webhook cycle as a background task
    4. Acknowledge immediately, independent of verification outcome
    """
    request_id = get_request_id(request)
    body = await request.body()

    # 1. Authenticity
    signature = request.headers.get(SIGNATURE_HEADER)
    timestamp = next((request.headers.get(h) for h in TIMESTAMP_HEADERS if request.headers.get(h)), None)
    if not verify_signature(body, signature, timestamp, request.app.state.webhook_secret):
        logging.warning("WHOOP webhook verification failed", extra={"request_id": request_id})
        raise HTTPException(status_code=401, detail="Unauthorized")

    try:
        event = WebhookEvent.model_validate_json(body)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))

    # 2. Event routing
    data_type = EVENT_DATA_TYPES.get(event.event_type)
    if data_type is None:
        logging.info(f"Unhandled WHOOP event: {event.event_type}", extra={"request_id": request_id})
        return WebhookAck(message="Event ignored", event_type=event.event_type, timestamp=utcnow())

    # 3. Fire-and-forget verification
    background_tasks.add_task(
        run_webhook_verification,
        orchestrator,
        data_type,
        event.model_dump(),
        request_id,
    )

    return WebhookAck(
        message="Webhook processed successfully",
        event_type=event.event_type,
        health_data_type=data_type,
        timestamp=utcnow(),
    )


@router.get("/webhooks/whoop")
def webhook_status():
    """Readiness probe for webhook configuration"""
    return {
        "message": "WHOOP webhook endpoint is active",
        "status": "ready",
        "events": sorted(EVENT_DATA_TYPES),
        "timestamp": utcnow().isoformat(),
    }
