"""Dependency injection for FastAPI endpoints"""

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from goal_verifier.config import Settings, settings as default_settings
from goal_verifier.infrastructure.clients.ledger import LedgerClient
from goal_verifier.infrastructure.clients.whoop import WhoopClient
from goal_verifier.infrastructure.database.repositories import GoalStore, PayoutRepository
from goal_verifier.services.orchestrator import VerificationConfig, VerificationOrchestrator
from goal_verifier.services.payouts import PayoutExecutor


def build_orchestrator(session_factory: sessionmaker, settings: Settings | None = None) -> VerificationOrchestrator:
    """Wire the orchestrator and its collaborators from settings"""
    settings = settings or default_settings
    store = GoalStore(session_factory)
    payout_executor = PayoutExecutor(
        store=store,
        payouts=PayoutRepository(session_factory),
        ledger=LedgerClient(
            ledger_url=settings.ledger_url,
            max_retries=settings.ledger_max_retries,
            backoff_base=settings.ledger_backoff_base,
            timeout=settings.http_timeout_seconds,
        ),
        timeout_seconds=settings.payout_timeout_seconds,
        claim_ttl_seconds=settings.payout_claim_ttl_seconds,
        network=settings.ledger_network,
    )
    vendor = WhoopClient(
        base_url=settings.whoop_api_base,
        access_token=settings.whoop_access_token,
        refresh_token=settings.whoop_refresh_token,
        client_id=settings.whoop_client_id,
        client_secret=settings.whoop_client_secret,
        token_url=settings.whoop_oauth_token_url,
        timeout=settings.http_timeout_seconds,
    )
    return VerificationOrchestrator(
        store=store,
        vendor=vendor,
        payout_executor=payout_executor,
        config=VerificationConfig.from_settings(settings),
    )


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_orchestrator(request: Request) -> VerificationOrchestrator:
    """Provide the application's orchestrator instance"""
    return request.app.state.orchestrator


def get_goal_store(request: Request) -> GoalStore:
    return request.app.state.orchestrator.store


def get_payout_repository(request: Request) -> PayoutRepository:
    return request.app.state.orchestrator.payout_executor.payouts
