"""Ledger payout client with exponential backoff retry logic"""

import httpx
import asyncio
from typing import Dict, Any
from goal_verifier.config import settings
from goal_verifier.domain.exceptions import LedgerError
from goal_verifier.infrastructure.observability.metrics import ledger_latency_histogram, ledger_failure_counter

REFERENCE_KEYS = ("transactionReference", "transaction_reference", "transactionId")


class LedgerClient:
    """Client for submitting verified goal claims to the ledger service"""

    def __init__(
        self,
        ledger_url: str | None = None,
        max_retries: int | None = None,
        backoff_base: float | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.ledger_url = ledger_url or settings.ledger_url
        self.max_retries = max_retries if max_retries is not None else settings.ledger_max_retries
        self.backoff_base = backoff_base if backoff_base is not None else settings.ledger_backoff_base
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport

    async def submit_claim(self, payload: Dict[str, Any]) -> str:
        """
        Submit a verification claim and return the ledger transaction reference.

        Retry strategy:
        - Exponential backoff: 1s, 2s, 4s, 8s, 16s (base^attempt)
        - Retries on 5xx errors and network failures; 4xx fails immediately
        - Tracks latency histogram and failure counter

        Args:
            payload: {goalId, amount, payerContext}

        Raises:
            LedgerError: claim rejected, retries exhausted, or no reference returned
        """
        attempt = 0
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            while True:
                try:
                    with ledger_latency_histogram.time():
                        response = await client.post(self.ledger_url, json=payload)
                        response.raise_for_status()
                    return self._transaction_reference(response)

                except httpx.HTTPStatusError as e:
                    ledger_failure_counter.inc()
                    if e.response.status_code < 500:
                        raise LedgerError(f"Ledger rejected claim: {e.response.status_code}") from e
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise LedgerError(f"Ledger error after {attempt} attempts: {e.response.status_code}") from e

                except httpx.RequestError as e:
                    ledger_failure_counter.inc()
                    attempt += 1
                    if attempt >= self.max_retries:
                        raise LedgerError(f"Ledger unreachable after {attempt} attempts: {e}") from e

                # Exponential backoff: 1s, 2s, 4s, 8s, 16s
                backoff = self.backoff_base * (2 ** (attempt - 1))
                await asyncio.sleep(backoff)

    @staticmethod
    def _transaction_reference(response: httpx.Response) -> str:
        try:
            data = response.json()
        except ValueError as e:
            raise LedgerError("Ledger returned a non-JSON response") from e

        for key in REFERENCE_KEYS:
            if isinstance(data, dict) and data.get(key):
                return str(data[key])
        raise LedgerError("Ledger response is missing a transaction reference")
