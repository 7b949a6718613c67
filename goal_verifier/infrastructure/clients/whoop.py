"""WHOOP API HTTP client for fetching daily recovery, sleep and strain data"""

import asyncio
import httpx
from datetime import timedelta
from typing import Any, Dict, List
from goal_verifier.config import settings
from goal_verifier.domain.exceptions import VendorAPIError, VendorAuthError
from goal_verifier.utils.date_utils import parse_calendar_date, utcnow

RECOVERY_PATH = "/v2/recovery"
SLEEP_PATH = "/v2/activity/sleep"
CYCLE_PATH = "/v2/cycle"
PAGE_LIMIT = 25


def merge_daily_payloads(
    recoveries: List[Dict[str, Any]],
    sleeps: List[Dict[str, Any]],
    cycles: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Fold WHOOP collections into one payload per calendar day.

    Output uses the nested day shape understood by the normalizer:
    {"date", "sleep": {"score"}, "recovery": {"score"},
     "workout": {"strain", "heart_rate": {"average"}}}
    Naps are ignored; the first record seen for a day wins.
    """
    days: Dict[str, Dict[str, Any]] = {}

    def day_entry(timestamp: Any) -> Dict[str, Any] | None:
        day = parse_calendar_date(timestamp)
        if day is None:
            return None
        return days.setdefault(day.isoformat(), {"date": day.isoformat()})

    for cycle in cycles:
        entry = day_entry(cycle.get("start"))
        score = cycle.get("score") or {}
        if entry is not None and "workout" not in entry:
            entry["workout"] = {
                "strain": score.get("strain"),
                "heart_rate": {"average": score.get("average_heart_rate")},
            }

    for sleep in sleeps:
        if sleep.get("nap"):
            continue
        entry = day_entry(sleep.get("end") or sleep.get("start"))
        score = sleep.get("score") or {}
        if entry is not None and "sleep" not in entry:
            entry["sleep"] = {"score": score.get("sleep_performance_percentage")}

    for recovery in recoveries:
        entry = day_entry(recovery.get("created_at"))
        score = recovery.get("score") or {}
        if entry is not None and "recovery" not in entry:
            entry["recovery"] = {"score": score.get("recovery_score")}

    return sorted(days.values(), key=lambda day: day["date"], reverse=True)


class WhoopClient:
    """Client for the WHOOP developer API (OAuth bearer token)"""

    def __init__(
        self,
        base_url: str | None = None,
        access_token: str | None = None,
        refresh_token: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.whoop_api_base
        self.access_token = access_token if access_token is not None else settings.whoop_access_token
        self.refresh_token = refresh_token if refresh_token is not None else settings.whoop_refresh_token
        self.client_id = client_id or settings.whoop_client_id
        self.client_secret = client_secret or settings.whoop_client_secret
        self.token_url = token_url or settings.whoop_oauth_token_url
        self.timeout = timeout or settings.http_timeout_seconds
        self._transport = transport
        self._refresh_lock = asyncio.Lock()

    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    async def get_all_health_data(self, days: int = 7) -> List[Dict[str, Any]]:
        """
        Fetch the last `days` of recovery, sleep and cycle data as per-day payloads.

        Raises:
            VendorAuthError: No token configured or WHOOP rejected it
            VendorAPIError: On timeout, HTTP errors, or invalid response
        """
        if not self.is_authenticated():
            raise VendorAuthError("WHOOP access token not configured")

        end = utcnow()
        start = end - timedelta(days=days)

        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport) as client:
            recoveries, sleeps, cycles = await asyncio.gather(
                self._collect(client, RECOVERY_PATH, start.isoformat(), end.isoformat()),
                self._collect(client, SLEEP_PATH, start.isoformat(), end.isoformat()),
                self._collect(client, CYCLE_PATH, start.isoformat(), end.isoformat()),
            )

        return merge_daily_payloads(recoveries, sleeps, cycles)

    async def _collect(self, client: httpx.AsyncClient, path: str, start: str, end: str) -> List[Dict[str, Any]]:
        """Follow next_token pagination until the collection is exhausted"""
        records: List[Dict[str, Any]] = []
        next_token = None

        while True:
            params: Dict[str, Any] = {"start": start, "end": end, "limit": PAGE_LIMIT}
            if next_token:
                params["nextToken"] = next_token

            data = await self._get(client, path, params)
            page = data.get("records", [])
            if not isinstance(page, list):
                raise VendorAPIError(f"Invalid WHOOP response for {path}: records is not a list")
            records.extend(record for record in page if isinstance(record, dict))

            next_token = data.get("next_token")
            if not next_token:
                return records

    async def _get(self, client: httpx.AsyncClient, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        token_used = self.access_token
        try:
            response = await client.get(path, params=params, headers=self._auth_headers())
            if response.status_code == 401 and self._can_refresh():
                await self._refresh_once(client, token_used)
                response = await client.get(path, params=params, headers=self._auth_headers())

            response.raise_for_status()
            data = response.json()

        except httpx.TimeoutException as e:
            raise VendorAPIError(f"WHOOP API timeout after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code in (401, 403):
                raise VendorAuthError(f"WHOOP rejected credentials: {e.response.status_code}") from e
            raise VendorAPIError(f"WHOOP API error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise VendorAPIError(f"WHOOP API unreachable: {e}") from e
        except ValueError as e:
            raise VendorAPIError(f"Invalid JSON from WHOOP: {e}") from e

        if not isinstance(data, dict):
            raise VendorAPIError(f"Invalid WHOOP response for {path}")
        return data

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.access_token}"}

    def _can_refresh(self) -> bool:
        return bool(self.refresh_token and self.client_id and self.client_secret)

    async def _refresh_once(self, client: httpx.AsyncClient, token_used: str | None) -> None:
        """Refresh the access token unless a concurrent request already did"""
        async with self._refresh_lock:
            if self.access_token != token_used:
                return
            await self.refresh_access_token(client)

    async def refresh_access_token(self, client: httpx.AsyncClient) -> None:
        """
        Exchange the refresh token for a new access token.

        WHOOP rotates refresh tokens, so the returned one replaces ours.
        """
        response = await client.post(
            self.token_url,
            data={
                "grant_type": "refresh_token",
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "scope": "offline",
            },
        )
        if response.status_code != 200:
            raise VendorAuthError(f"WHOOP token refresh failed: {response.status_code}")

        try:
            data = response.json()
            self.access_token = data["access_token"]
        except (KeyError, TypeError, ValueError) as e:
            raise VendorAuthError("WHOOP token refresh returned no access token") from e
        self.refresh_token = data.get("refresh_token", self.refresh_token)
