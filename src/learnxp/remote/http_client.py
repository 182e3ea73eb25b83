"""RemoteProgressSource over HTTP with httpx.

Endpoints (relative to ``remote_base_url``):

    GET  /users/{user_id}/progress      -> ledger JSON
    POST /users/{user_id}/xp            {"delta": n} -> {"total_xp": n}
    GET  /leaderboard?scope=weekly      -> {"entries": [ledger JSON, ...]}

Every failure is raised as ``RemoteError`` with its kind already
classified, so callers never see a bare httpx exception.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from pydantic import ValidationError

from learnxp.competition.schemas import LeaderboardScope
from learnxp.config import Settings
from learnxp.errors import RemoteError
from learnxp.progress.schemas import ProgressLedger
from learnxp.result import ErrorKind

logger = structlog.get_logger()


def kind_for_status(status_code: int) -> ErrorKind:
    if status_code in (401, 403):
        return ErrorKind.UNAUTHORIZED
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 429:
        return ErrorKind.RATE_LIMITED
    if status_code in (400, 422):
        return ErrorKind.VALIDATION
    if status_code == 408:
        return ErrorKind.TIMEOUT
    if status_code >= 500:
        return ErrorKind.SERVER
    return ErrorKind.UNKNOWN


class HttpRemoteProgressSource:
    def __init__(
        self,
        base_url: str = "",
        *,
        timeout: float = 10.0,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout, headers=headers)

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpRemoteProgressSource:
        return cls(
            settings.remote_base_url,
            timeout=settings.remote_timeout_seconds,
            api_key=settings.remote_api_key,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> HttpRemoteProgressSource:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            raise RemoteError(f"{method} {path} timed out", kind=ErrorKind.TIMEOUT) from exc
        except httpx.ConnectError as exc:
            raise RemoteError(f"{method} {path}: remote unreachable", kind=ErrorKind.OFFLINE) from exc
        except httpx.TransportError as exc:
            raise RemoteError(f"{method} {path}: {exc}", kind=ErrorKind.NETWORK) from exc

        if response.is_error:
            kind = kind_for_status(response.status_code)
            logger.warning("remote_request_failed", method=method, path=path, status=response.status_code)
            raise RemoteError(
                f"{method} {path} returned {response.status_code}",
                kind=kind,
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise RemoteError(f"{method} {path} returned invalid JSON", kind=ErrorKind.PARSING) from exc

    async def fetch_remote_ledger(self, user_id: str) -> ProgressLedger:
        data = await self._request("GET", f"/users/{user_id}/progress")
        try:
            return ProgressLedger.model_validate(data)
        except ValidationError as exc:
            raise RemoteError(f"Malformed ledger for user {user_id}", kind=ErrorKind.PARSING) from exc

    async def push_xp_delta(self, user_id: str, delta: int, idempotency_key: str | None = None) -> int:
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        data = await self._request("POST", f"/users/{user_id}/xp", json={"delta": delta}, headers=headers)
        try:
            return int(data["total_xp"])
        except (KeyError, TypeError, ValueError) as exc:
            raise RemoteError("XP push response has no total_xp", kind=ErrorKind.PARSING) from exc

    async def fetch_cohort(self, scope: LeaderboardScope) -> list[ProgressLedger]:
        data = await self._request("GET", "/leaderboard", params={"scope": scope.value})
        entries = data.get("entries") if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise RemoteError("Leaderboard response has no entries", kind=ErrorKind.PARSING)
        try:
            return [ProgressLedger.model_validate(entry) for entry in entries]
        except ValidationError as exc:
            raise RemoteError("Malformed leaderboard entry", kind=ErrorKind.PARSING) from exc
