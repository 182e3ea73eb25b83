"""HTTP remote source tests over httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from learnxp.competition.schemas import LeaderboardScope
from learnxp.config import Settings
from learnxp.errors import RemoteError
from learnxp.remote.http_client import HttpRemoteProgressSource, kind_for_status
from learnxp.result import ErrorKind


def _remote(handler) -> HttpRemoteProgressSource:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://remote.test/api/v1")
    return HttpRemoteProgressSource(client=client)


class TestStatusMapping:
    @pytest.mark.parametrize(("status", "kind"), [
        (401, ErrorKind.UNAUTHORIZED),
        (403, ErrorKind.UNAUTHORIZED),
        (404, ErrorKind.NOT_FOUND),
        (408, ErrorKind.TIMEOUT),
        (422, ErrorKind.VALIDATION),
        (429, ErrorKind.RATE_LIMITED),
        (500, ErrorKind.SERVER),
        (503, ErrorKind.SERVER),
        (418, ErrorKind.UNKNOWN),
    ])
    def test_kind_for_status(self, status, kind):
        assert kind_for_status(status) == kind


class TestFetchRemoteLedger:
    """GET /users/{id}/progress."""

    @pytest.mark.asyncio
    async def test_parses_ledger(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/api/v1/users/u1/progress"
            return httpx.Response(200, json={
                "user_id": "u1",
                "total_xp": 1500,
                "level": 99,
                "current_streak": 3,
                "badges": ["a", "a", "b"],
            })

        remote = _remote(handler)
        ledger = await remote.fetch_remote_ledger("u1")
        assert ledger.total_xp == 1500
        assert ledger.level == 5
        assert ledger.badges == ("a", "b")
        assert ledger.max_streak == 3

    @pytest.mark.asyncio
    async def test_error_status_raises_classified(self):
        remote = _remote(lambda request: httpx.Response(503))
        with pytest.raises(RemoteError) as exc_info:
            await remote.fetch_remote_ledger("u1")
        assert exc_info.value.kind == ErrorKind.SERVER
        assert exc_info.value.status_code == 503

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        remote = _remote(lambda request: httpx.Response(200, json={"total_xp": "lots"}))
        with pytest.raises(RemoteError) as exc_info:
            await remote.fetch_remote_ledger("u1")
        assert exc_info.value.kind == ErrorKind.PARSING

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        remote = _remote(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(RemoteError) as exc_info:
            await remote.fetch_remote_ledger("u1")
        assert exc_info.value.kind == ErrorKind.PARSING

    @pytest.mark.asyncio
    async def test_connect_error_is_offline(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(RemoteError) as exc_info:
            await _remote(handler).fetch_remote_ledger("u1")
        assert exc_info.value.kind == ErrorKind.OFFLINE

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(RemoteError) as exc_info:
            await _remote(handler).fetch_remote_ledger("u1")
        assert exc_info.value.kind == ErrorKind.TIMEOUT


class TestPushXpDelta:
    @pytest.mark.asyncio
    async def test_sends_delta_and_key(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["body"] = json.loads(request.content)
            seen["key"] = request.headers.get("Idempotency-Key")
            return httpx.Response(200, json={"total_xp": 540})

        total = await _remote(handler).push_xp_delta("u1", 40, idempotency_key="sync:u1:500:40")
        assert total == 540
        assert seen == {"method": "POST", "body": {"delta": 40}, "key": "sync:u1:500:40"}

    @pytest.mark.asyncio
    async def test_missing_total(self):
        remote = _remote(lambda request: httpx.Response(200, json={"ok": True}))
        with pytest.raises(RemoteError) as exc_info:
            await remote.push_xp_delta("u1", 40)
        assert exc_info.value.kind == ErrorKind.PARSING

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        remote = _remote(lambda request: httpx.Response(429))
        with pytest.raises(RemoteError) as exc_info:
            await remote.push_xp_delta("u1", 40)
        assert exc_info.value.kind == ErrorKind.RATE_LIMITED


class TestFetchCohort:
    @pytest.mark.asyncio
    async def test_entries_object(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.params["scope"] == "weekly"
            return httpx.Response(200, json={"entries": [{"user_id": "a", "total_xp": 10}]})

        cohort = await _remote(handler).fetch_cohort(LeaderboardScope.WEEKLY)
        assert [ledger.user_id for ledger in cohort] == ["a"]

    @pytest.mark.asyncio
    async def test_bare_list(self):
        remote = _remote(lambda request: httpx.Response(200, json=[{"user_id": "a"}, {"user_id": "b"}]))
        cohort = await remote.fetch_cohort(LeaderboardScope.ALL_TIME)
        assert len(cohort) == 2

    @pytest.mark.asyncio
    async def test_no_entries(self):
        remote = _remote(lambda request: httpx.Response(200, json={"items": []}))
        with pytest.raises(RemoteError) as exc_info:
            await remote.fetch_cohort(LeaderboardScope.ALL_TIME)
        assert exc_info.value.kind == ErrorKind.PARSING


class TestClientLifecycle:
    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        settings = Settings(_env_file=None, remote_base_url="http://remote.test")
        remote = HttpRemoteProgressSource.from_settings(settings)
        async with remote:
            pass
        assert remote._client.is_closed

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        async with HttpRemoteProgressSource(client=client):
            pass
        assert not client.is_closed
        await client.aclose()
