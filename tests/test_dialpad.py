"""Tests for the Dialpad API client."""

import json

import httpx
import pytest

from agencyops.core.circuit_breaker import CircuitBreakerRegistry, CircuitState
from agencyops.core.config import settings
from agencyops.core.exceptions import CircuitOpenError, RemoteAPIError
from agencyops.services.dialpad import (
    BREAKER_NAME,
    DialpadClient,
    cap_limit,
    get_dialpad_client,
)


class Recorder:
    """MockTransport handler that records requests and replays a response."""

    def __init__(self, status=200, payload=None):
        self.status = status
        self.payload = {"items": []} if payload is None else payload
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json=self.payload)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def make_client(recorder: Recorder) -> DialpadClient:
    return DialpadClient("test-key", transport=httpx.MockTransport(recorder))


class TestCapLimit:
    def test_caps_at_fifty(self):
        assert cap_limit(100) == 50

    def test_keeps_smaller_limit(self):
        assert cap_limit(20) == 20

    def test_none_stays_none(self):
        assert cap_limit(None) is None


class TestListEndpoints:
    @pytest.mark.asyncio
    async def test_call_logs_caps_limit_and_drops_none(self):
        """limit=100 is sent as 50; unset filters are not sent at all."""
        recorder = Recorder(payload={"items": [{"id": "c1"}], "cursor": "next"})
        async with make_client(recorder) as dialpad:
            calls = await dialpad.get_call_logs(limit=100)

        assert calls == [{"id": "c1"}]
        params = dict(recorder.last.url.params)
        assert params == {"limit": "50"}
        assert recorder.last.url.path.endswith("/call")

    @pytest.mark.asyncio
    async def test_call_logs_time_range(self):
        recorder = Recorder()
        async with make_client(recorder) as dialpad:
            await dialpad.get_call_logs(start_time="1700000000", end_time="1700003600", limit=10)

        params = dict(recorder.last.url.params)
        assert params == {
            "start_time": "1700000000",
            "end_time": "1700003600",
            "limit": "10",
        }

    @pytest.mark.asyncio
    async def test_call_logs_paging_offset(self):
        recorder = Recorder()
        async with make_client(recorder) as dialpad:
            await dialpad.get_call_logs(limit=50, offset=100)

        assert dict(recorder.last.url.params) == {"limit": "50", "offset": "100"}

    @pytest.mark.asyncio
    async def test_legacy_resource_envelope(self):
        """Responses keyed by resource name unwrap the same as items."""
        recorder = Recorder(payload={"calls": [{"id": "c1"}, {"id": "c2"}]})
        async with make_client(recorder) as dialpad:
            calls = await dialpad.get_call_logs()

        assert [c["id"] for c in calls] == ["c1", "c2"]

    @pytest.mark.asyncio
    async def test_missing_envelope_returns_empty_list(self):
        recorder = Recorder(payload={"cursor": None})
        async with make_client(recorder) as dialpad:
            assert await dialpad.get_sms_messages() == []
        assert recorder.last.url.path.endswith("/message")

    @pytest.mark.asyncio
    async def test_contacts_search(self):
        recorder = Recorder(payload={"items": [{"id": "p1"}]})
        async with make_client(recorder) as dialpad:
            contacts = await dialpad.get_contacts(search="acme", limit=75, offset=50)

        assert contacts == [{"id": "p1"}]
        assert dict(recorder.last.url.params) == {"limit": "50", "offset": "50", "search": "acme"}

    @pytest.mark.asyncio
    async def test_voicemails(self):
        recorder = Recorder(payload={"items": [{"id": "v1"}]})
        async with make_client(recorder) as dialpad:
            assert await dialpad.get_voicemails() == [{"id": "v1"}]
        assert recorder.last.url.path.endswith("/voicemail")


class TestRequests:
    @pytest.mark.asyncio
    async def test_bearer_auth_header(self):
        recorder = Recorder(payload={"id": "me"})
        async with make_client(recorder) as dialpad:
            me = await dialpad.get_current_user()

        assert me == {"id": "me"}
        assert recorder.last.headers["Authorization"] == "Bearer test-key"
        assert recorder.last.url.path.endswith("/user/me")

    @pytest.mark.asyncio
    async def test_send_sms_omits_unset_fields(self):
        recorder = Recorder(payload={"id": "sms1"})
        async with make_client(recorder) as dialpad:
            await dialpad.send_sms(["+15551234567"], "Hello")

        assert recorder.last.method == "POST"
        assert recorder.last.url.path.endswith("/message")
        assert json.loads(recorder.last.content) == {"to_numbers": ["+15551234567"], "text": "Hello"}

    @pytest.mark.asyncio
    async def test_make_call(self):
        recorder = Recorder(payload={"call_id": "c9"})
        async with make_client(recorder) as dialpad:
            await dialpad.make_call("+15551234567", from_number="+15550000000", from_user_id="u1")

        assert json.loads(recorder.last.content) == {
            "to_number": "+15551234567",
            "from_number": "+15550000000",
            "from_user_id": "u1",
        }

    @pytest.mark.asyncio
    async def test_call_stats_params(self):
        recorder = Recorder(payload={"total": 3})
        async with make_client(recorder) as dialpad:
            stats = await dialpad.get_call_stats("2024-01-01", "2024-01-31", target_type="user")

        assert stats == {"total": 3}
        assert dict(recorder.last.url.params) == {
            "start_time": "2024-01-01",
            "end_time": "2024-01-31",
            "target_type": "user",
        }

    @pytest.mark.asyncio
    async def test_api_error_message(self):
        recorder = Recorder(status=404, payload={"error": "not found"})
        async with make_client(recorder) as dialpad:
            with pytest.raises(RemoteAPIError, match="API Error: 404 Not Found"):
                await dialpad.get_call_details("missing")


class TestBreaker:
    @pytest.mark.asyncio
    async def test_clients_share_one_breaker(self):
        a = make_client(Recorder())
        b = make_client(Recorder())

        assert a.breaker is b.breaker
        assert a.breaker is CircuitBreakerRegistry.get(BREAKER_NAME)
        await a.aclose()
        await b.aclose()

    @pytest.mark.asyncio
    async def test_repeated_outage_opens_circuit(self):
        recorder = Recorder(status=502)
        async with make_client(recorder) as dialpad:
            for _ in range(settings.CIRCUIT_FAILURE_THRESHOLD):
                with pytest.raises(RemoteAPIError):
                    await dialpad.get_call_logs()

            with pytest.raises(CircuitOpenError):
                await dialpad.get_call_logs()

        assert dialpad.breaker.state == CircuitState.OPEN
        assert len(recorder.requests) == settings.CIRCUIT_FAILURE_THRESHOLD


class TestFactory:
    def test_returns_none_without_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "DIALPAD_API_KEY", "")
        assert get_dialpad_client() is None

    @pytest.mark.asyncio
    async def test_returns_client_with_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "DIALPAD_API_KEY", "configured")
        client = get_dialpad_client()

        assert isinstance(client, DialpadClient)
        await client.aclose()


class TestContacts:
    @pytest.mark.asyncio
    async def test_create_contact(self):
        recorder = Recorder(payload={"id": "p9"})
        async with make_client(recorder) as dialpad:
            await dialpad.create_contact(
                "Jamie Rivera",
                phones=[{"type": "mobile", "value": "+15551234567"}],
                company="Brand Co",
            )

        assert recorder.last.url.path.endswith("/contacts")
        assert json.loads(recorder.last.content) == {
            "name": "Jamie Rivera",
            "phones": [{"type": "mobile", "value": "+15551234567"}],
            "company": "Brand Co",
        }
