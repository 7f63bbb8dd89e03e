"""
Dialpad telephony API client.

All calls share the "dialpad" circuit breaker. List endpoints cap `limit` at
the API maximum of 50, page with `offset`, and return plain lists unwrapped
from the `items` envelope (older responses name the list after the resource:
`calls`, `messages`, `contacts`).

Usage:
    async with get_dialpad_client() as dialpad:
        calls = await dialpad.get_call_logs(limit=100)  # sends limit=50
"""

from typing import Any, Dict, List, Optional

import httpx

from agencyops.core.circuit_breaker import CircuitBreakerRegistry
from agencyops.core.config import settings
from agencyops.services.http_client import GuardedClient, build_params, unwrap_items

MAX_PAGE_SIZE = 50
BREAKER_NAME = "dialpad"


def cap_limit(limit: Optional[int]) -> Optional[int]:
    if limit is not None and limit > MAX_PAGE_SIZE:
        return MAX_PAGE_SIZE
    return limit


class DialpadClient(GuardedClient):
    service_name = "Dialpad"

    def __init__(
        self,
        api_key: str,
        base_url: str = settings.DIALPAD_API_BASE,
        timeout: float = settings.REMOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        breaker = CircuitBreakerRegistry.get(
            BREAKER_NAME,
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            reset_timeout=settings.CIRCUIT_RESET_TIMEOUT_SECONDS,
        )
        super().__init__(
            base_url,
            breaker,
            timeout=timeout,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            transport=transport,
        )

    async def _list(self, path: str, params: Dict[str, Any], legacy_key: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {**params, "limit": cap_limit(params.get("limit"))}
        payload = await self.get(path, params=params)
        items = unwrap_items(payload)
        if not items and legacy_key:
            items = unwrap_items(payload, key=legacy_key)
        return items

    # Calls

    async def get_call_logs(
        self,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._list(
            "/call",
            {"start_time": start_time, "end_time": end_time, "limit": limit, "offset": offset},
            legacy_key="calls",
        )

    async def get_call_details(self, call_id: str) -> Dict[str, Any]:
        return await self.get(f"/call/{call_id}")

    async def make_call(
        self,
        to_number: str,
        from_number: Optional[str] = None,
        from_extension_id: Optional[str] = None,
        from_user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = build_params({
            "to_number": to_number,
            "from_number": from_number,
            "from_extension_id": from_extension_id,
            "from_user_id": from_user_id,
        })
        return await self.post("/call", json=body)

    async def get_recording_url(self, call_id: str) -> Dict[str, Any]:
        return await self.get(f"/call/{call_id}/recording")

    async def get_call_stats(
        self,
        start_time: str,
        end_time: str,
        target_type: Optional[str] = None,  # user, office, department, call_center
        target_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {
            "start_time": start_time,
            "end_time": end_time,
            "target_type": target_type,
            "target_id": target_id,
        }
        return await self.get("/stats/call", params=params)

    # SMS

    async def get_sms_messages(
        self,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._list(
            "/message",
            {"start_time": start_time, "end_time": end_time, "limit": limit, "offset": offset},
            legacy_key="messages",
        )

    async def send_sms(
        self,
        to_numbers: List[str],
        text: str,
        from_number: Optional[str] = None,
        from_user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = build_params({
            "to_numbers": to_numbers,
            "text": text,
            "from_number": from_number,
            "from_user_id": from_user_id,
        })
        return await self.post("/message", json=body)

    # Voicemail

    async def get_voicemails(
        self,
        start_time: Optional[str] = None,
        end_time: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._list(
            "/voicemail",
            {"start_time": start_time, "end_time": end_time, "limit": limit, "offset": offset},
        )

    # Contacts

    async def get_contacts(
        self,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        search: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        return await self._list(
            "/contacts",
            {"limit": limit, "offset": offset, "search": search},
            legacy_key="contacts",
        )

    async def create_contact(
        self,
        name: str,
        phones: Optional[List[Dict[str, str]]] = None,  # [{"type": "mobile", "value": "+1..."}]
        emails: Optional[List[Dict[str, str]]] = None,
        company: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = build_params({
            "name": name,
            "phones": phones,
            "emails": emails,
            "company": company,
        })
        return await self.post("/contacts", json=body)

    # Account

    async def get_current_user(self) -> Dict[str, Any]:
        return await self.get("/user/me")


def get_dialpad_client() -> Optional[DialpadClient]:
    """Client for the configured API key, or None when Dialpad is not set up."""
    if not settings.DIALPAD_API_KEY:
        return None
    return DialpadClient(settings.DIALPAD_API_KEY)
