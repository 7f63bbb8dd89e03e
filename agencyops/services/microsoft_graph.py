"""
Microsoft Graph mail/calendar client and OAuth token exchange.

Graph calls share the "microsoft_graph" circuit breaker. Token requests
(code exchange and refresh) talk to the identity platform directly: a
rejected refresh token is a per-user problem and must not trip the breaker
for every other mailbox.

Usage:
    graph = MicrosoftGraphClient()
    tokens = await graph.exchange_code(code)            # sign-in callback
    tokens = await graph.refresh_access_token(refresh)  # background sync
    messages = await graph.get_emails(tokens.access_token, folder="sent")
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx

from agencyops.core.circuit_breaker import CircuitBreakerRegistry
from agencyops.core.config import settings
from agencyops.core.exceptions import InvalidGrantError, TokenRefreshError
from agencyops.core.logging_config import get_logger
from agencyops.core.typing import utc_now
from agencyops.services.http_client import GuardedClient, unwrap_items

logger = get_logger(__name__)

BREAKER_NAME = "microsoft_graph"
MAX_PAGE_SIZE = 50
CALENDAR_PAGE_SIZE = 200

# 'offline_access' is only requested on the initial sign-in; sending it on
# refresh can trigger AADSTS9002313 (malformed request).
SCOPES = [
    "offline_access",
    "User.Read",
    "Mail.Read",
    "Mail.ReadWrite",
    "Mail.Send",
    "Calendars.ReadWrite",
]
REFRESH_SCOPES = [s for s in SCOPES if s != "offline_access"]

FOLDER_PATHS = {
    "inbox": "inbox",
    "sent": "sentItems",
    "spam": "junkemail",
    "trash": "deletedItems",
}

MESSAGE_FIELDS = ",".join([
    "id",
    "subject",
    "from",
    "toRecipients",
    "ccRecipients",
    "bccRecipients",
    "body",
    "bodyPreview",
    "receivedDateTime",
    "sentDateTime",
    "isRead",
    "importance",
    "hasAttachments",
])
MESSAGE_DETAIL_FIELDS = MESSAGE_FIELDS + ",attachments"
EVENT_FIELDS = "id,subject,bodyPreview,start,end,location,attendees,webLink,onlineMeeting"
PROFILE_FIELDS = "displayName,mail,userPrincipalName"


@dataclass
class TokenSet:
    access_token: str
    refresh_token: Optional[str]
    expires_on: datetime


def folder_path(folder: str) -> str:
    return FOLDER_PATHS.get(folder, "inbox")


def _recipients(addresses: Optional[List[str]]) -> List[Dict[str, Any]]:
    return [{"emailAddress": {"address": address}} for address in addresses or []]


def _event_body(
    subject: Optional[str] = None,
    body_preview: Optional[str] = None,
    start: Optional[Dict[str, str]] = None,
    end: Optional[Dict[str, str]] = None,
    location: Optional[Dict[str, str]] = None,
    attendees: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    body = {
        "subject": subject,
        "body": {"contentType": "Text", "content": body_preview} if body_preview else None,
        "start": start,
        "end": end,
        "location": location,
        "attendees": attendees,
    }
    return {k: v for k, v in body.items() if v is not None}


class MicrosoftGraphClient(GuardedClient):
    service_name = "Microsoft Graph"

    def __init__(
        self,
        client_id: str = settings.MICROSOFT_CLIENT_ID,
        client_secret: str = settings.MICROSOFT_CLIENT_SECRET,
        tenant_id: str = settings.MICROSOFT_TENANT_ID,
        redirect_uri: str = settings.MICROSOFT_REDIRECT_URI,
        graph_base: str = settings.MICROSOFT_GRAPH_BASE,
        login_base: str = settings.MICROSOFT_LOGIN_BASE,
        calendar_mailbox: str = settings.MICROSOFT_CALENDAR_MAILBOX,
        timeout: float = settings.REMOTE_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        breaker = CircuitBreakerRegistry.get(
            BREAKER_NAME,
            failure_threshold=settings.CIRCUIT_FAILURE_THRESHOLD,
            reset_timeout=settings.CIRCUIT_RESET_TIMEOUT_SECONDS,
        )
        super().__init__(graph_base, breaker, timeout=timeout, transport=transport)
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.authority = f"{login_base.rstrip('/')}/{tenant_id}"
        self.token_url = f"{self.authority}/oauth2/v2.0/token"
        self.calendar_mailbox = calendar_mailbox.strip()
        self._transport = transport

    # OAuth

    def get_auth_url(self, state: Optional[str] = None) -> str:
        """Sign-in URL for the authorization code flow."""
        params = {
            "client_id": self.client_id,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "response_mode": "query",
            "scope": " ".join(SCOPES),
        }
        if state:
            params["state"] = state
        return f"{self.authority}/oauth2/v2.0/authorize?{urlencode(params)}"

    async def _token_request(self, data: Dict[str, str], fallback_refresh_token: Optional[str] = None) -> TokenSet:
        """
        POST to the token endpoint outside the breaker.

        Raises:
            InvalidGrantError: the grant (code or refresh token) was rejected
            TokenRefreshError: anything else; worth retrying later
        """
        data = {
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "redirect_uri": self.redirect_uri,
            **data,
        }
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout), transport=self._transport) as client:
                response = await asyncio.wait_for(client.post(self.token_url, data=data), timeout=self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise TokenRefreshError(f"Token request timed out after {self.timeout:.1f}s") from e
        except httpx.TransportError as e:
            raise TokenRefreshError(f"Token request failed: {type(e).__name__}: {e}") from e

        try:
            payload: Dict[str, Any] = response.json()
        except ValueError:
            payload = {}

        if response.is_error:
            error = payload.get("error", "")
            logger.error(
                "Token request rejected",
                grant_type=data["grant_type"],
                status_code=response.status_code,
                error=error,
                error_codes=payload.get("error_codes"),
            )
            if error == "invalid_grant":
                raise InvalidGrantError(payload.get("error_description", ""))
            raise TokenRefreshError(
                f"Token request failed: {response.status_code} {error or response.reason_phrase}"
            )

        access_token = payload.get("access_token")
        if not access_token:
            raise TokenRefreshError("No access token in token response")

        expires_in = int(payload.get("expires_in", 3600))
        return TokenSet(
            access_token=access_token,
            # Identity platform may omit a new refresh token; keep the old one then
            refresh_token=payload.get("refresh_token") or fallback_refresh_token,
            expires_on=utc_now() + timedelta(seconds=expires_in),
        )

    async def exchange_code(self, code: str) -> TokenSet:
        """Redeem the sign-in callback's authorization code for the first token set."""
        if not code:
            raise TokenRefreshError("No authorization code provided")
        return await self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "scope": " ".join(SCOPES),
        })

    async def refresh_access_token(self, refresh_token: Optional[str]) -> TokenSet:
        """Exchange a refresh token for a new access token."""
        if not refresh_token:
            raise TokenRefreshError("No refresh token provided")
        return await self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "scope": " ".join(REFRESH_SCOPES),
            },
            fallback_refresh_token=refresh_token,
        )

    # Mail

    @staticmethod
    def _auth(access_token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {access_token}"}

    async def get_emails(self, access_token: str, folder: str = "inbox", top: int = 50) -> List[Dict[str, Any]]:
        """Newest messages first from one mail folder."""
        params = {
            "$select": MESSAGE_FIELDS,
            "$top": min(top, MAX_PAGE_SIZE),
            "$orderby": "receivedDateTime DESC",
        }
        payload = await self.get(
            f"/me/mailFolders/{folder_path(folder)}/messages",
            params=params,
            headers=self._auth(access_token),
        )
        return unwrap_items(payload, key="value")

    async def get_email_by_id(self, access_token: str, message_id: str) -> Dict[str, Any]:
        return await self.get(
            f"/me/messages/{message_id}",
            params={"$select": MESSAGE_DETAIL_FIELDS},
            headers=self._auth(access_token),
        )

    async def send_email(
        self,
        access_token: str,
        to: List[str],
        subject: str,
        body: str,
        cc: Optional[List[str]] = None,
        bcc: Optional[List[str]] = None,
        is_html: bool = False,
    ) -> None:
        message = {
            "subject": subject,
            "body": {"contentType": "HTML" if is_html else "Text", "content": body},
            "toRecipients": _recipients(to),
            "ccRecipients": _recipients(cc),
            "bccRecipients": _recipients(bcc),
        }
        await self.post("/me/sendMail", json={"message": message}, headers=self._auth(access_token))

    async def reply_to_email(self, access_token: str, message_id: str, body: str) -> None:
        await self.post(
            f"/me/messages/{message_id}/reply",
            json={"comment": body},
            headers=self._auth(access_token),
        )

    async def mark_as_read(self, access_token: str, message_id: str, is_read: bool = True) -> None:
        await self.patch(
            f"/me/messages/{message_id}",
            json={"isRead": is_read},
            headers=self._auth(access_token),
        )

    async def get_user_profile(self, access_token: str) -> Dict[str, Any]:
        return await self.get("/me", params={"$select": PROFILE_FIELDS}, headers=self._auth(access_token))

    # Calendar

    def _calendar_base(self) -> str:
        if self.calendar_mailbox:
            return f"/users/{quote(self.calendar_mailbox, safe='')}"
        return "/me"

    async def list_calendar_view(
        self,
        access_token: str,
        start: str,
        end: str,
        timezone: str = settings.SCHEDULER_TIMEZONE,
    ) -> List[Dict[str, Any]]:
        """Events overlapping [start, end) (ISO 8601), times rendered in `timezone`."""
        payload = await self.get(
            f"{self._calendar_base()}/calendarView",
            params={
                "startDateTime": start,
                "endDateTime": end,
                "$top": CALENDAR_PAGE_SIZE,
                "$orderby": "start/dateTime",
                "$select": EVENT_FIELDS,
            },
            headers={**self._auth(access_token), "Prefer": f'outlook.timezone="{timezone}"'},
        )
        return unwrap_items(payload, key="value")

    async def create_calendar_event(
        self,
        access_token: str,
        subject: str,
        start: Dict[str, str],
        end: Dict[str, str],
        body_preview: Optional[str] = None,
        location: Optional[Dict[str, str]] = None,
        attendees: Optional[List[Dict[str, Any]]] = None,
    ) -> Dict[str, Any]:
        return await self.post(
            f"{self._calendar_base()}/events",
            json=_event_body(subject, body_preview, start, end, location, attendees),
            headers=self._auth(access_token),
        )

    async def update_calendar_event(
        self,
        access_token: str,
        event_id: str,
        subject: Optional[str] = None,
        start: Optional[Dict[str, str]] = None,
        end: Optional[Dict[str, str]] = None,
        body_preview: Optional[str] = None,
        location: Optional[Dict[str, str]] = None,
    ) -> None:
        await self.patch(
            f"{self._calendar_base()}/events/{event_id}",
            json=_event_body(subject, body_preview, start, end, location),
            headers=self._auth(access_token),
        )

    async def delete_calendar_event(self, access_token: str, event_id: str) -> None:
        await self.delete(f"{self._calendar_base()}/events/{event_id}", headers=self._auth(access_token))
