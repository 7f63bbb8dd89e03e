"""
Background email sync.

For every user with an active mailbox link: refresh the access token when it
has expired, then pull the newest messages of each folder and store the ones
we have not seen yet (keyed by the provider's message id).

Failure handling:
- no refresh token, or refresh rejected with invalid_grant: the link is
  deactivated and the user has to sign in again
- any other refresh failure: user skipped this pass, link stays active
- a folder that fails to fetch is logged and the remaining folders still sync
- one user's failure never stops the sweep for the others

Usage:
    summary = await sync_all_users_emails(storage, graph)
    summary = await trigger_manual_sync(storage, graph)  # operator resync
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from agencyops.core.config import settings
from agencyops.core.errors import capture_exception, capture_message, error_boundary
from agencyops.core.exceptions import is_invalid_grant
from agencyops.core.logging_config import get_logger
from agencyops.core.typing import ensure_utc, utc_now
from agencyops.services.microsoft_graph import TokenSet
from agencyops.services.storage import Storage

logger = get_logger(__name__)


class MailProvider(Protocol):
    async def refresh_access_token(self, refresh_token: Optional[str]) -> TokenSet: ...

    async def get_emails(self, access_token: str, folder: str = "inbox", top: int = 50) -> List[Dict[str, Any]]: ...


@dataclass
class UserSyncResult:
    user_id: int
    success: bool
    reason: Optional[str] = None  # no_account, no_refresh_token, token_refresh_failed, error
    synced_count: int = 0
    failed_folders: List[str] = field(default_factory=list)


@dataclass
class SyncSummary:
    users_attempted: int = 0
    users_succeeded: int = 0
    new_emails: int = 0
    duration_seconds: float = 0.0
    results: List[UserSyncResult] = field(default_factory=list)


def _parse_graph_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))
    except ValueError:
        return None


def _addresses(recipients: Optional[List[Dict[str, Any]]]) -> List[str]:
    return [
        r["emailAddress"]["address"]
        for r in recipients or []
        if r.get("emailAddress", {}).get("address")
    ]


def message_to_email_fields(msg: Dict[str, Any], user_id: int, folder: str) -> Dict[str, Any]:
    """Map a Graph message resource onto Email columns."""
    sender = (msg.get("from") or {}).get("emailAddress") or {}
    body = (msg.get("body") or {}).get("content") or ""
    return {
        "message_id": msg["id"],
        "user_id": user_id,
        "folder": folder,
        "from_address": sender.get("address") or "",
        "from_name": sender.get("name") or "",
        "to": _addresses(msg.get("toRecipients")),
        "cc": _addresses(msg.get("ccRecipients")),
        "bcc": _addresses(msg.get("bccRecipients")),
        "subject": msg.get("subject") or "(No Subject)",
        "body": body,
        "body_preview": (msg.get("bodyPreview") or body)[:150],
        "is_read": bool(msg.get("isRead")),
        "is_important": msg.get("importance") == "high" or bool(msg.get("isImportant")),
        "has_attachments": bool(msg.get("hasAttachments")),
        "received_at": _parse_graph_datetime(msg.get("receivedDateTime")) or utc_now(),
        "sent_at": _parse_graph_datetime(msg.get("sentDateTime")),
    }


def _deactivate(storage: Storage, account_id: int, user_id: int, reason: str) -> None:
    with error_boundary("deactivate_email_account", user_id=user_id, account_id=account_id):
        storage.update_email_account(account_id, is_active=False)
        capture_message(
            "Email account deactivated, re-authentication required",
            level="warning",
            context={"user_id": user_id, "account_id": account_id, "reason": reason},
        )


async def sync_emails_for_user(
    storage: Storage,
    graph: MailProvider,
    user_id: int,
    folders: Optional[Sequence[str]] = None,
    page_size: Optional[int] = None,
) -> UserSyncResult:
    """Sync one user's mailbox. Never raises; the outcome is in the result."""
    folders = list(settings.EMAIL_SYNC_FOLDERS) if folders is None else list(folders)
    page_size = page_size or settings.EMAIL_SYNC_PAGE_SIZE
    log = logger.bind(user_id=user_id)

    try:
        account = storage.get_email_account_by_user_id(user_id)
        if account is None or not account.is_active:
            log.info("No active email account, skipping")
            return UserSyncResult(user_id, False, "no_account")

        access_token = account.access_token
        expires_at = ensure_utc(account.token_expires_at)
        if expires_at is not None and expires_at < utc_now():
            log.info("Token expired, refreshing")

            if not account.refresh_token:
                log.warning("No refresh token, marking email account inactive")
                _deactivate(storage, account.id, user_id, "no_refresh_token")
                return UserSyncResult(user_id, False, "no_refresh_token")

            try:
                tokens = await graph.refresh_access_token(account.refresh_token)
            except Exception as e:
                log.error("Failed to refresh token", error=str(e), error_type=type(e).__name__)
                if is_invalid_grant(e):
                    _deactivate(storage, account.id, user_id, "invalid_grant")
                return UserSyncResult(user_id, False, "token_refresh_failed")

            storage.update_email_account(
                account.id,
                access_token=tokens.access_token,
                refresh_token=tokens.refresh_token,
                token_expires_at=tokens.expires_on,
            )
            access_token = tokens.access_token
            log.info("Token refreshed")

        synced_count = 0
        failed_folders: List[str] = []
        for folder in folders:
            try:
                messages = await graph.get_emails(access_token or "", folder, page_size)
                for msg in messages:
                    if not msg.get("id") or storage.email_exists(msg["id"]):
                        continue
                    if storage.create_email(**message_to_email_fields(msg, user_id, folder)):
                        synced_count += 1
            except Exception as e:
                failed_folders.append(folder)
                log.error(f"Error syncing {folder}", folder=folder, error=str(e), error_type=type(e).__name__)

        # An empty folder list is a successful no-op
        success = not folders or len(failed_folders) < len(folders)
        if success:
            storage.update_email_account(account.id, last_synced_at=utc_now())

        log.info("Synced new emails", synced_count=synced_count, failed_folders=failed_folders)
        return UserSyncResult(
            user_id,
            success,
            None if success else "error",
            synced_count=synced_count,
            failed_folders=failed_folders,
        )

    except Exception as e:
        capture_exception(e, context={"operation": "email_sync_user", "user_id": user_id})
        return UserSyncResult(user_id, False, "error")


async def sync_all_users_emails(
    storage: Storage,
    graph: MailProvider,
    folders: Optional[Sequence[str]] = None,
    page_size: Optional[int] = None,
) -> SyncSummary:
    """One sweep over every user with an active mailbox link."""
    started = time.monotonic()
    summary = SyncSummary()
    logger.info("Background email sync started")

    with error_boundary("email_sync"):
        user_ids: List[int] = []
        for user in storage.get_users():
            try:
                account = storage.get_email_account_by_user_id(user.id)
            except Exception as e:
                logger.warning("Could not load email account", user_id=user.id, error=str(e))
                continue
            if account is not None and account.is_active:
                user_ids.append(user.id)

        logger.info("Found users with connected email accounts", count=len(user_ids))

        for user_id in user_ids:
            result = await sync_emails_for_user(storage, graph, user_id, folders=folders, page_size=page_size)
            summary.results.append(result)

    summary.users_attempted = len(summary.results)
    summary.users_succeeded = sum(1 for r in summary.results if r.success)
    summary.new_emails = sum(r.synced_count for r in summary.results)
    summary.duration_seconds = round(time.monotonic() - started, 2)

    logger.info(
        "Background email sync completed",
        users_synced=f"{summary.users_succeeded}/{summary.users_attempted}",
        new_emails=summary.new_emails,
        duration_seconds=summary.duration_seconds,
    )
    return summary


async def trigger_manual_sync(storage: Storage, graph: MailProvider) -> SyncSummary:
    """Operator-initiated resync; same semantics as the scheduled run."""
    logger.info("Manual email sync triggered")
    return await sync_all_users_emails(storage, graph)
