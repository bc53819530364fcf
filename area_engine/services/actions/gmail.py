"""
gmail_new_email: fires when a newer message lands in the mailbox.

Lists the most recent message (INBOX by default, whole mailbox when
GMAIL_SCOPE_MODE=ALL), then fetches its metadata for `internalDate`
(epoch milliseconds as a string). Markers are compared numerically.

If INBOX lists nothing while the profile reports messages, the list is
retried without the label filter: some accounts file everything outside
INBOX.
"""
from __future__ import annotations

from typing import Any, Optional

from area_engine.core.logging import get_logger
from area_engine.services.actions.base import ActionDetector
from area_engine.services.fields import Placeholder
from area_engine.services.gateway import RequestSpec

log = get_logger(__name__)

GMAIL_API = "https://gmail.googleapis.com/gmail/v1/users/me"

_PLACEHOLDERS = [
    Placeholder("GMAIL_MESSAGE_ID", "The unique ID of the email", "18c5a1b2c3d4e5f6"),
    Placeholder("GMAIL_THREAD_ID", "The thread the email belongs to", "18c5a1b2c3d4e5f6"),
    Placeholder("GMAIL_FROM", "Sender of the email", "Jane Doe <jane@example.com>"),
    Placeholder("GMAIL_SUBJECT", "Subject line of the email", "Quarterly report"),
    Placeholder("GMAIL_SNIPPET", "Short excerpt of the email body", "Hi team, please find attached..."),
    Placeholder("GMAIL_DATE", "Date header of the email", "Sun, 10 Dec 2023 15:30:00 +0000"),
    Placeholder("GMAIL_RECEIVED_AT", "Reception time in epoch milliseconds", "1702222200000"),
]


def _header(item: dict[str, Any], name: str) -> Optional[str]:
    for header in (item.get("payload") or {}).get("headers") or []:
        if str(header.get("name", "")).lower() == name.lower():
            return header.get("value")
    return None


class GmailNewMailDetector(ActionDetector):
    action_name = "gmail_new_email"
    provider = "google"
    description = "Detect new incoming email in Gmail inbox"

    def __init__(self, auth, watermarks, poll_interval: float = 5.0, scope_mode: str = "INBOX") -> None:
        super().__init__(auth, watermarks)
        self.poll_interval = poll_interval
        self.scope_mode = scope_mode.upper()

    def resource(self, config: dict[str, Any]) -> str:
        return "all_mail" if self.scope_mode == "ALL" else "inbox"

    def placeholders(self) -> list[Placeholder]:
        return list(_PLACEHOLDERS)

    async def _list_latest(self, user_id: str, inbox_only: bool) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"maxResults": 1}
        if inbox_only:
            params["labelIds"] = "INBOX"
        response = await self._auth.authenticated_request(
            self.provider, user_id, RequestSpec(url=f"{GMAIL_API}/messages", params=params)
        )
        return response.json().get("messages") or []

    async def _mailbox_has_messages(self, user_id: str) -> bool:
        response = await self._auth.authenticated_request(
            self.provider, user_id, RequestSpec(url=f"{GMAIL_API}/profile")
        )
        return (response.json().get("messagesTotal") or 0) > 0

    async def fetch_latest(self, user_id: str, config: dict[str, Any]) -> Optional[dict[str, Any]]:
        inbox_only = self.scope_mode != "ALL"
        messages = await self._list_latest(user_id, inbox_only)

        if not messages and inbox_only and await self._mailbox_has_messages(user_id):
            log.debug("gmail_inbox_empty_retry_all_mail", user_id=user_id)
            messages = await self._list_latest(user_id, inbox_only=False)

        if not messages:
            return None
        message_id = messages[0].get("id")
        if not message_id:
            return {}

        response = await self._auth.authenticated_request(
            self.provider,
            user_id,
            RequestSpec(
                url=f"{GMAIL_API}/messages/{message_id}",
                params={"format": "metadata", "metadataHeaders": ["From", "Subject", "Date"]},
            ),
        )
        return response.json()

    def marker(self, item: dict[str, Any]) -> Optional[str]:
        return item.get("internalDate")

    def is_newer(self, marker: str, stored: str) -> bool:
        if marker.isdigit() and stored.isdigit():
            return int(marker) > int(stored)
        return marker > stored

    def extract_placeholders(self, item: dict[str, Any]) -> dict[str, str]:
        return {
            "GMAIL_MESSAGE_ID": item.get("id") or "",
            "GMAIL_THREAD_ID": item.get("threadId") or "",
            "GMAIL_FROM": _header(item, "From") or "Unknown",
            "GMAIL_SUBJECT": _header(item, "Subject") or "(no subject)",
            "GMAIL_SNIPPET": item.get("snippet") or "",
            "GMAIL_DATE": _header(item, "Date") or "",
            "GMAIL_RECEIVED_AT": item.get("internalDate") or "0",
        }
