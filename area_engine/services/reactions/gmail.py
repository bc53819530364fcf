"""
send_email: sends a plain-text message from the user's Gmail account.

The linked Google account must be a @gmail.com address (Workspace domains
are refused by the send scope this app requests). The message is built as
RFC 2822 with an RFC 2047 encoded subject, then base64url-encoded into the
`raw` field of users.messages.send.
"""
from __future__ import annotations

import base64
from email import policy
from email.message import EmailMessage
from typing import Any

import httpx

from area_engine.core.errors import ExecutionFailureError, ProviderUnavailableError
from area_engine.core.logging import get_logger
from area_engine.services.fields import ConfigField
from area_engine.services.gateway import AuthorizationGateway, RequestSpec
from area_engine.services.reactions.base import ReactionExecutor

log = get_logger(__name__)

USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


def build_raw_message(to: str, subject: str, body: str, sender: str | None = None) -> str:
    message = EmailMessage()
    if sender:
        message["From"] = sender
    message["To"] = to
    message["Subject"] = subject
    message.set_content(body)
    raw = message.as_bytes(policy=policy.SMTP)
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


class GmailSendReaction(ReactionExecutor):
    reaction_name = "send_email"
    provider = "google"
    description = "Send an email from your Gmail account"

    def __init__(self, auth: AuthorizationGateway) -> None:
        self._auth = auth

    def fields(self) -> list[ConfigField]:
        return [
            ConfigField("to", "email", required=True, label="Recipient", placeholder="someone@example.com"),
            ConfigField("subject", "string", required=True, label="Subject"),
            ConfigField("body", "string", required=True, label="Body"),
        ]

    async def _sender_address(self, user_id: str) -> str:
        response = await self._auth.authenticated_request(
            self.provider, user_id, RequestSpec(url=USERINFO_URL)
        )
        email = (response.json().get("email") or "").strip()
        if not email.lower().endswith("@gmail.com"):
            raise ExecutionFailureError(
                self.reaction_name,
                "the linked Google account is not a @gmail.com address",
            )
        return email

    async def run(self, user_id: str, config: dict[str, Any]) -> dict[str, Any]:
        config = self.validate(config)
        try:
            sender = await self._sender_address(user_id)
            raw = build_raw_message(config["to"], config["subject"], config["body"], sender)
            response = await self._auth.authenticated_request(
                self.provider,
                user_id,
                RequestSpec(url=SEND_URL, method="POST", json={"raw": raw}),
            )
        except (ProviderUnavailableError, httpx.HTTPError) as exc:
            raise ExecutionFailureError(self.reaction_name, str(exc)) from exc

        data = response.json()
        log.info("email_sent", user_id=user_id, to=config["to"], message_id=data.get("id"))
        return {"success": True, "messageId": data.get("id"), "to": config["to"]}
