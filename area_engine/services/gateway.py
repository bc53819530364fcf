"""
Authorization gateway: the only way detectors and reactions talk to a
provider on a user's behalf. They never see raw credentials.

LinkedAccountGateway reads tokens from `linked_accounts` (written by the
OAuth layer, which also owns refresh) and sends requests with httpx.

Failure mapping for authenticated_request:
  no active account / expired token   → ProviderNotLinkedError
  network error, HTTP 429, HTTP 5xx   → ProviderUnavailableError
  any other non-2xx                   → httpx.HTTPStatusError
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import httpx
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from area_engine.core.errors import ProviderNotLinkedError, ProviderUnavailableError
from area_engine.core.logging import get_logger
from area_engine.models.linked_account import LinkedAccount

log = get_logger(__name__)

DEFAULT_PROVIDER = "default"


@dataclass
class RequestSpec:
    url: str
    method: str = "GET"
    params: Optional[dict[str, Any]] = None
    json: Optional[Any] = None
    headers: dict[str, str] = field(default_factory=dict)


class AuthorizationGateway(ABC):
    @abstractmethod
    async def has_linked_provider(self, user_id: str, provider: str) -> bool:
        ...

    @abstractmethod
    async def linked_providers(self, user_id: str) -> set[str]:
        ...

    @abstractmethod
    async def authenticated_request(
        self, provider: str, user_id: str, spec: RequestSpec
    ) -> httpx.Response:
        ...


def _is_expired(account: LinkedAccount) -> bool:
    if account.expires_at is None:
        return False
    expires_at = account.expires_at
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return expires_at <= datetime.now(tz=timezone.utc)


class LinkedAccountGateway(AuthorizationGateway):
    def __init__(
        self,
        session_factory: Callable[[], Session],
        http: httpx.AsyncClient,
    ) -> None:
        self._session_factory = session_factory
        self._http = http

    def _find_account(self, user_id: str, provider: str) -> Optional[LinkedAccount]:
        with self._session_factory() as db:
            return (
                db.query(LinkedAccount)
                .filter(
                    LinkedAccount.user_id == user_id,
                    LinkedAccount.provider == provider,
                    LinkedAccount.is_active == True,  # noqa: E712
                )
                .first()
            )

    async def has_linked_provider(self, user_id: str, provider: str) -> bool:
        if provider == DEFAULT_PROVIDER:
            return True
        return await run_in_threadpool(self._find_account, user_id, provider) is not None

    def _linked_rows(self, user_id: str) -> list:
        with self._session_factory() as db:
            return (
                db.query(LinkedAccount.provider)
                .filter(
                    LinkedAccount.user_id == user_id,
                    LinkedAccount.is_active == True,  # noqa: E712
                )
                .all()
            )

    async def linked_providers(self, user_id: str) -> set[str]:
        rows = await run_in_threadpool(self._linked_rows, user_id)
        return {row.provider for row in rows}

    async def authenticated_request(
        self, provider: str, user_id: str, spec: RequestSpec
    ) -> httpx.Response:
        account = await run_in_threadpool(self._find_account, user_id, provider)
        if account is None or not account.access_token:
            raise ProviderNotLinkedError(provider)
        if _is_expired(account):
            raise ProviderNotLinkedError(provider, reason="authorization expired")

        headers = {"Authorization": f"Bearer {account.access_token}", **spec.headers}
        try:
            response = await self._http.request(
                spec.method,
                spec.url,
                params=spec.params,
                json=spec.json,
                headers=headers,
            )
        except httpx.TransportError as exc:
            raise ProviderUnavailableError(provider, str(exc)) from exc

        if response.status_code == 429 or response.status_code >= 500:
            log.warning(
                "provider_request_throttled",
                provider=provider,
                user_id=user_id,
                status=response.status_code,
            )
            raise ProviderUnavailableError(provider, f"HTTP {response.status_code}")
        response.raise_for_status()
        return response


class DiscordBotClient:
    """
    Bot-token REST client shared by the Discord action and reaction.
    Channel reads and posts go through the bot, not the user's OAuth token.
    """

    def __init__(self, http: httpx.AsyncClient, token: str, api_base: str) -> None:
        self._http = http
        self._token = token
        self._api_base = api_base.rstrip("/")

    @property
    def is_ready(self) -> bool:
        return bool(self._token)

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._http.request(
                method,
                f"{self._api_base}{path}",
                headers={"Authorization": f"Bot {self._token}"},
                **kwargs,
            )
        except httpx.TransportError as exc:
            raise ProviderUnavailableError("discord", str(exc)) from exc
        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailableError("discord", f"HTTP {response.status_code}")
        response.raise_for_status()
        return response

    async def latest_message(self, channel_id: str) -> Optional[dict[str, Any]]:
        response = await self._request(
            "GET", f"/channels/{channel_id}/messages", params={"limit": 1}
        )
        messages = response.json() or []
        return messages[0] if messages else None

    async def send_message(self, channel_id: str, content: str) -> dict[str, Any]:
        response = await self._request(
            "POST", f"/channels/{channel_id}/messages", json={"content": content}
        )
        return response.json()
