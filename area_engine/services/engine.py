"""
Engine container: wires cache, gateway, detectors, reactions and the
orchestrator from Settings. One instance per process, held on
`app.state.engine` and handed to routes through `get_engine`.
"""
from __future__ import annotations

from typing import Callable, Optional

import httpx
from fastapi import Request
from sqlalchemy.orm import Session

from area_engine.core.config import Settings
from area_engine.core.logging import get_logger
from area_engine.db.base import SessionLocal
from area_engine.services.actions import (
    DiscordMessageDetector,
    GmailNewMailDetector,
    SpotifyLikeDetector,
)
from area_engine.services.cache import KeyValueCache, build_cache
from area_engine.services.event_hub import EventHub
from area_engine.services.gateway import (
    AuthorizationGateway,
    DiscordBotClient,
    LinkedAccountGateway,
)
from area_engine.services.manager import BindingOrchestrator
from area_engine.services.reactions import (
    DiscordSendReaction,
    GmailSendReaction,
    LogEventReaction,
    ReactionRegistry,
)
from area_engine.services.registry import DetectorRegistry
from area_engine.services.repository import BindingRepository
from area_engine.services.watermark import WatermarkStore

log = get_logger(__name__)


class Engine:
    def __init__(
        self,
        settings: Settings,
        session_factory: Callable[[], Session] = SessionLocal,
        cache: Optional[KeyValueCache] = None,
        http: Optional[httpx.AsyncClient] = None,
        auth: Optional[AuthorizationGateway] = None,
    ) -> None:
        self.settings = settings
        self._owns_http = http is None
        self.http = http or httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT_SECONDS)
        self.cache = cache or build_cache(settings)
        self.auth = auth or LinkedAccountGateway(session_factory, self.http)
        self.bot = DiscordBotClient(self.http, settings.DISCORD_BOT_TOKEN, settings.DISCORD_API_BASE)
        self.hub = EventHub()
        self.watermarks = WatermarkStore(self.cache, settings.watermark_ttl)
        self.repository = BindingRepository(session_factory)

        self.registry = DetectorRegistry(self.hub)
        self.registry.register(
            SpotifyLikeDetector(self.auth, self.watermarks, settings.SPOTIFY_POLL_INTERVAL_SECONDS)
        )
        self.registry.register(
            GmailNewMailDetector(
                self.auth,
                self.watermarks,
                settings.GMAIL_POLL_INTERVAL_SECONDS,
                settings.GMAIL_SCOPE_MODE,
            )
        )
        self.registry.register(DiscordMessageDetector(self.auth, self.watermarks, self.bot))

        self.reactions = ReactionRegistry()
        self.reactions.register(GmailSendReaction(self.auth))
        self.reactions.register(LogEventReaction(self.repository))
        self.reactions.register(DiscordSendReaction(self.bot))

        self.orchestrator = BindingOrchestrator(
            self.registry,
            self.reactions,
            self.repository,
            self.auth,
            self.cache,
            active_ttl=settings.ACTIVE_BINDING_TTL_SECONDS or None,
        )

    async def startup(self) -> None:
        if not self.bot.is_ready:
            log.warning("discord_bot_not_configured")
        if self.settings.RESTORE_ON_STARTUP:
            await self.orchestrator.restore_active_bindings()

    async def shutdown(self) -> None:
        await self.registry.stop_all()
        await self.cache.close()
        if self._owns_http:
            await self.http.aclose()


def get_engine(request: Request) -> Engine:
    return request.app.state.engine
