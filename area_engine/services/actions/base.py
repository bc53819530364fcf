"""
ActionDetector: the contract every trigger source implements.

One `detect` call answers "is there something new for this user":

  1. provider not linked            → UNAVAILABLE  (watermark untouched)
  2. required config missing        → UNAVAILABLE
  3. fetch the single latest item
  4. source empty                   → watermark = "" , UNCHANGED
  5. no watermark yet               → watermark = marker, UNCHANGED
  6. watermark is ""                → watermark = marker, TRIGGERED
  7. marker strictly newer          → watermark = marker, TRIGGERED
  8. otherwise                      → UNCHANGED
  9. transient provider failure     → UNCHANGED  (next cycle re-checks)

Steps 4-8 live in `evaluate` so push detectors run the exact same
de-duplication on every inbound event.

Subclasses provide: fetch_latest, marker, extract_placeholders,
placeholders, and optionally fields / resource / is_newer.
"""
from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional

import httpx

from area_engine.core.errors import ProviderNotLinkedError, ProviderUnavailableError
from area_engine.core.logging import get_logger
from area_engine.services.fields import ConfigField, Placeholder
from area_engine.services.gateway import AuthorizationGateway
from area_engine.services.watermark import EMPTY_SOURCE, WatermarkStore

log = get_logger(__name__)


class DetectionCode(enum.IntEnum):
    TRIGGERED = 0
    UNCHANGED = 1
    UNAVAILABLE = -1


class Delivery(str, enum.Enum):
    PULL = "pull"
    PUSH = "push"


@dataclass
class DetectedEvent:
    code: DetectionCode
    data: Optional[dict[str, str]] = field(default=None)

    @classmethod
    def unchanged(cls) -> "DetectedEvent":
        return cls(DetectionCode.UNCHANGED)

    @classmethod
    def unavailable(cls) -> "DetectedEvent":
        return cls(DetectionCode.UNAVAILABLE)

    def to_dict(self) -> dict:
        return {"code": int(self.code), "data": self.data or {}}


# Checked right before the watermark is written; False means the owning
# lifecycle was stopped and the cycle must leave no trace.
CommitGuard = Callable[[], bool]


def _always() -> bool:
    return True


class ActionDetector(ABC):
    action_name: str
    provider: str
    description: str = ""
    delivery: Delivery = Delivery.PULL
    poll_interval: float = 30.0
    # Push detectors only
    topic: Optional[str] = None

    def __init__(self, auth: AuthorizationGateway, watermarks: WatermarkStore) -> None:
        self._auth = auth
        self._watermarks = watermarks

    # ------------------------------------------------------------------
    # Static catalogue
    # ------------------------------------------------------------------

    def supports(self, action_name: str) -> bool:
        return action_name == self.action_name

    def fields(self) -> list[ConfigField]:
        return []

    @abstractmethod
    def placeholders(self) -> list[Placeholder]:
        ...

    def resource(self, config: dict[str, Any]) -> str:
        """Discriminator for the watched resource (channel, mailbox...)."""
        return "default"

    # ------------------------------------------------------------------
    # Provider-specific hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_latest(self, user_id: str, config: dict[str, Any]) -> Optional[dict[str, Any]]:
        """Most recent item, or None when the source is empty."""

    @abstractmethod
    def marker(self, item: dict[str, Any]) -> Optional[str]:
        ...

    @abstractmethod
    def extract_placeholders(self, item: dict[str, Any]) -> dict[str, str]:
        ...

    def is_newer(self, marker: str, stored: str) -> bool:
        return marker > stored

    async def is_ready(self) -> bool:
        return True

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _missing_config(self, config: dict[str, Any]) -> Optional[str]:
        for f in self.fields():
            if f.required and not config.get(f.name):
                return f.name
        return None

    async def detect(
        self,
        user_id: str,
        config: Optional[dict[str, Any]] = None,
        guard: CommitGuard = _always,
    ) -> DetectedEvent:
        config = config or {}
        if not await self._auth.has_linked_provider(user_id, self.provider):
            log.debug("detect_provider_not_linked", action=self.action_name, user_id=user_id)
            return DetectedEvent.unavailable()

        missing = self._missing_config(config)
        if missing:
            log.error(
                "detect_missing_config",
                action=self.action_name,
                user_id=user_id,
                field=missing,
            )
            return DetectedEvent.unavailable()

        if not await self.is_ready():
            log.warning("detect_source_not_ready", action=self.action_name, user_id=user_id)
            return DetectedEvent.unavailable()

        try:
            item = await self.fetch_latest(user_id, config)
        except ProviderNotLinkedError:
            return DetectedEvent.unavailable()
        except (ProviderUnavailableError, httpx.HTTPError, ValueError) as exc:
            log.error(
                "detect_provider_error",
                action=self.action_name,
                user_id=user_id,
                error=str(exc),
            )
            return DetectedEvent.unchanged()

        return await self.evaluate(user_id, config, item, guard)

    async def evaluate(
        self,
        user_id: str,
        config: dict[str, Any],
        item: Optional[dict[str, Any]],
        guard: CommitGuard = _always,
    ) -> DetectedEvent:
        """Watermark compare-and-advance for one observed item."""
        resource = self.resource(config)
        stored = await self._watermarks.get(self.provider, user_id, resource)

        if item is None:
            if stored != EMPTY_SOURCE and guard():
                await self._watermarks.set(self.provider, user_id, resource, EMPTY_SOURCE)
                log.debug("watermark_empty_source", action=self.action_name, user_id=user_id)
            return DetectedEvent.unchanged()

        marker = self.marker(item)
        if not marker:
            log.debug("detect_item_without_marker", action=self.action_name, user_id=user_id)
            return DetectedEvent.unchanged()

        if stored is None:
            if guard():
                await self._watermarks.set(self.provider, user_id, resource, marker)
                log.debug(
                    "watermark_baseline",
                    action=self.action_name,
                    user_id=user_id,
                    marker=marker,
                )
            return DetectedEvent.unchanged()

        if stored == EMPTY_SOURCE or self.is_newer(marker, stored):
            if not guard():
                return DetectedEvent.unchanged()
            await self._watermarks.set(self.provider, user_id, resource, marker)
            log.info(
                "action_triggered",
                action=self.action_name,
                user_id=user_id,
                marker=marker,
                previous=stored,
            )
            return DetectedEvent(DetectionCode.TRIGGERED, self.extract_placeholders(item))

        return DetectedEvent.unchanged()


class PushActionDetector(ActionDetector):
    """
    Detector fed by a live event stream. The stream may redeliver, so each
    event still goes through `evaluate`.
    """
    delivery = Delivery.PUSH

    @abstractmethod
    def matches(self, config: dict[str, Any], payload: dict[str, Any]) -> bool:
        """True if *payload* concerns the resource watched with *config*."""

    def item_from_event(self, payload: dict[str, Any]) -> dict[str, Any]:
        return payload


Sink = Callable[[DetectedEvent], Awaitable[None]]
