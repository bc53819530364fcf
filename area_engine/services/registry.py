"""
Detector registry and scheduler.

Holds the registered action detectors (first registration wins for a given
action name) and the table of running lifecycles keyed by
(action, user, resource). `start` is idempotent per key; `stop` ends every
resource a user watches for one action.
"""
from __future__ import annotations

from typing import Any, Optional

from area_engine.core.errors import UnknownActionError
from area_engine.core.logging import get_logger
from area_engine.services.actions.base import ActionDetector, Delivery, Sink
from area_engine.services.event_hub import EventHub
from area_engine.services.fields import Placeholder
from area_engine.services.lifecycle import (
    Lifecycle,
    LifecycleKey,
    PollingLifecycle,
    SubscriptionLifecycle,
)

log = get_logger(__name__)


class DetectorRegistry:
    def __init__(self, hub: EventHub) -> None:
        self._hub = hub
        self._detectors: list[ActionDetector] = []
        self._lifecycles: dict[LifecycleKey, Lifecycle] = {}

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def register(self, detector: ActionDetector) -> None:
        if self.supports(detector.action_name):
            log.warning("detector_shadowed", action=detector.action_name)
        self._detectors.append(detector)

    def supports(self, action_name: str) -> bool:
        return self.get(action_name) is not None

    def get(self, action_name: str) -> Optional[ActionDetector]:
        for detector in self._detectors:
            if detector.supports(action_name):
                return detector
        return None

    def detectors(self) -> list[ActionDetector]:
        """One detector per action name, in registration order."""
        seen: set[str] = set()
        result = []
        for detector in self._detectors:
            if detector.action_name not in seen:
                seen.add(detector.action_name)
                result.append(detector)
        return result

    def placeholders_for(self, action_name: str) -> list[Placeholder]:
        detector = self.get(action_name)
        if detector is None:
            raise UnknownActionError(action_name)
        return detector.placeholders()

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _build(self, key: LifecycleKey, detector: ActionDetector, config, sink) -> Lifecycle:
        if detector.delivery == Delivery.PUSH:
            return SubscriptionLifecycle(key, detector, config, sink, self._hub)
        return PollingLifecycle(key, detector, config, sink)

    async def start(
        self,
        action_name: str,
        user_id: str,
        config: Optional[dict[str, Any]],
        sink: Sink,
    ) -> bool:
        """Start a lifecycle; False when one already runs for the same key."""
        detector = self.get(action_name)
        if detector is None:
            raise UnknownActionError(action_name)
        config = dict(config or {})
        key = LifecycleKey(action_name, user_id, detector.resource(config))
        if key in self._lifecycles:
            log.debug("lifecycle_already_running", action=action_name, user_id=user_id, resource=key.resource)
            return False

        lifecycle = self._build(key, detector, config, sink)
        # claimed before the first await so a concurrent start sees it
        self._lifecycles[key] = lifecycle
        try:
            await lifecycle.start()
        except Exception:
            self._lifecycles.pop(key, None)
            raise
        return True

    async def stop(self, action_name: str, user_id: str) -> int:
        keys = [k for k in self._lifecycles if k.action_name == action_name and k.user_id == user_id]
        for key in keys:
            lifecycle = self._lifecycles.pop(key)
            await lifecycle.stop()
        return len(keys)

    async def stop_all(self) -> None:
        keys = list(self._lifecycles)
        for key in keys:
            lifecycle = self._lifecycles.pop(key)
            await lifecycle.stop()
        if keys:
            log.info("lifecycles_stopped", count=len(keys))

    def is_running(self, action_name: str, user_id: str) -> bool:
        return any(k.action_name == action_name and k.user_id == user_id for k in self._lifecycles)

    def running_keys(self) -> list[LifecycleKey]:
        return list(self._lifecycles)
