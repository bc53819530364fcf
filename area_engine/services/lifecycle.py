"""
Detection lifecycles: one running watch per (action, user, resource).

PollingLifecycle       calls `detect` now, then every `poll_interval` seconds
SubscriptionLifecycle  calls `detect` once for the baseline, then evaluates
                       every matching event published on the detector's topic

Both hand results to the sink. Sink errors are logged and never stop the
lifecycle.

Each lifecycle runs one watermark read-compare-write at a time: a push
source redelivering the same event concurrently sees the advanced marker on
the second delivery. The sink runs outside that lock.

Cancellation: `stop()` clears the active flag first. Detectors check it
(the commit guard) right before writing a watermark, and `_emit` checks it
before calling the sink, so a stopped lifecycle leaves no trace. A sink
call already in progress is shielded from cancellation and allowed to
finish its one side effect.
"""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from area_engine.core.logging import get_logger
from area_engine.services.actions.base import (
    ActionDetector,
    DetectedEvent,
    PushActionDetector,
    Sink,
)
from area_engine.services.event_hub import EventHub, Subscription

log = get_logger(__name__)


@dataclass(frozen=True)
class LifecycleKey:
    action_name: str
    user_id: str
    resource: str


class Lifecycle(ABC):
    def __init__(
        self,
        key: LifecycleKey,
        detector: ActionDetector,
        config: dict[str, Any],
        sink: Sink,
    ) -> None:
        self.key = key
        self._detector = detector
        self._config = config
        self._sink = sink
        self._active = False
        self._inflight: set[asyncio.Task[None]] = set()
        # one evaluate-and-advance at a time per lifecycle
        self._lock = asyncio.Lock()

    @property
    def is_active(self) -> bool:
        return self._active

    @abstractmethod
    async def start(self) -> None:
        ...

    @abstractmethod
    async def stop(self) -> None:
        ...

    def _guard(self) -> bool:
        return self._active

    async def _deliver(self, event: DetectedEvent) -> None:
        try:
            await self._sink(event)
        except Exception as exc:
            log.error(
                "lifecycle_sink_error",
                action=self.key.action_name,
                user_id=self.key.user_id,
                resource=self.key.resource,
                error=str(exc),
            )

    async def _emit(self, event: DetectedEvent) -> None:
        if not self._active:
            return
        task = asyncio.ensure_future(self._deliver(event))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        await asyncio.shield(task)


class PollingLifecycle(Lifecycle):
    """Interval loop, same shape as an interval watcher: tick, then wait on the stop event."""

    def __init__(self, key, detector, config, sink, interval: Optional[float] = None) -> None:
        super().__init__(key, detector, config, sink)
        self.interval = interval if interval is not None else detector.poll_interval
        self._task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            return
        self._active = True
        self._stop_event.clear()
        self._task = asyncio.create_task(
            self._guarded_run(),
            name=f"poll_{self.key.action_name}_{self.key.user_id}_{self.key.resource}",
        )
        log.info(
            "lifecycle_started",
            action=self.key.action_name,
            user_id=self.key.user_id,
            resource=self.key.resource,
            delivery="pull",
            interval=self.interval,
        )

    async def stop(self) -> None:
        self._active = False
        self._stop_event.set()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        log.info(
            "lifecycle_stopped",
            action=self.key.action_name,
            user_id=self.key.user_id,
            resource=self.key.resource,
        )

    async def tick(self) -> None:
        """One detection cycle. Errors end this cycle only."""
        try:
            async with self._lock:
                event = await self._detector.detect(self.key.user_id, self._config, self._guard)
        except Exception as exc:
            log.error(
                "detect_cycle_failed",
                action=self.key.action_name,
                user_id=self.key.user_id,
                error=str(exc),
            )
            return
        log.debug(
            "detect_cycle",
            action=self.key.action_name,
            user_id=self.key.user_id,
            code=int(event.code),
        )
        await self._emit(event)

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def _guarded_run(self) -> None:
        try:
            await self._run()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("lifecycle_crashed", action=self.key.action_name, error=str(exc))


class SubscriptionLifecycle(Lifecycle):
    """Push delivery: baseline `detect`, then one `evaluate` per matching hub event."""

    def __init__(self, key, detector: PushActionDetector, config, sink, hub: EventHub) -> None:
        super().__init__(key, detector, config, sink)
        self._hub = hub
        self._subscription: Optional[Subscription] = None

    @property
    def is_running(self) -> bool:
        return self._subscription is not None

    async def start(self) -> None:
        if self.is_running:
            return
        self._active = True
        try:
            async with self._lock:
                baseline = await self._detector.detect(self.key.user_id, self._config, self._guard)
        except Exception as exc:
            log.error(
                "baseline_detect_failed",
                action=self.key.action_name,
                user_id=self.key.user_id,
                error=str(exc),
            )
        else:
            await self._emit(baseline)
        if not self._active:
            # stopped while the baseline was in flight
            return
        self._subscription = self._hub.subscribe(self._detector.topic, self.on_event)
        log.info(
            "lifecycle_started",
            action=self.key.action_name,
            user_id=self.key.user_id,
            resource=self.key.resource,
            delivery="push",
            topic=self._detector.topic,
        )

    async def stop(self) -> None:
        self._active = False
        if self._subscription is not None:
            self._hub.unsubscribe(self._subscription)
            self._subscription = None
        log.info(
            "lifecycle_stopped",
            action=self.key.action_name,
            user_id=self.key.user_id,
            resource=self.key.resource,
        )

    async def on_event(self, payload: dict[str, Any]) -> None:
        detector: PushActionDetector = self._detector  # type: ignore[assignment]
        if not self._active or not detector.matches(self._config, payload):
            return
        try:
            async with self._lock:
                event = await detector.evaluate(
                    self.key.user_id,
                    self._config,
                    detector.item_from_event(payload),
                    self._guard,
                )
        except Exception as exc:
            log.error(
                "push_event_failed",
                action=self.key.action_name,
                user_id=self.key.user_id,
                error=str(exc),
            )
            return
        await self._emit(event)
