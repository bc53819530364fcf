"""
Binding orchestrator.

bind(user, action, reaction, action_config, reaction_config)
  PROPOSED   -> action and reaction are registered
  VALIDATED  -> both configs match their field schemas, every non-default
                provider is linked
  PERSISTED  -> area row written, summary cached under area:active:{id}
  RUNNING    -> registry.start(...) with a sink bound to this area

Nothing is written before VALIDATED, so a rejected bind leaves no area row,
no catalogue row and no lifecycle.

The sink: TRIGGERED -> substitute placeholders into the reaction config, run
the reaction, append an execution record (AREA_EXECUTED or
AREA_EXECUTION_FAILED). UNAVAILABLE -> warning only. UNCHANGED -> nothing.
A failed reaction is recorded and never rewinds the watermark.

A user may hold one active area per (action, resource): a second one would
share the running lifecycle and never fire its own reaction, so bind refuses
it. Repository and gateway calls are synchronous SQLAlchemy and run in the
threadpool so a slow query never stalls the running lifecycles.
"""
from __future__ import annotations

import collections
import enum
import json
import uuid
from typing import Any, Optional

from starlette.concurrency import run_in_threadpool

from area_engine.core.errors import (
    BindingNotFoundError,
    DuplicateBindingError,
    ExecutionFailureError,
    InvalidBindingIdError,
    NoPlaceholdersError,
    ProviderNotLinkedError,
    UnknownActionError,
    UnknownReactionError,
)
from area_engine.core.logging import get_logger
from area_engine.services.actions.base import DetectedEvent, DetectionCode, Sink
from area_engine.services.cache import KeyValueCache
from area_engine.services.fields import validate_config
from area_engine.services.gateway import DEFAULT_PROVIDER, AuthorizationGateway
from area_engine.services.placeholders import substitute
from area_engine.services.reactions.base import ReactionRegistry
from area_engine.services.registry import DetectorRegistry
from area_engine.services.repository import (
    EVENT_AREA_EXECUTED,
    EVENT_AREA_EXECUTION_FAILED,
    BindingRecord,
    BindingRepository,
    ExecutionRecord,
)

log = get_logger(__name__)


class BindingState(str, enum.Enum):
    PROPOSED = "PROPOSED"
    VALIDATED = "VALIDATED"
    PERSISTED = "PERSISTED"
    RUNNING = "RUNNING"
    STOPPED = "STOPPED"


def active_binding_key(binding_id: str) -> str:
    return f"area:active:{binding_id}"


def parse_binding_id(binding_id: str) -> str:
    """Return the canonical form of a UUID (versions 1-5) area id, or raise InvalidBindingIdError."""
    try:
        parsed = uuid.UUID(binding_id)
    except (ValueError, TypeError, AttributeError):
        raise InvalidBindingIdError(str(binding_id))
    if parsed.version not in (1, 2, 3, 4, 5) or str(parsed) != binding_id.lower():
        raise InvalidBindingIdError(binding_id)
    return str(parsed)


class BindingOrchestrator:
    def __init__(
        self,
        registry: DetectorRegistry,
        reactions: ReactionRegistry,
        repository: BindingRepository,
        auth: AuthorizationGateway,
        cache: KeyValueCache,
        active_ttl: Optional[int] = 86400,
        stopped_history: int = 1024,
    ) -> None:
        self._registry = registry
        self._reactions = reactions
        self._repository = repository
        self._auth = auth
        self._cache = cache
        self._active_ttl = active_ttl
        self._states: dict[str, BindingState] = {}
        # STOPPED entries kept for the most recent deactivations only
        self._stopped: collections.deque[str] = collections.deque()
        self._stopped_history = stopped_history

    def state_of(self, binding_id: str) -> Optional[BindingState]:
        return self._states.get(binding_id)

    def _mark_stopped(self, binding_id: str) -> None:
        self._states[binding_id] = BindingState.STOPPED
        self._stopped.append(binding_id)
        while len(self._stopped) > self._stopped_history:
            evicted = self._stopped.popleft()
            if self._states.get(evicted) == BindingState.STOPPED:
                del self._states[evicted]

    # ------------------------------------------------------------------
    # bind
    # ------------------------------------------------------------------

    async def _check_providers(self, user_id: str, providers: list[str]) -> None:
        for provider in providers:
            if provider == DEFAULT_PROVIDER:
                continue
            if not await self._auth.has_linked_provider(user_id, provider):
                raise ProviderNotLinkedError(provider)

    async def _check_not_bound(self, user_id: str, action_name: str, resource: str) -> None:
        detector = self._registry.get(action_name)
        existing = await run_in_threadpool(self._repository.find_active_for_user, user_id, action_name)
        for other in existing:
            if detector.resource(other.action_config) == resource:
                raise DuplicateBindingError(action_name, resource, other.id)

    async def bind(
        self,
        user_id: str,
        action_name: str,
        reaction_name: str,
        action_config: Optional[dict[str, Any]] = None,
        reaction_config: Optional[dict[str, Any]] = None,
    ) -> str:
        binding_id = str(uuid.uuid4())
        self._states[binding_id] = BindingState.PROPOSED
        try:
            detector = self._registry.get(action_name)
            if detector is None:
                raise UnknownActionError(action_name)
            reaction = self._reactions.get(reaction_name)
            if reaction is None:
                raise UnknownReactionError(reaction_name)

            validate_config(action_config, detector.fields(), action_name)
            validate_config(reaction_config, reaction.fields(), reaction_name)
            await self._check_providers(user_id, [detector.provider, reaction.provider])
            await self._check_not_bound(user_id, action_name, detector.resource(action_config or {}))
            self._states[binding_id] = BindingState.VALIDATED

            binding = await run_in_threadpool(
                self._repository.create,
                binding_id=binding_id,
                user_id=user_id,
                action_name=action_name,
                action_provider=detector.provider,
                action_description=detector.description,
                reaction_name=reaction_name,
                reaction_provider=reaction.provider,
                reaction_description=reaction.description,
                action_config=action_config or {},
                reaction_config=reaction_config or {},
            )
        except Exception:
            self._states.pop(binding_id, None)
            raise
        self._states[binding_id] = BindingState.PERSISTED

        await self._cache_summary(binding)
        await self._start(binding)
        log.info(
            "area_bound",
            binding_id=binding.id,
            user_id=user_id,
            action=action_name,
            reaction=reaction_name,
        )
        return binding.id

    async def _cache_summary(self, binding: BindingRecord) -> None:
        try:
            await self._cache.set(
                active_binding_key(binding.id),
                json.dumps(binding.summary(), default=str),
                self._active_ttl,
            )
        except Exception as exc:
            # freshness hint only
            log.warning("active_binding_cache_failed", binding_id=binding.id, error=str(exc))

    async def _start(self, binding: BindingRecord) -> bool:
        started = await self._registry.start(
            binding.action_name,
            binding.user_id,
            binding.action_config,
            self._make_sink(binding),
        )
        self._states[binding.id] = BindingState.RUNNING
        if not started:
            log.info(
                "lifecycle_shared",
                binding_id=binding.id,
                action=binding.action_name,
                user_id=binding.user_id,
            )
        return started

    # ------------------------------------------------------------------
    # Sink
    # ------------------------------------------------------------------

    def _make_sink(self, binding: BindingRecord) -> Sink:
        async def sink(event: DetectedEvent) -> None:
            try:
                await self.dispatch(binding, event)
            except Exception as exc:
                log.error("sink_failed", binding_id=binding.id, error=str(exc))

        return sink

    async def dispatch(self, binding: BindingRecord, event: DetectedEvent) -> None:
        if event.code == DetectionCode.UNCHANGED:
            return
        if event.code == DetectionCode.UNAVAILABLE:
            log.warning(
                "action_unavailable",
                binding_id=binding.id,
                user_id=binding.user_id,
                action=binding.action_name,
            )
            return

        processed = substitute(binding.reaction_config, event.data or {})
        reaction = self._reactions.get(binding.reaction_name)
        try:
            if reaction is None:
                raise UnknownReactionError(binding.reaction_name)
            result = await reaction.run(binding.user_id, processed)
            event_type = EVENT_AREA_EXECUTED
            description = f"AREA executed: {binding.action_name} -> {binding.reaction_name}"
            log.info(
                "area_executed",
                binding_id=binding.id,
                user_id=binding.user_id,
                reaction=binding.reaction_name,
            )
        except Exception as exc:
            code = getattr(exc, "code", ExecutionFailureError.code)
            result = {"success": False, "code": code, "error": str(exc)}
            event_type = EVENT_AREA_EXECUTION_FAILED
            description = f"AREA execution failed: {binding.action_name} -> {binding.reaction_name}"
            log.error(
                "area_execution_failed",
                binding_id=binding.id,
                user_id=binding.user_id,
                reaction=binding.reaction_name,
                error=str(exc),
            )

        await run_in_threadpool(
            self._repository.append_log,
            user_id=binding.user_id,
            area_id=binding.id,
            event_type=event_type,
            description=description,
            metadata={
                "actionResult": event.to_dict(),
                "reactionResult": result,
                "processedConfig": processed,
            },
        )

    # ------------------------------------------------------------------
    # deactivate / restore
    # ------------------------------------------------------------------

    def get_binding(self, binding_id: str) -> BindingRecord:
        binding = self._repository.find_by_id(parse_binding_id(binding_id))
        if binding is None:
            raise BindingNotFoundError(binding_id)
        return binding

    async def deactivate(self, binding_id: str) -> BindingRecord:
        binding = await run_in_threadpool(self.get_binding, binding_id)
        await run_in_threadpool(self._repository.set_active, binding.id, False)
        await self._cache.delete(active_binding_key(binding.id))
        await self._registry.stop(binding.action_name, binding.user_id)
        self._mark_stopped(binding.id)
        log.info("area_deactivated", binding_id=binding.id, user_id=binding.user_id)

        # stop() ends every resource of (action, user); bring the other areas back
        siblings = await run_in_threadpool(
            self._repository.find_active_for_user, binding.user_id, binding.action_name
        )
        for other in siblings:
            await self._start(other)
        return binding

    async def restore_active_bindings(self) -> int:
        restored = 0
        for binding in await run_in_threadpool(self._repository.find_active):
            if not self._registry.supports(binding.action_name):
                log.warning("restore_unknown_action", binding_id=binding.id, action=binding.action_name)
                continue
            if not self._reactions.supports(binding.reaction_name):
                log.warning("restore_unknown_reaction", binding_id=binding.id, reaction=binding.reaction_name)
                continue
            await self._cache_summary(binding)
            await self._start(binding)
            restored += 1
        log.info("areas_restored", count=restored)
        return restored

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def list_bindings_for_user(self, user_id: str) -> list[BindingRecord]:
        return self._repository.find_for_user(user_id)

    def list_executions(self, binding_id: str, limit: int = 50) -> list[ExecutionRecord]:
        binding = self.get_binding(binding_id)
        return self._repository.list_logs(binding.id, limit=limit)

    async def _linked(self, user_id: str) -> set[str]:
        return (await self._auth.linked_providers(user_id)) | {DEFAULT_PROVIDER}

    async def list_available_actions(self, user_id: str) -> dict[str, dict[str, Any]]:
        linked = await self._linked(user_id)
        groups: dict[str, dict[str, Any]] = {}
        for detector in self._registry.detectors():
            group = groups.setdefault(
                detector.provider,
                {"is_linked": detector.provider in linked, "items": []},
            )
            group["items"].append({
                "name": detector.action_name,
                "description": detector.description,
                "delivery": detector.delivery.value,
                "fields": [f.to_dict() for f in detector.fields()],
                "placeholders": [p.to_dict() for p in detector.placeholders()],
            })
        return groups

    async def list_available_reactions(self, user_id: str) -> dict[str, dict[str, Any]]:
        linked = await self._linked(user_id)
        groups: dict[str, dict[str, Any]] = {}
        for executor in self._reactions.executors():
            group = groups.setdefault(
                executor.provider,
                {"is_linked": executor.provider in linked, "items": []},
            )
            group["items"].append({
                "name": executor.reaction_name,
                "description": executor.description,
                "fields": [f.to_dict() for f in executor.fields()],
            })
        return groups

    def list_placeholders(self, action_name: str) -> list[dict[str, str]]:
        placeholders = self._registry.placeholders_for(action_name)
        if not placeholders:
            raise NoPlaceholdersError(action_name)
        return [p.to_dict() for p in placeholders]
