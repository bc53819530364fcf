"""
ReactionExecutor: the contract every effect implements.

`run(user_id, config)` receives the already-substituted configuration,
re-validates it against `fields()` and performs its side effect once.
Failures raise: InvalidConfigError, ProviderNotLinkedError or
ExecutionFailureError. The caller records them; nothing here retries.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from area_engine.core.logging import get_logger
from area_engine.services.fields import ConfigField, validate_config
from area_engine.services.gateway import DEFAULT_PROVIDER

log = get_logger(__name__)


class ReactionExecutor(ABC):
    reaction_name: str
    provider: str = DEFAULT_PROVIDER
    description: str = ""

    def supports(self, reaction_name: str) -> bool:
        return reaction_name == self.reaction_name

    def fields(self) -> list[ConfigField]:
        return []

    def validate(self, config: Optional[dict[str, Any]]) -> dict[str, Any]:
        validate_config(config, self.fields(), self.reaction_name)
        return config or {}

    @abstractmethod
    async def run(self, user_id: str, config: dict[str, Any]) -> dict[str, Any]:
        ...


class ReactionRegistry:
    def __init__(self) -> None:
        self._executors: list[ReactionExecutor] = []

    def register(self, executor: ReactionExecutor) -> None:
        if self.supports(executor.reaction_name):
            log.warning("reaction_shadowed", reaction=executor.reaction_name)
        self._executors.append(executor)

    def get(self, reaction_name: str) -> Optional[ReactionExecutor]:
        for executor in self._executors:
            if executor.supports(reaction_name):
                return executor
        return None

    def supports(self, reaction_name: str) -> bool:
        return self.get(reaction_name) is not None

    def executors(self) -> list[ReactionExecutor]:
        seen: set[str] = set()
        result = []
        for executor in self._executors:
            if executor.reaction_name not in seen:
                seen.add(executor.reaction_name)
                result.append(executor)
        return result
