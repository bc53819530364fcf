"""log_event: records the trigger itself as an AREA_TRIGGERED event log row."""
from __future__ import annotations

from typing import Any

from starlette.concurrency import run_in_threadpool

from area_engine.services.fields import ConfigField
from area_engine.services.reactions.base import ReactionExecutor
from area_engine.services.repository import EVENT_AREA_TRIGGERED, BindingRepository


class LogEventReaction(ReactionExecutor):
    reaction_name = "log_event"
    description = "Log the event in your activity history"

    def __init__(self, repository: BindingRepository) -> None:
        self._repository = repository

    def fields(self) -> list[ConfigField]:
        return [ConfigField("message", "string", required=False, label="Log message")]

    async def run(self, user_id: str, config: dict[str, Any]) -> dict[str, Any]:
        config = self.validate(config)
        log_id = await run_in_threadpool(
            self._repository.append_log,
            user_id=user_id,
            area_id=None,
            event_type=EVENT_AREA_TRIGGERED,
            description=config.get("message") or "AREA triggered",
            metadata={"config": config},
        )
        return {"success": True, "logId": log_id}
