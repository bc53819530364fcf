"""discord_send_message: posts to a channel through the engine's bot."""
from __future__ import annotations

from typing import Any

import httpx

from area_engine.core.errors import ExecutionFailureError, ProviderUnavailableError
from area_engine.core.logging import get_logger
from area_engine.services.fields import ConfigField
from area_engine.services.gateway import DiscordBotClient
from area_engine.services.reactions.base import ReactionExecutor

log = get_logger(__name__)

# Discord rejects longer message content.
MAX_CONTENT_LENGTH = 2000


class DiscordSendReaction(ReactionExecutor):
    reaction_name = "discord_send_message"
    description = "Send a message to a Discord channel"

    def __init__(self, bot: DiscordBotClient) -> None:
        self._bot = bot

    def fields(self) -> list[ConfigField]:
        return [
            ConfigField(
                "channelId", "string", required=True,
                label="Discord Channel ID", placeholder="123456789012345678",
            ),
            ConfigField("message", "string", required=True, label="Message"),
        ]

    async def run(self, user_id: str, config: dict[str, Any]) -> dict[str, Any]:
        config = self.validate(config)
        if not self._bot.is_ready:
            raise ExecutionFailureError(self.reaction_name, "Discord bot is not configured")

        content = config["message"]
        if len(content) > MAX_CONTENT_LENGTH:
            content = content[: MAX_CONTENT_LENGTH - 3] + "..."

        try:
            data = await self._bot.send_message(str(config["channelId"]), content)
        except (ProviderUnavailableError, httpx.HTTPError) as exc:
            raise ExecutionFailureError(self.reaction_name, str(exc)) from exc

        log.info("discord_message_sent", user_id=user_id, channel_id=config["channelId"])
        return {"success": True, "messageId": data.get("id")}
