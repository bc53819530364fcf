"""
discord_new_message: fires on a new message in a watched channel.

Push-delivered: the lifecycle subscribes to `discord.message_create` on
the event hub and every matching event goes through the watermark check
(the relay may redeliver). `detect` reads the channel's latest message over
the bot REST API; the push lifecycle calls it once at start to set the
baseline.

Marker: the message `timestamp` (ISO-8601, string-ordered).
"""
from __future__ import annotations

from typing import Any, Optional

from area_engine.services.actions.base import PushActionDetector
from area_engine.services.fields import ConfigField, Placeholder
from area_engine.services.gateway import DiscordBotClient

MESSAGE_CREATE_TOPIC = "discord.message_create"

_PLACEHOLDERS = [
    Placeholder("DISCORD_MESSAGE_ID", "The unique ID of the message", "1234567890123456789"),
    Placeholder("DISCORD_MESSAGE_CONTENT", "The content/text of the message", "Hello everyone!"),
    Placeholder("DISCORD_MESSAGE_AUTHOR_USERNAME", "The username of the message author", "john_doe"),
    Placeholder("DISCORD_MESSAGE_AUTHOR_DISCRIMINATOR", "The discriminator of the message author", "1234"),
    Placeholder("DISCORD_MESSAGE_AUTHOR_ID", "The unique ID of the message author", "9876543210987654321"),
    Placeholder("DISCORD_MESSAGE_TIMESTAMP", "When the message was sent (ISO 8601 format)", "2023-12-10T15:30:00.000Z"),
    Placeholder("DISCORD_MESSAGE_GUILD_NAME", "The name of the Discord server/guild", "My Awesome Server"),
    Placeholder("DISCORD_MESSAGE_CHANNEL_NAME", "The name of the channel where the message was posted", "general"),
    Placeholder("DISCORD_MESSAGE_CHANNEL_ID", "The unique ID of the channel", "1111111111111111111"),
    Placeholder("DISCORD_MESSAGE_TYPE", "The type of message (0 = default, 7 = user join, etc.)", "0"),
    Placeholder(
        "DISCORD_MESSAGE_EDITED_TIMESTAMP",
        "When the message was last edited (if applicable)",
        "2023-12-10T15:35:00.000Z",
    ),
    Placeholder("DISCORD_MESSAGE_MENTION_EVERYONE", "Whether the message mentions @everyone", "false"),
    Placeholder("DISCORD_MESSAGE_ATTACHMENTS_COUNT", "Number of file attachments in the message", "2"),
    Placeholder("DISCORD_MESSAGE_EMBEDS_COUNT", "Number of embeds in the message", "1"),
]


class DiscordMessageDetector(PushActionDetector):
    action_name = "discord_new_message"
    provider = "discord"
    description = "Detect new messages in Discord servers"
    topic = MESSAGE_CREATE_TOPIC

    def __init__(self, auth, watermarks, bot: DiscordBotClient) -> None:
        super().__init__(auth, watermarks)
        self._bot = bot

    def fields(self) -> list[ConfigField]:
        return [
            ConfigField(
                name="channelId",
                type="string",
                required=True,
                label="Discord Channel ID",
                placeholder="123456789012345678",
            ),
        ]

    def resource(self, config: dict[str, Any]) -> str:
        return str(config.get("channelId") or "")

    def placeholders(self) -> list[Placeholder]:
        return list(_PLACEHOLDERS)

    async def is_ready(self) -> bool:
        return self._bot.is_ready

    async def fetch_latest(self, user_id: str, config: dict[str, Any]) -> Optional[dict[str, Any]]:
        return await self._bot.latest_message(str(config["channelId"]))

    def matches(self, config: dict[str, Any], payload: dict[str, Any]) -> bool:
        if (payload.get("author") or {}).get("bot"):
            return False
        return str(payload.get("channel_id") or "") == self.resource(config)

    def marker(self, item: dict[str, Any]) -> Optional[str]:
        return item.get("timestamp")

    def extract_placeholders(self, item: dict[str, Any]) -> dict[str, str]:
        author = item.get("author") or {}
        return {
            "DISCORD_MESSAGE_ID": str(item.get("id") or ""),
            "DISCORD_MESSAGE_CONTENT": item.get("content") or "No content",
            "DISCORD_MESSAGE_AUTHOR_USERNAME": author.get("username") or "Unknown",
            "DISCORD_MESSAGE_AUTHOR_DISCRIMINATOR": str(author.get("discriminator") or "0"),
            "DISCORD_MESSAGE_AUTHOR_ID": str(author.get("id") or ""),
            "DISCORD_MESSAGE_TIMESTAMP": item.get("timestamp") or "",
            "DISCORD_MESSAGE_GUILD_NAME": item.get("guild_name") or "Direct Message",
            "DISCORD_MESSAGE_CHANNEL_NAME": item.get("channel_name") or "Unknown Channel",
            "DISCORD_MESSAGE_CHANNEL_ID": str(item.get("channel_id") or ""),
            "DISCORD_MESSAGE_TYPE": str(item.get("type") or 0),
            "DISCORD_MESSAGE_EDITED_TIMESTAMP": item.get("edited_timestamp") or "",
            "DISCORD_MESSAGE_MENTION_EVERYONE": "true" if item.get("mention_everyone") else "false",
            "DISCORD_MESSAGE_ATTACHMENTS_COUNT": str(len(item.get("attachments") or [])),
            "DISCORD_MESSAGE_EMBEDS_COUNT": str(len(item.get("embeds") or [])),
        }
