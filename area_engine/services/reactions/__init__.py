from .base import ReactionExecutor, ReactionRegistry
from .discord import DiscordSendReaction
from .gmail import GmailSendReaction
from .log_event import LogEventReaction

__all__ = [
    "ReactionExecutor",
    "ReactionRegistry",
    "DiscordSendReaction",
    "GmailSendReaction",
    "LogEventReaction",
]
