from .catalogue import ActionDefinition, ReactionDefinition
from .area import Area
from .event_log import EventLog
from .linked_account import LinkedAccount

__all__ = [
    "ActionDefinition",
    "ReactionDefinition",
    "Area",
    "EventLog",
    "LinkedAccount",
]
