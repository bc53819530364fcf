from .base import (
    ActionDetector,
    DetectedEvent,
    DetectionCode,
    Delivery,
    PushActionDetector,
    Sink,
)
from .discord import DiscordMessageDetector
from .gmail import GmailNewMailDetector
from .spotify import SpotifyLikeDetector

__all__ = [
    "ActionDetector",
    "DetectedEvent",
    "DetectionCode",
    "Delivery",
    "PushActionDetector",
    "Sink",
    "DiscordMessageDetector",
    "GmailNewMailDetector",
    "SpotifyLikeDetector",
]
