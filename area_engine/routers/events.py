"""
Push ingress.

POST /events/discord/messages: MESSAGE_CREATE payloads from the Discord
gateway relay, published on the event hub for push lifecycles.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, status

from area_engine.core.logging import get_logger
from area_engine.schemas.areas import DiscordMessageEvent, PublishResponse
from area_engine.services.actions.discord import MESSAGE_CREATE_TOPIC
from area_engine.services.engine import Engine, get_engine

log = get_logger(__name__)

router = APIRouter(prefix="/events", tags=["events"])


@router.post(
    "/discord/messages",
    response_model=PublishResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Publish a Discord message event",
)
async def publish_discord_message(
    payload: DiscordMessageEvent,
    engine: Engine = Depends(get_engine),
):
    delivered = await engine.hub.publish(MESSAGE_CREATE_TOPIC, payload.model_dump())
    log.debug("discord_event_published", channel_id=payload.channel_id, delivered=delivered)
    return PublishResponse(topic=MESSAGE_CREATE_TOPIC, delivered=delivered)
