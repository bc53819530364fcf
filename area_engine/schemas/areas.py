"""
Manager request / response schemas.

POST /manager/areas                       → CreateAreaRequest → CreateAreaResponse
GET  /manager/areas                       → AreaListResponse
DELETE /manager/areas/{id}                → DeactivateAreaResponse
GET  /manager/areas/{id}/executions       → ExecutionListResponse
GET  /manager/actions/{name}/placeholders → PlaceholderListResponse
"""
from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class CreateAreaRequest(BaseModel):
    """Bind one action to one reaction for the calling user."""
    action_name: str = Field(min_length=1, examples=["spotify_has_likes"])
    reaction_name: str = Field(min_length=1, examples=["send_email"])
    action_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Action-specific settings, e.g. `{\"channelId\": \"...\"}`.",
    )
    reaction_config: dict[str, Any] = Field(
        default_factory=dict,
        description="Reaction settings. String values may reference `{{PLACEHOLDER}}` keys of the action.",
        examples=[{"to": "me@example.com", "subject": "New like: {{SPOTIFY_LIKED_SONG_NAME}}", "body": "..."}],
    )


class CreateAreaResponse(BaseModel):
    id: str
    message: str = "Area created and activated."


class AreaResponse(BaseModel):
    id: str
    action_name: str
    reaction_name: str
    action_config: dict[str, Any]
    reaction_config: dict[str, Any]
    is_active: bool
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class AreaListResponse(BaseModel):
    total: int
    items: list[AreaResponse]


class DeactivateAreaResponse(BaseModel):
    id: str
    is_active: bool = False
    message: str = "Area deactivated."


class ExecutionResponse(BaseModel):
    id: int
    event_type: str = Field(description="AREA_EXECUTED, AREA_EXECUTION_FAILED or AREA_TRIGGERED.")
    description: Optional[str] = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="actionResult, reactionResult and processedConfig of the run.",
    )
    created_at: Optional[str] = None


class ExecutionListResponse(BaseModel):
    area_id: str
    total: int
    items: list[ExecutionResponse]


class PlaceholderResponse(BaseModel):
    key: str
    description: str
    example: str = ""


class PlaceholderListResponse(BaseModel):
    action: str
    placeholders: list[PlaceholderResponse]


class DiscordMessageEvent(BaseModel):
    """Discord MESSAGE_CREATE payload as forwarded by the gateway relay."""
    model_config = ConfigDict(extra="allow")

    id: str
    channel_id: str
    content: str = ""
    timestamp: str
    author: dict[str, Any] = Field(default_factory=dict)


class PublishResponse(BaseModel):
    topic: str
    delivered: int
