"""
Area: one user binding of an action to a reaction.

Configs are JSON-encoded Text, opaque to the engine; their shape is owned
by each action's / reaction's field schema. Rows are never deleted by the
engine: deactivation flips is_active.
"""
from datetime import datetime
from sqlalchemy import ForeignKey, Integer, String, Text, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from area_engine.db.base import Base
from area_engine.models.catalogue import ActionDefinition, ReactionDefinition


class Area(Base):
    __tablename__ = "areas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action_id: Mapped[int] = mapped_column(ForeignKey("actions.id"), nullable=False)
    reaction_id: Mapped[int] = mapped_column(ForeignKey("reactions.id"), nullable=False)
    action_config: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="JSON object passed to the action detector",
    )
    reaction_config: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="JSON object, may contain {{PLACEHOLDER}} tokens",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    action: Mapped[ActionDefinition] = relationship(lazy="joined")
    reaction: Mapped[ReactionDefinition] = relationship(lazy="joined")
