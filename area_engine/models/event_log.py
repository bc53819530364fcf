"""
EventLog: Execution Records written after each reaction invocation.

Append-only. event_type values:
  "AREA_EXECUTED"          - reaction ran after a detected event
  "AREA_EXECUTION_FAILED"  - reaction raised; the detection still counts
  "AREA_TRIGGERED"         - row written by the log_event reaction itself

metadata: JSON-encoded dict stored as Text.
"""
from datetime import datetime
from sqlalchemy import Integer, String, Text, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column

from area_engine.db.base import Base


class EventLog(Base):
    __tablename__ = "event_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    area_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_metadata: Mapped[str | None] = mapped_column(
        "event_metadata", Text, nullable=True,
        comment="JSON: actionResult, reactionResult, processedConfig",
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
