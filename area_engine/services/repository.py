"""
Binding repository: the narrow persistence contract used by the engine.

Public API
----------
find_by_id(binding_id)                        -> BindingRecord | None
find_active()                                 -> list[BindingRecord]
find_active_for_user(user_id, action_name)    -> list[BindingRecord]
find_for_user(user_id)                        -> list[BindingRecord]
create(...)                                   -> BindingRecord  (creates catalogue rows on first use)
set_active(binding_id, active)                -> bool
append_log(...)                               -> int
list_logs(area_id, limit)                     -> list[ExecutionRecord]

Every method opens and commits its own session. Results are detached
dataclass snapshots so long-running lifecycles never hold a live session.
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from area_engine.models.area import Area
from area_engine.models.catalogue import ActionDefinition, ReactionDefinition
from area_engine.models.event_log import EventLog

EVENT_AREA_EXECUTED = "AREA_EXECUTED"
EVENT_AREA_EXECUTION_FAILED = "AREA_EXECUTION_FAILED"
EVENT_AREA_TRIGGERED = "AREA_TRIGGERED"


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------

def _jdump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _jload(text: Optional[str]) -> dict[str, Any]:
    if not text:
        return {}
    try:
        result = json.loads(text)
        return result if isinstance(result, dict) else {}
    except (ValueError, TypeError):
        return {}


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BindingRecord:
    id: str
    user_id: str
    action_name: str
    action_provider: str
    reaction_name: str
    reaction_provider: str
    action_config: dict[str, Any] = field(default_factory=dict)
    reaction_config: dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, area: Area) -> "BindingRecord":
        return cls(
            id=area.id,
            user_id=area.user_id,
            action_name=area.action.name,
            action_provider=area.action.provider,
            reaction_name=area.reaction.name,
            reaction_provider=area.reaction.provider,
            action_config=_jload(area.action_config),
            reaction_config=_jload(area.reaction_config),
            is_active=area.is_active,
            created_at=area.created_at,
            updated_at=area.updated_at,
        )

    def summary(self) -> dict[str, Any]:
        """Cached "active binding" payload."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "action": self.action_name,
            "reaction": self.reaction_name,
            "action_config": self.action_config,
            "reaction_config": self.reaction_config,
        }


@dataclass(frozen=True)
class ExecutionRecord:
    id: int
    user_id: str
    area_id: Optional[str]
    event_type: str
    description: Optional[str]
    metadata: dict[str, Any]
    created_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: EventLog) -> "ExecutionRecord":
        return cls(
            id=row.id,
            user_id=row.user_id,
            area_id=row.area_id,
            event_type=row.event_type,
            description=row.description,
            metadata=_jload(row.event_metadata),
            created_at=row.created_at,
        )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

def _get_or_create_action(db: Session, name: str, provider: str, description: str) -> ActionDefinition:
    row = db.query(ActionDefinition).filter(ActionDefinition.name == name).first()
    if row is None:
        row = ActionDefinition(name=name, provider=provider, description=description, is_active=True)
        db.add(row)
        db.flush()
    return row


def _get_or_create_reaction(db: Session, name: str, provider: str, description: str) -> ReactionDefinition:
    row = db.query(ReactionDefinition).filter(ReactionDefinition.name == name).first()
    if row is None:
        row = ReactionDefinition(name=name, provider=provider, description=description, is_active=True)
        db.add(row)
        db.flush()
    return row


class BindingRepository:
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def find_by_id(self, binding_id: str) -> Optional[BindingRecord]:
        with self._session_factory() as db:
            area = db.get(Area, binding_id)
            return BindingRecord.from_row(area) if area else None

    def find_active(self) -> list[BindingRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(Area)
                .filter(Area.is_active == True)  # noqa: E712
                .order_by(Area.created_at)
                .all()
            )
            return [BindingRecord.from_row(a) for a in rows]

    def find_active_for_user(self, user_id: str, action_name: Optional[str] = None) -> list[BindingRecord]:
        with self._session_factory() as db:
            q = db.query(Area).filter(Area.user_id == user_id, Area.is_active == True)  # noqa: E712
            if action_name is not None:
                q = q.join(Area.action).filter(ActionDefinition.name == action_name)
            return [BindingRecord.from_row(a) for a in q.order_by(Area.created_at).all()]

    def find_for_user(self, user_id: str) -> list[BindingRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(Area)
                .filter(Area.user_id == user_id)
                .order_by(Area.created_at.desc())
                .all()
            )
            return [BindingRecord.from_row(a) for a in rows]

    def create(
        self,
        *,
        user_id: str,
        action_name: str,
        action_provider: str,
        action_description: str,
        reaction_name: str,
        reaction_provider: str,
        reaction_description: str,
        action_config: dict[str, Any],
        reaction_config: dict[str, Any],
        binding_id: Optional[str] = None,
    ) -> BindingRecord:
        with self._session_factory() as db:
            action = _get_or_create_action(db, action_name, action_provider, action_description)
            reaction = _get_or_create_reaction(db, reaction_name, reaction_provider, reaction_description)
            area = Area(
                id=binding_id or str(uuid.uuid4()),
                user_id=user_id,
                action_id=action.id,
                reaction_id=reaction.id,
                action_config=_jdump(action_config or {}),
                reaction_config=_jdump(reaction_config or {}),
                is_active=True,
            )
            db.add(area)
            db.commit()
            db.refresh(area)
            return BindingRecord.from_row(area)

    def set_active(self, binding_id: str, active: bool) -> bool:
        with self._session_factory() as db:
            area = db.get(Area, binding_id)
            if area is None:
                return False
            area.is_active = active
            db.commit()
            return True

    def append_log(
        self,
        *,
        user_id: str,
        area_id: Optional[str],
        event_type: str,
        description: Optional[str] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> int:
        with self._session_factory() as db:
            row = EventLog(
                user_id=user_id,
                area_id=area_id,
                event_type=event_type,
                description=description,
                event_metadata=_jdump(metadata or {}),
            )
            db.add(row)
            db.commit()
            return row.id

    def list_logs(self, area_id: str, limit: int = 50) -> list[ExecutionRecord]:
        with self._session_factory() as db:
            rows = (
                db.query(EventLog)
                .filter(EventLog.area_id == area_id)
                .order_by(EventLog.id.desc())
                .limit(limit)
                .all()
            )
            return [ExecutionRecord.from_row(r) for r in rows]
