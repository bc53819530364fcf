"""
Static configuration schemas for actions and reactions, and the pre-check
that `bind` runs before anything is persisted.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Literal, Optional

from area_engine.core.errors import InvalidConfigError

FieldType = Literal["string", "number", "boolean", "email"]


@dataclass(frozen=True)
class ConfigField:
    name: str
    type: FieldType
    required: bool = True
    label: Optional[str] = None
    placeholder: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class Placeholder:
    """One key an action exposes to reaction configurations."""
    key: str
    description: str
    example: str = ""

    def to_dict(self) -> dict:
        return asdict(self)


def _is_missing(value: Any) -> bool:
    return value is None or value == ""


def _check_type(field: ConfigField, value: Any) -> Optional[str]:
    """Return a failure reason, or None when the value matches the field type."""
    if field.type in ("string", "email"):
        if not isinstance(value, str):
            return "must be a string"
        if field.type == "email" and "@" not in value:
            return "must be a valid email address"
    elif field.type == "number":
        # bool is an int subclass
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return "must be a number"
    elif field.type == "boolean":
        if not isinstance(value, bool):
            return "must be a boolean"
    return None


def validate_config(
    config: Optional[dict[str, Any]],
    fields: list[ConfigField],
    item_name: str,
) -> None:
    """
    Raise InvalidConfigError naming the first offending field.
    Fields absent from the schema are accepted untouched.
    """
    config = config or {}
    if not isinstance(config, dict):
        raise InvalidConfigError(item_name, "config", "must be an object")

    for field in fields:
        value = config.get(field.name)
        if _is_missing(value):
            if field.required:
                raise InvalidConfigError(item_name, field.name, "is required")
            continue
        reason = _check_type(field, value)
        if reason:
            raise InvalidConfigError(item_name, field.name, reason)
