"""
Placeholder substitution: rewrites {{KEY}} tokens inside a reaction
configuration using the flat data map extracted from a detected event.

Pure and deterministic. Unknown keys (and keys mapped to None) are left as
the literal {{KEY}} token so a misspelt placeholder is visible in the
reaction output instead of silently vanishing.

Public API
----------
substitute(value, data)   → value of the same shape
extract_keys(template)    → list[str]   (encounter order, duplicates kept)
"""
from __future__ import annotations

import re
from typing import Any, Mapping, Optional

_PLACEHOLDER_RE = re.compile(r"\{\{([A-Z0-9_]+)\}\}")


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def substitute_text(template: str, data: Optional[Mapping[str, Any]]) -> str:
    """Replace every resolvable {{KEY}} in a single string."""
    if not data:
        return template

    def _replace(match: re.Match) -> str:
        value = data.get(match.group(1))
        if value is None:
            return match.group(0)
        return _stringify(value)

    return _PLACEHOLDER_RE.sub(_replace, template)


def substitute(value: Any, data: Optional[Mapping[str, Any]]) -> Any:
    """
    Walk strings, sequences and mappings; everything else passes through.
    Mapping keys are preserved, only values are rewritten.
    """
    if isinstance(value, str):
        return substitute_text(value, data)
    if isinstance(value, (list, tuple)):
        return type(value)(substitute(item, data) for item in value)
    if isinstance(value, Mapping):
        return {key: substitute(item, data) for key, item in value.items()}
    return value


def extract_keys(template: Any) -> list[str]:
    """Every {{KEY}} occurrence in encounter order, duplicates included."""
    if isinstance(template, str):
        return _PLACEHOLDER_RE.findall(template)
    if isinstance(template, (list, tuple)):
        return [key for item in template for key in extract_keys(item)]
    if isinstance(template, Mapping):
        return [key for item in template.values() for key in extract_keys(item)]
    return []
