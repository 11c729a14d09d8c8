"""
Base domain model with JSON serialization.

Domain dataclasses inherit from BaseDomainModel to get camelCase JSON output
for reports (``deploy run --json``).
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import fields
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict


def to_camel_case(snake_str: str) -> str:
    """
    Convert snake_case to camelCase.

    Examples:
        >>> to_camel_case("exit_code")
        'exitCode'
        >>> to_camel_case("duration_ms")
        'durationMs'
    """
    components = snake_str.split("_")
    return components[0] + "".join(x.title() for x in components[1:])


def _to_json_value(value: Any) -> Any:
    if isinstance(value, BaseDomainModel):
        return value.to_json()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_to_json_value(item) for item in value]
    if isinstance(value, Mapping):
        return {k: _to_json_value(v) for k, v in value.items()}
    return value


class BaseDomainModel:
    """
    Mixin for domain dataclasses.

    - to_json() serializes to camelCase
    - Enum values are serialized as their values
    - Dates are serialized as ISO 8601 strings
    """

    def to_json(self) -> Dict[str, Any]:
        """Serialize to JSON-compatible dict with camelCase keys."""
        return {to_camel_case(f.name): _to_json_value(getattr(self, f.name)) for f in fields(self)}
