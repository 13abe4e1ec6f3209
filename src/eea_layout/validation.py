"""
Error types and input validation for the layout engine and its MCP tools.

Configuration dataclasses call these validators from ``__post_init__`` so
that bad settings fail before any computation starts.  Tool handlers call
the dict validators on raw JSON input and turn a ``ValidationError`` into
an ``"Error: ..."`` reply.
"""

from __future__ import annotations

import math
from typing import Any


# ---------------------------------------------------------------------------
# Error types
# ---------------------------------------------------------------------------

class ValidationError(Exception):
    """Raised when input validation fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class ConfigurationError(ValidationError):
    """Raised for invalid layout or routing configuration."""


class UnknownStrategyError(ConfigurationError):
    """Raised when a layout strategy name is not registered."""

    def __init__(self, name: str, available: list[str]) -> None:
        self.name = name
        self.available = available
        choices = ", ".join(sorted(available)) or "none"
        super().__init__(
            f"Unknown layout strategy '{name}'. Registered strategies: {choices}."
        )


# ---------------------------------------------------------------------------
# Primitive validators
# ---------------------------------------------------------------------------

def validate_non_empty_string(value: Any, field_name: str) -> str:
    """Ensure *value* is a non-empty string after stripping whitespace."""
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{field_name}' must be a non-empty string.")
    return value.strip()


def validate_number(
    value: Any,
    field_name: str,
    *,
    min_val: float | None = None,
    max_val: float | None = None,
    error: type[ValidationError] = ValidationError,
) -> float:
    """Validate a finite numeric value and optional range."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        raise error(
            f"'{field_name}' must be a number, got {type(value).__name__}."
        )
    val = float(value)
    if not math.isfinite(val):
        raise error(f"'{field_name}' must be finite, got {val}.")
    if min_val is not None and val < min_val:
        raise error(
            f"'{field_name}' must be >= {min_val}, got {val}."
        )
    if max_val is not None and val > max_val:
        raise error(
            f"'{field_name}' must be <= {max_val}, got {val}."
        )
    return val


def validate_int(
    value: Any,
    field_name: str,
    *,
    min_val: int | None = None,
    max_val: int | None = None,
    error: type[ValidationError] = ValidationError,
) -> int:
    """Validate an integer value and optional range."""
    if not isinstance(value, int) or isinstance(value, bool):
        raise error(
            f"'{field_name}' must be an integer, got {type(value).__name__}."
        )
    if min_val is not None and value < min_val:
        raise error(
            f"'{field_name}' must be >= {min_val}, got {value}."
        )
    if max_val is not None and value > max_val:
        raise error(
            f"'{field_name}' must be <= {max_val}, got {value}."
        )
    return value


def validate_bool(
    value: Any,
    field_name: str,
    *,
    error: type[ValidationError] = ValidationError,
) -> bool:
    """Ensure *value* is a boolean."""
    if not isinstance(value, bool):
        raise error(
            f"'{field_name}' must be a boolean, got {type(value).__name__}."
        )
    return value


def validate_enum(
    value: Any,
    field_name: str,
    allowed: set[str],
    *,
    error: type[ValidationError] = ValidationError,
) -> str:
    """Validate that a string value is one of the allowed choices (case-insensitive)."""
    if not isinstance(value, str):
        raise error(
            f"'{field_name}' must be a string, got {type(value).__name__}."
        )
    normalized = value.strip().upper()
    if normalized not in {a.upper() for a in allowed}:
        choices = ", ".join(sorted(allowed))
        raise error(
            f"'{field_name}' must be one of [{choices}], got '{value}'."
        )
    return normalized


def validate_list(value: Any, field_name: str, *, min_length: int = 0) -> list:
    """Ensure *value* is a list with at least *min_length* items."""
    if not isinstance(value, list):
        raise ValidationError(
            f"'{field_name}' must be a list, got {type(value).__name__}."
        )
    if len(value) < min_length:
        raise ValidationError(
            f"'{field_name}' must have at least {min_length} item(s), got {len(value)}."
        )
    return value


def validate_dict(value: Any, field_name: str) -> dict:
    """Ensure *value* is a dict."""
    if not isinstance(value, dict):
        raise ValidationError(
            f"'{field_name}' must be a dict/object, got {type(value).__name__}."
        )
    return value


# ---------------------------------------------------------------------------
# Configuration validators
# ---------------------------------------------------------------------------

_VALID_DIRECTIONS = {"TB", "BT", "LR", "RL"}
_VALID_ROUTING_ALGORITHMS = {"direct", "orthogonal", "curved", "astar"}

_LAYOUT_ACTIONS = {"APPLY", "CONFIGURE", "LIST", "STOP", "REROUTE"}


def validate_action(value: Any, tool_name: str, allowed: set[str]) -> str:
    """Validate the action parameter for a tool."""
    if not isinstance(value, str) or not value.strip():
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"'{tool_name}' requires an 'action' parameter. Valid actions: {choices}."
        )
    normalized = value.strip().upper()
    if normalized not in allowed:
        choices = ", ".join(sorted(a.lower() for a in allowed))
        raise ValidationError(
            f"Unknown {tool_name} action '{value}'. Valid actions: {choices}."
        )
    return value.strip().lower()


def validate_direction(value: Any) -> str:
    """Validate a layout direction (TB, BT, LR, RL)."""
    return validate_enum(value, "direction", _VALID_DIRECTIONS, error=ConfigurationError)


def validate_routing_algorithm(value: Any) -> str:
    """Validate a routing algorithm name."""
    return validate_enum(
        value, "routing_algorithm", _VALID_ROUTING_ALGORITHMS, error=ConfigurationError,
    ).lower()


def validate_positive_number(value: Any, field_name: str) -> float:
    """Validate that a configuration number is strictly positive."""
    val = validate_number(value, field_name, error=ConfigurationError)
    if val <= 0:
        raise ConfigurationError(f"'{field_name}' must be > 0, got {val}.")
    return val


def validate_non_negative_number(value: Any, field_name: str) -> float:
    """Validate that a configuration number is >= 0."""
    return validate_number(value, field_name, min_val=0, error=ConfigurationError)


def validate_fraction(value: Any, field_name: str) -> float:
    """Validate a decay/damping factor in [0, 1]."""
    return validate_number(value, field_name, min_val=0, max_val=1, error=ConfigurationError)


def validate_grid_size(value: Any) -> float:
    """Validate the routing grid cell size (must be > 0)."""
    return validate_positive_number(value, "grid_size")


def validate_count(value: Any, field_name: str, *, min_val: int = 0) -> int:
    """Validate an iteration/segment count."""
    return validate_int(value, field_name, min_val=min_val, error=ConfigurationError)


# ---------------------------------------------------------------------------
# Graph input validators
# ---------------------------------------------------------------------------

def validate_node_dict(v: Any, index: int) -> None:
    """Validate a single node dict from the nodes list."""
    if not isinstance(v, dict):
        raise ValidationError(f"Node at index {index} must be a dict/object.")
    if "id" not in v:
        raise ValidationError(f"Node at index {index} missing required key 'id'.")
    if not isinstance(v["id"], str) or not v["id"].strip():
        raise ValidationError(f"Node at index {index}: 'id' must be a non-empty string.")
    for key in ("width", "height"):
        if key not in v:
            raise ValidationError(f"Node at index {index} missing required key '{key}'.")
        if not isinstance(v[key], (int, float)) or isinstance(v[key], bool):
            raise ValidationError(f"Node at index {index}: '{key}' must be a number.")
        if not math.isfinite(v[key]) or v[key] <= 0:
            raise ValidationError(f"Node at index {index}: '{key}' must be > 0.")
    for key in ("x", "y"):
        if v.get(key) is not None and (
            not isinstance(v[key], (int, float)) or isinstance(v[key], bool)
        ):
            raise ValidationError(f"Node at index {index}: '{key}' must be a number.")
    if "type" in v and not isinstance(v["type"], str):
        raise ValidationError(f"Node at index {index}: 'type' must be a string.")
    if "fixed" in v and not isinstance(v["fixed"], bool):
        raise ValidationError(f"Node at index {index}: 'fixed' must be a boolean.")


def validate_edge_dict(e: Any, index: int) -> None:
    """Validate a single edge dict from the edges list."""
    if not isinstance(e, dict):
        raise ValidationError(f"Edge at index {index} must be a dict/object.")
    if "id" not in e:
        raise ValidationError(f"Edge at index {index} missing required key 'id'.")
    if not isinstance(e["id"], str) or not e["id"].strip():
        raise ValidationError(f"Edge at index {index}: 'id' must be a non-empty string.")
    for snake, camel in (("source_id", "sourceId"), ("target_id", "targetId")):
        value = e.get(snake, e.get(camel))
        if value is None:
            raise ValidationError(f"Edge at index {index} missing required key '{snake}'.")
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(f"Edge at index {index}: '{snake}' must be a non-empty string.")
    if "protocol" in e:
        validate_enum(
            e["protocol"], f"edges[{index}].protocol",
            {"can", "lin", "flexray", "ethernet", "custom"},
        )


def validate_point_dict(p: Any, field_name: str) -> tuple[float, float]:
    """Validate an ``{x, y}`` point dict."""
    validate_dict(p, field_name)
    for key in ("x", "y"):
        if key not in p:
            raise ValidationError(f"'{field_name}' missing required key '{key}'.")
    return (
        validate_number(p["x"], f"{field_name}.x"),
        validate_number(p["y"], f"{field_name}.y"),
    )


def validate_rect_dict(r: Any, index: int) -> tuple[float, float, float, float]:
    """Validate an ``{x, y, width, height}`` obstacle dict."""
    name = f"obstacles[{index}]"
    validate_dict(r, name)
    for key in ("x", "y", "width", "height"):
        if key not in r:
            raise ValidationError(f"'{name}' missing required key '{key}'.")
    x = validate_number(r["x"], f"{name}.x")
    y = validate_number(r["y"], f"{name}.y")
    w = validate_number(r["width"], f"{name}.width", min_val=0)
    h = validate_number(r["height"], f"{name}.height", min_val=0)
    return x, y, w, h
