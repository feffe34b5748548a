"""Tool definitions and helpers shared by the vendor codecs."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
import json
import re
from typing import Any, Union

from ..errors import GatewayError, ToolArgumentDecodeError
from ..message import ensure_json_compatible, freeze_json, thaw_json

_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")


@dataclass(frozen=True, slots=True)
class ToolDefinition:
    """A function the model may call, described by a JSON object schema."""

    name: str
    description: str
    input_schema: Mapping[str, Any]

    def __post_init__(self) -> None:
        if not isinstance(self.name, str) or not _NAME_PATTERN.fullmatch(self.name):
            msg = "tool name must match ^[a-zA-Z0-9_-]{1,64}$"
            raise GatewayError(msg)

        if not isinstance(self.description, str):
            msg = "tool description must be a string"
            raise GatewayError(msg)

        if not isinstance(self.input_schema, Mapping):
            msg = "tool input_schema must be a mapping"
            raise GatewayError(msg)

        schema = thaw_json(self.input_schema)
        try:
            ensure_json_compatible(schema, path=f"ToolDefinition('{self.name}').input_schema")
        except (TypeError, ValueError) as exc:
            raise GatewayError(str(exc)) from exc

        schema_type = schema.get("type", "object")
        if schema_type != "object":
            msg = "tool input_schema must describe a JSON object"
            raise GatewayError(msg)

        properties = schema.get("properties", {})
        if not isinstance(properties, dict):
            msg = "tool input_schema 'properties' must be a mapping"
            raise GatewayError(msg)

        required = schema.get("required", [])
        if not isinstance(required, list):
            msg = "tool input_schema 'required' must be a list of strings"
            raise GatewayError(msg)
        for index, item in enumerate(required):
            if not isinstance(item, str) or not item:
                msg = f"required parameter names must be non-empty strings (index {index})"
                raise GatewayError(msg)
            if item not in properties:
                msg = f"required parameter '{item}' is not defined"
                raise GatewayError(msg)

        object.__setattr__(self, "input_schema", freeze_json(schema))

    @property
    def properties(self) -> dict[str, Any]:
        return thaw_json(self.input_schema.get("properties", {}))

    @property
    def required(self) -> list[str]:
        return list(self.input_schema.get("required", ()))

    def parameters_schema(self) -> dict[str, Any]:
        """Return the schema as a plain object schema dict."""

        return {"type": "object", "properties": self.properties, "required": self.required}


def validate_tool_definitions(tools: Sequence[ToolDefinition]) -> tuple[ToolDefinition, ...]:
    """Check the tool list shape and reject duplicate names."""

    if isinstance(tools, (str, bytes, bytearray, Mapping)):
        msg = "tools must be a sequence of ToolDefinition instances"
        raise GatewayError(msg)

    seen_names: set[str] = set()
    validated: list[ToolDefinition] = []
    for index, tool in enumerate(tools):
        if not isinstance(tool, ToolDefinition):
            msg = f"tools[{index}] must be a ToolDefinition"
            raise GatewayError(msg)
        if tool.name in seen_names:
            msg = f"duplicate tool name '{tool.name}'"
            raise GatewayError(msg)
        seen_names.add(tool.name)
        validated.append(tool)
    return tuple(validated)


@dataclass(frozen=True, slots=True)
class ParsedToolArguments:
    """Successful outcome of decoding accumulated tool arguments."""

    arguments: dict[str, Any]


ToolArgumentOutcome = Union[ParsedToolArguments, ToolArgumentDecodeError]


def parse_tool_arguments(
    raw: str,
    *,
    index: int,
    tool_id: str,
    tool_name: str,
) -> ToolArgumentOutcome:
    """Decode a complete argument string into a JSON object.

    An empty string decodes to ``{}``. Failures are returned, not raised.
    """

    def failure(reason: str) -> ToolArgumentDecodeError:
        return ToolArgumentDecodeError(
            index=index,
            tool_id=tool_id,
            tool_name=tool_name,
            raw=raw,
            reason=reason,
        )

    if not raw.strip():
        return ParsedToolArguments(arguments={})
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        return failure(str(exc))
    if not isinstance(parsed, dict):
        return failure(f"expected a JSON object, got {type(parsed).__name__}")
    return ParsedToolArguments(arguments=parsed)


def coerce_tool_input(value: Any) -> dict[str, Any]:
    """Normalize a vendor supplied tool input that should already be an object."""

    if isinstance(value, Mapping):
        return dict(value)
    if value is None:
        return {}
    if isinstance(value, str):
        parsed = json.loads(value or "{}")
        if isinstance(parsed, dict):
            return parsed
    msg = f"tool input must be a JSON object, got {type(value).__name__}"
    raise ValueError(msg)


__all__ = [
    "ParsedToolArguments",
    "ToolArgumentOutcome",
    "ToolDefinition",
    "coerce_tool_input",
    "parse_tool_arguments",
    "validate_tool_definitions",
]
