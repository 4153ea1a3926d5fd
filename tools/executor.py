from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from loguru import logger

from core.errors import UnknownActionError, ValidationError
from inference.parser import ToolCall, coerce_value
from .definitions import ToolDefinition

log = logger.bind(source="tools")


@dataclass
class ToolResult:
    success: bool
    tool_name: str
    data: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def ok(cls, tool_name: str, **data: Any) -> "ToolResult":
        return cls(True, tool_name, data)

    @classmethod
    def fail(cls, tool_name: str, error: str, **data: Any) -> "ToolResult":
        return cls(False, tool_name, data, error)

    def to_dict(self) -> Dict[str, Any]:
        out = {"success": self.success, "tool_name": self.tool_name, "data": dict(self.data)}
        if self.error is not None:
            out["error"] = self.error
        return out


ToolHandler = Callable[[Dict[str, Any]], Awaitable[ToolResult]]


class ToolRegistry:
    def __init__(self):
        self._tools: Dict[str, tuple[ToolDefinition, ToolHandler]] = {}

    def register(self, definition: ToolDefinition, handler: ToolHandler):
        self._tools[definition.name] = (definition, handler)

    def get(self, name: str) -> Optional[tuple[ToolDefinition, ToolHandler]]:
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools)

    def definitions(self) -> List[ToolDefinition]:
        return [d for d, _ in self._tools.values()]

    def openai_schemas(self) -> List[Dict[str, Any]]:
        return [d.to_openai_schema() for d in self.definitions()]

    def format_for_prompt(self) -> str:
        return "\n\n".join(d.format_for_prompt() for d in self.definitions())

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)


def _is_missing(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def coerce_arguments(definition: ToolDefinition, arguments: Dict[str, Any]) -> Dict[str, Any]:
    """Coerce string values to the declared number/boolean types and validate.

    Raises ValidationError on a missing required parameter, an enum violation
    or a value that cannot be read as its declared type.
    """
    args = dict(arguments or {})
    for name, param in definition.parameters.items():
        if name not in args or _is_missing(args[name]):
            if param.required:
                raise ValidationError(f"Missing required parameter: {name}", definition.name)
            args.pop(name, None)
            continue
        value = args[name]
        if param.type in ("number", "integer", "boolean") and isinstance(value, str):
            value = coerce_value(value)
        if param.type in ("number", "integer"):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ValidationError(f"Parameter {name} must be a number, got {args[name]!r}", definition.name)
            if param.type == "integer":
                value = int(value)
        elif param.type == "boolean" and not isinstance(value, bool):
            raise ValidationError(f"Parameter {name} must be true or false, got {args[name]!r}", definition.name)
        elif param.type == "string" and not isinstance(value, str):
            value = str(value).lower() if isinstance(value, bool) else str(value)
        if param.enum and value not in param.enum:
            raise ValidationError(f"Parameter {name} must be one of {', '.join(param.enum)}, got {value!r}", definition.name)
        args[name] = value
    return args


class ToolExecutor:
    """Dispatches one tool call to exactly one handler; never raises."""

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    def list_available_tools(self) -> List[str]:
        return self.registry.names()

    async def execute(self, call: ToolCall) -> ToolResult:
        entry = self.registry.get(call.name)
        if entry is None:
            err = UnknownActionError(call.name, self.registry.names())
            log.warning(str(err))
            return ToolResult.fail(call.name, str(err))
        definition, handler = entry

        try:
            args = coerce_arguments(definition, call.arguments)
        except ValidationError as e:
            log.warning(f"{call.name} rejected: {e}")
            return ToolResult.fail(call.name, str(e))

        try:
            result = await handler(args)
        except Exception as e:
            logger.exception(f"Tool {call.name} raised")
            return ToolResult.fail(call.name, f"Execution error: {e}")
        log.info(f"{call.name} -> {'OK' if result.success else 'FAIL'} {result.error or ''}".rstrip())
        return result
