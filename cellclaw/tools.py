"""
CellClaw - Device tool abstraction and registry.

A tool is a named capability the model may call: it advertises a description
and parameter schema, and executes with a JSON-object argument map.

Example, as a subclass::

    class SettingsGet(Tool):
        name = "settings.get"
        description = "Read a system setting."
        parameters = ToolParameters(
            properties={"key": ParameterProperty("string", "Setting name.")},
            required=("key",),
        )
        requires_approval = False

        async def execute(self, params):
            return ToolResult.ok({"key": params["key"], "value": "on"})

Example, via the ``@define_tool`` decorator::

    @define_tool(
        name="sms.send",
        description="Send an SMS message.",
        parameters={
            "type": "object",
            "properties": {
                "to": {"type": "string", "description": "Recipient number."},
                "body": {"type": "string", "description": "Message text."},
            },
            "required": ["to", "body"],
        },
    )
    def send_sms(to: str, body: str) -> dict:
        return {"sent": True}
"""

import asyncio
import inspect
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional, Union

from .exceptions import ToolError
from .models import ToolApiDefinition, ToolParameters, ToolResult

logger = logging.getLogger("cellclaw.tools")

ParametersInput = Union[ToolParameters, dict, None]


def _coerce_parameters(parameters: ParametersInput) -> ToolParameters:
    if parameters is None:
        return ToolParameters()
    if isinstance(parameters, ToolParameters):
        return parameters
    return ToolParameters.from_json_schema(parameters)


class Tool(ABC):
    """Base class for device tools.

    Subclasses set ``name``, ``description``, ``parameters`` and
    ``requires_approval`` and implement :meth:`execute`.
    """

    name: str = ""
    description: str = ""
    parameters: ToolParameters = ToolParameters()
    requires_approval: bool = True

    @abstractmethod
    async def execute(self, params: dict[str, Any]) -> ToolResult:
        """Perform the action. Failures should be returned, not raised."""

    async def run(self, params: dict[str, Any]) -> ToolResult:
        """Execute and fold any raised exception into a failed result."""
        try:
            result = await self.execute(params)
        except asyncio.CancelledError:
            raise
        except ToolError as e:
            logger.info("Tool %s failed: %s", self.name, e.message)
            return ToolResult.fail(e.message)
        except Exception as e:
            logger.exception("Tool %s raised: %s", self.name, e)
            return ToolResult.fail(f"Execution failed: {e}")
        if not isinstance(result, ToolResult):
            return ToolResult.ok(result)
        return result

    def to_api_definition(self) -> ToolApiDefinition:
        return ToolApiDefinition(self.name, self.description, self.parameters)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


class FunctionTool(Tool):
    """A tool backed by a plain function.

    The handler is called with the arguments as keywords. Coroutine
    functions are awaited; regular functions run in a worker thread since
    device calls may block. Return values other than :class:`ToolResult`
    are wrapped with :meth:`ToolResult.ok`.
    """

    def __init__(
        self,
        name: str,
        description: str,
        handler: Callable[..., Any],
        parameters: ParametersInput = None,
        requires_approval: bool = True,
    ) -> None:
        self.name = name
        self.description = description
        self.handler = handler
        self.parameters = _coerce_parameters(parameters)
        self.requires_approval = requires_approval

    async def execute(self, params: dict[str, Any]) -> ToolResult:
        if inspect.iscoroutinefunction(self.handler):
            raw = await self.handler(**params)
        else:
            raw = await asyncio.to_thread(self.handler, **params)
        if isinstance(raw, ToolResult):
            return raw
        return ToolResult.ok(raw)


def define_tool(
    name: Optional[str] = None,
    description: str = "",
    parameters: ParametersInput = None,
    requires_approval: bool = True,
) -> Callable[[Callable[..., Any]], FunctionTool]:
    """Decorator that turns a function into a :class:`FunctionTool`.

    The function's ``__name__`` is the tool name unless *name* is given; its
    docstring is the description unless *description* is given.
    """

    def decorator(func: Callable[..., Any]) -> FunctionTool:
        tool_name = name or func.__name__
        return FunctionTool(
            name=tool_name,
            description=description or (func.__doc__ or "").strip() or f"Tool: {tool_name}",
            handler=func,
            parameters=parameters,
            requires_approval=requires_approval,
        )

    return decorator


class ToolRegistry:
    """Name-indexed catalog of tools, safe to read while it changes.

    Registering a tool under an existing name replaces the earlier one.
    """

    def __init__(self, tools: Optional[list[Tool]] = None) -> None:
        self._lock = threading.Lock()
        self._tools: dict[str, Tool] = {}
        if tools:
            self.register(*tools)

    def register(self, *tools: Tool) -> None:
        with self._lock:
            for tool in tools:
                if not tool.name:
                    raise ValueError(f"Tool {tool!r} has no name")
                if tool.name in self._tools:
                    logger.debug("Replacing tool %s", tool.name)
                self._tools[tool.name] = tool

    def unregister(self, name: str) -> Optional[Tool]:
        with self._lock:
            return self._tools.pop(name, None)

    def get(self, name: str) -> Optional[Tool]:
        with self._lock:
            return self._tools.get(name)

    def all(self) -> list[Tool]:
        with self._lock:
            return list(self._tools.values())

    def names(self) -> list[str]:
        with self._lock:
            return list(self._tools)

    def to_api_schema(self) -> list[ToolApiDefinition]:
        return [tool.to_api_definition() for tool in self.all()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._tools)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._tools
