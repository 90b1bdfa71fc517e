"""Tool Registry for the assistant.

Single source of truth for the tools the model may call. The registry maps
tool names to LangChain tools (each with a pydantic argument schema and an
async handler), classifies names into ordinary or terminal actions, and
dispatches tool calls, converting every failure into a textual result.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping

from langchain_core.messages import ToolCall, ToolMessage
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

FINISH_TOOL_NAME = "Done"


class ToolRegistryError(Exception):
    """Raised when the registry is misused."""

    pass


class ToolKind(Enum):
    """How the router treats a requested tool name."""

    ORDINARY = "ordinary"
    TERMINAL = "terminal"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ToolMetadata:
    """Metadata about a registered tool."""

    name: str
    description: str
    kind: ToolKind


class FinishArgs(BaseModel):
    answer: str | None = Field(
        default=None,
        description="Optional final reply to show the attendant when the reply text is empty.",
    )


async def _finish_handler(answer: str | None = None) -> str:
    return answer or ""


def create_finish_tool() -> BaseTool:
    """Create the reserved tool the model calls to end its turn."""
    return StructuredTool.from_function(
        coroutine=_finish_handler,
        name=FINISH_TOOL_NAME,
        description=(
            "Call this when the task is complete and no further tools are needed. "
            "Ends the turn immediately."
        ),
        args_schema=FinishArgs,
    )


def _stringify(result: Any) -> str:
    if isinstance(result, str):
        return result
    try:
        return json.dumps(result, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(result)


class ToolRegistry:
    """Registry for all tools available to the assistant.

    The registry is treated as immutable once frozen; the finish tool is
    always present and is never dispatched.

    Usage:
        registry = ToolRegistry()
        registry.register(my_tool)
        registry.freeze()
        tools = registry.resolve(["my_tool", "unknown"])  # -> [my_tool, Done]
    """

    def __init__(self, tools: Iterable[BaseTool] = ()) -> None:
        self._tools: dict[str, BaseTool] = {}
        self._metadata: dict[str, ToolMetadata] = {}
        self._frozen = False
        self._add(create_finish_tool(), ToolKind.TERMINAL)
        for tool in tools:
            self.register(tool)

    def _add(self, tool: BaseTool, kind: ToolKind) -> None:
        if self._frozen:
            raise ToolRegistryError(f"Cannot register {tool.name!r}: registry is frozen")
        if tool.name in self._tools:
            raise ToolRegistryError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        self._metadata[tool.name] = ToolMetadata(
            name=tool.name,
            description=tool.description,
            kind=kind,
        )

    def register(self, tool: BaseTool) -> BaseTool:
        """Register an ordinary tool. Returns the tool for decorator-style use."""
        self._add(tool, ToolKind.ORDINARY)
        return tool

    def freeze(self) -> "ToolRegistry":
        """Prevent further registrations."""
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> list[str]:
        """Names of all ordinary tools."""
        return [name for name, meta in self._metadata.items() if meta.kind is ToolKind.ORDINARY]

    def metadata(self) -> list[ToolMetadata]:
        return list(self._metadata.values())

    def get(self, name: str) -> BaseTool | None:
        return self._tools.get(name)

    def classify(self, name: str) -> ToolKind:
        """Classify a requested tool name."""
        meta = self._metadata.get(name)
        return meta.kind if meta else ToolKind.UNKNOWN

    def resolve(self, names: Iterable[str]) -> list[BaseTool]:
        """Resolve persona tool names to tools.

        Unknown names are dropped, duplicates collapsed and order preserved.
        The finish tool is always appended.
        """
        resolved: list[BaseTool] = []
        seen: set[str] = set()
        for name in names:
            if name in seen:
                continue
            seen.add(name)
            if self.classify(name) is ToolKind.ORDINARY:
                resolved.append(self._tools[name])
            else:
                logger.debug(f"Dropping unavailable tool name: {name}")
        resolved.append(self._tools[FINISH_TOOL_NAME])
        return resolved

    async def dispatch(
        self,
        tool_call: ToolCall | Mapping[str, Any],
        allowed: Iterable[str] | None = None,
    ) -> ToolMessage:
        """Execute one tool call and wrap its result in a ToolMessage.

        Args:
            tool_call: The model's tool call (name, args, id).
            allowed: Names the active persona may use; all ordinary tools if None.

        Returns:
            A ToolMessage holding the result, or error text with status "error".

        Raises:
            ToolRegistryError: If asked to dispatch the terminal tool.
        """
        name = tool_call.get("name", "")
        call_id = tool_call.get("id") or ""
        args = tool_call.get("args") or {}

        kind = self.classify(name)
        if kind is ToolKind.TERMINAL:
            raise ToolRegistryError(f"Terminal tool {name!r} cannot be dispatched")

        allowed_names = set(self.names() if allowed is None else allowed)
        if kind is ToolKind.UNKNOWN or name not in allowed_names:
            logger.warning(f"Model requested unavailable tool: {name}")
            return ToolMessage(
                content=f"Error: tool '{name}' is not available.",
                tool_call_id=call_id,
                name=name,
                status="error",
            )

        try:
            result = await self._tools[name].ainvoke(args)
        except Exception as exc:
            logger.error(f"Tool {name} failed: {exc}")
            return ToolMessage(
                content=f"Error: tool '{name}' failed: {exc}",
                tool_call_id=call_id,
                name=name,
                status="error",
            )

        return ToolMessage(content=_stringify(result), tool_call_id=call_id, name=name)
