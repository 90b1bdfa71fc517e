"""Tools the assistant can call, and the registry that dispatches them."""

from __future__ import annotations

from langchain_core.vectorstores import VectorStore

from omnimax_agent.context.providers import ContextProvider
from omnimax_agent.tools.context_tools import (
    LATEST_MESSAGES_TOOL,
    PROTOCOL_HISTORY_TOOL,
    create_context_tools,
)
from omnimax_agent.tools.knowledge_base import KNOWLEDGE_BASE_TOOL, create_knowledge_base_tool
from omnimax_agent.tools.registry import (
    FINISH_TOOL_NAME,
    ToolKind,
    ToolMetadata,
    ToolRegistry,
    ToolRegistryError,
)


def build_default_registry(
    context_provider: ContextProvider,
    vector_store: VectorStore | None = None,
) -> ToolRegistry:
    """Create the frozen registry used by the assistant at runtime."""
    registry = ToolRegistry(create_context_tools(context_provider))
    if vector_store is not None:
        registry.register(create_knowledge_base_tool(vector_store))
    return registry.freeze()


__all__ = [
    "FINISH_TOOL_NAME",
    "KNOWLEDGE_BASE_TOOL",
    "LATEST_MESSAGES_TOOL",
    "PROTOCOL_HISTORY_TOOL",
    "ToolKind",
    "ToolMetadata",
    "ToolRegistry",
    "ToolRegistryError",
    "build_default_registry",
    "create_context_tools",
    "create_knowledge_base_tool",
]
