"""LangGraph orchestration of assistant turns.

This package provides the conversation state, the checkpoint store, the
workflow graph and the orchestrator that runs one turn of a session thread.

Modules:
    state: LangGraph state schema and state management utilities.
    sqlite_checkpointer: SQLite checkpoint saver.
    workflow: LangGraph workflow definition with nodes and edges.
    prompts: System directive template.
    orchestrator: Turn execution and the invocation entrypoint.

Names are resolved lazily so that lower layers (models, config) can import
``omnimax_agent.orchestration.state`` without loading the workflow.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from omnimax_agent.orchestration.errors import (
        CheckpointWriteError,
        ConfigurationError,
        ModelInvocationError,
        OrchestratorError,
        ThreadIdentityError,
    )
    from omnimax_agent.orchestration.orchestrator import (
        AssistantService,
        CheckpointSummary,
        InvokeRequest,
        Orchestrator,
        OrchestratorConfig,
        render_error_block,
    )
    from omnimax_agent.orchestration.sqlite_checkpointer import LocalSqliteSaver
    from omnimax_agent.orchestration.state import (
        ConversationState,
        ModelSelection,
        SessionContext,
        StateManager,
        StateValidationError,
        StateValidator,
        append_messages,
    )
    from omnimax_agent.orchestration.workflow import (
        AGENT_THINK,
        CONTEXT_INJECT,
        TOOL_EXEC,
        WorkflowNodes,
        build_workflow,
        generate_workflow_diagram,
        get_workflow_mermaid,
        route_after_agent,
    )

_EXPORTS = {
    # Errors
    "CheckpointWriteError": "errors",
    "ConfigurationError": "errors",
    "ModelInvocationError": "errors",
    "OrchestratorError": "errors",
    "ThreadIdentityError": "errors",
    # Orchestrator
    "AssistantService": "orchestrator",
    "CheckpointSummary": "orchestrator",
    "InvokeRequest": "orchestrator",
    "Orchestrator": "orchestrator",
    "OrchestratorConfig": "orchestrator",
    "render_error_block": "orchestrator",
    # Checkpointer
    "LocalSqliteSaver": "sqlite_checkpointer",
    # State
    "ConversationState": "state",
    "ModelSelection": "state",
    "SessionContext": "state",
    "StateManager": "state",
    "StateValidationError": "state",
    "StateValidator": "state",
    "append_messages": "state",
    # Workflow
    "AGENT_THINK": "workflow",
    "CONTEXT_INJECT": "workflow",
    "TOOL_EXEC": "workflow",
    "WorkflowNodes": "workflow",
    "build_workflow": "workflow",
    "generate_workflow_diagram": "workflow",
    "get_workflow_mermaid": "workflow",
    "route_after_agent": "workflow",
}

__all__ = list(_EXPORTS)


def __getattr__(name: str):
    if name in _EXPORTS:
        module = import_module(f"{__name__}.{_EXPORTS[name]}")
        return getattr(module, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
