"""LangGraph Workflow Definition for the assistant.

This module implements the state machine that turns one user utterance into
a reply: context injection, the model's think step, and the tool loop that
runs until the model answers directly or calls the finish tool.
"""

from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import Any, Callable, Literal, Sequence

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph

from omnimax_agent.context.providers import (
    NO_NEW_MESSAGES_SENTINEL,
    ContextProvider,
    TranscriptResult,
)
from omnimax_agent.models.factory import (
    ModelConfigurationError,
    ModelFactory,
    create_chat_model,
)
from omnimax_agent.orchestration.errors import ConfigurationError, ModelInvocationError
from omnimax_agent.orchestration.prompts import render_directive
from omnimax_agent.orchestration.state import ConversationState, ModelSelection
from omnimax_agent.tools import build_default_registry
from omnimax_agent.tools.registry import FINISH_TOOL_NAME, ToolKind, ToolRegistry

logger = logging.getLogger(__name__)

CONTEXT_INJECT = "context_inject"
AGENT_THINK = "agent"
TOOL_EXEC = "tools"

CONTEXT_MESSAGE_NAME = "context"

_SESSION_FIELDS = ("protocol_number", "attendance_id", "contact_id", "base_url")


def _require_session(state: ConversationState) -> dict[str, str]:
    missing = [name for name in _SESSION_FIELDS if not state.get(name)]
    if missing:
        raise ConfigurationError(f"Missing session identifiers: {', '.join(missing)}")
    return {name: str(state[name]) for name in _SESSION_FIELDS}  # type: ignore[literal-required]


def _note_label(message: SystemMessage) -> str:
    """Label for an interior system note, e.g. "Context" or "Persona switch"."""
    return (message.name or CONTEXT_MESSAGE_NAME).replace("_", " ").capitalize()


def _as_model_history(messages: Sequence[BaseMessage]) -> list[BaseMessage]:
    """Prepare stored history for a model call.

    Several back-ends only accept a system message at the head of the
    conversation, which is where the directive goes, so interior system
    notes are presented as human-role messages labelled by their name
    ("[Context]", "[Persona switch]"). Tool calls that never received a
    result (the finish tool of earlier turns) are closed with an
    acknowledgement so every call is answered.
    """
    history: list[BaseMessage] = []
    pending: dict[str, str] = {}

    def close_pending() -> None:
        for call_id, name in pending.items():
            history.append(ToolMessage(content="Acknowledged.", tool_call_id=call_id, name=name))
        pending.clear()

    for message in messages:
        if isinstance(message, ToolMessage):
            pending.pop(message.tool_call_id, None)
            history.append(message)
            continue

        close_pending()
        if isinstance(message, SystemMessage):
            label = _note_label(message)
            history.append(HumanMessage(content=f"[{label}]\n{message.content}", name=message.name))
        elif isinstance(message, AIMessage):
            history.append(message)
            pending.update({call["id"]: call["name"] for call in message.tool_calls if call.get("id")})
        else:
            history.append(message)

    close_pending()
    return history


def message_text(message: BaseMessage) -> str:
    """Extract the plain text of a message whose content may be blocks."""
    content = message.content
    if isinstance(content, str):
        return content
    parts: list[str] = []
    for block in content:
        if isinstance(block, str):
            parts.append(block)
        elif isinstance(block, dict) and block.get("type") == "text":
            parts.append(str(block.get("text", "")))
    return "".join(parts)


class WorkflowNodes:
    """Container for workflow node implementations.

    Holds the context provider, tool registry and model factory the nodes
    depend on, so tests can substitute any of them.
    """

    def __init__(
        self,
        context_provider: ContextProvider | None = None,
        tool_registry: ToolRegistry | None = None,
        model_factory: ModelFactory | None = None,
        clock: Callable[[], datetime] | None = None,
        max_retries: int = 0,
    ) -> None:
        """Initialize workflow nodes.

        Args:
            context_provider: Source of transcript context.
            tool_registry: Registry of tools the model may call.
            model_factory: Builds a chat model from a ModelSelection.
            clock: Returns the current time for the directive.
            max_retries: Retries passed to the default model factory.
        """
        self.context_provider = context_provider or ContextProvider()
        self.tool_registry = tool_registry or build_default_registry(self.context_provider)
        self._model_factory = model_factory or partial(create_chat_model, max_retries=max_retries)
        self._clock = clock or (lambda: datetime.now().astimezone())

    async def context_inject_node(self, state: ConversationState) -> dict[str, Any]:
        """Inject platform context ahead of the model's think step.

        The first turn of a thread (exactly one message in state) receives
        the full protocol history; later turns receive only messages newer
        than the stored watermark, and nothing when there are none.
        """
        logger.info("Executing context injection node")
        session = _require_session(state)
        messages = state.get("messages", [])
        watermark = state.get("last_processed_client_message_timestamp")

        result: TranscriptResult
        if len(messages) == 1:
            logger.info("First turn of thread - injecting full protocol history")
            result = await self.context_provider.fetch_full_history_result(
                session["contact_id"],
                session["protocol_number"],
                session["base_url"],
            )
        else:
            result = await self.context_provider.fetch_incremental_result(
                session["attendance_id"],
                session["base_url"],
                watermark,
            )
            if result.text == NO_NEW_MESSAGES_SENTINEL:
                logger.info("No new platform messages since watermark - skipping injection")
                return {}

        updates: dict[str, Any] = {
            "messages": [SystemMessage(content=result.text, name=CONTEXT_MESSAGE_NAME)],
        }
        if result.latest_timestamp is not None:
            updates["last_processed_client_message_timestamp"] = max(
                watermark or result.latest_timestamp, result.latest_timestamp
            )
        return updates

    async def agent_node(self, state: ConversationState) -> dict[str, Any]:
        """Invoke the model with the directive and full history."""
        logger.info("Executing agent node")
        session = _require_session(state)

        selection = ModelSelection(
            provider=state.get("provider") or "",
            model=state.get("model") or "",
            api_key=state.get("api_key"),
            base_url=state.get("model_base_url"),
        )
        model = self._model_factory(selection)
        tools = self.tool_registry.resolve(state.get("available_tool_names", []))

        try:
            bound = model.bind_tools(tools)
        except NotImplementedError as exc:
            raise ModelConfigurationError(
                f"Model {selection.model!r} of provider {selection.provider!r} does not support tools"
            ) from exc

        directive = render_directive(
            system_prompt=state.get("system_prompt", ""),
            now=self._clock(),
            tool_names=[tool.name for tool in tools if tool.name != FINISH_TOOL_NAME],
            finish_tool=FINISH_TOOL_NAME,
            **session,
        )

        try:
            reply = await bound.ainvoke(
                [SystemMessage(content=directive), *_as_model_history(state.get("messages", []))]
            )
        except Exception as exc:
            logger.error(f"Model invocation failed: {exc}")
            raise ModelInvocationError(f"Model back-end {selection.provider!r} failed: {exc}") from exc

        return {"messages": [reply]}

    async def tools_node(self, state: ConversationState) -> dict[str, Any]:
        """Execute every tool call of the latest model reply, in order."""
        logger.info("Executing tools node")
        last_message = state["messages"][-1]
        tool_calls = getattr(last_message, "tool_calls", None) or []
        allowed = [tool.name for tool in self.tool_registry.resolve(state.get("available_tool_names", []))]

        results = []
        for tool_call in tool_calls:
            if self.tool_registry.classify(tool_call["name"]) is ToolKind.TERMINAL:
                continue
            logger.info(f"Dispatching tool call: {tool_call['name']}")
            results.append(await self.tool_registry.dispatch(tool_call, allowed=allowed))

        return {"messages": results}


_DEFAULT_CLASSIFIER = ToolRegistry().freeze()


def route_after_agent(
    state: ConversationState,
    registry: ToolRegistry | None = None,
) -> Literal["tools", "end"]:
    """Route after the agent node based on the latest reply.

    Args:
        state: Current workflow state.
        registry: Registry used to classify requested tool names.

    Returns:
        "end" for a plain reply or a finish-tool call, otherwise "tools".
    """
    registry = registry or _DEFAULT_CLASSIFIER
    messages = state.get("messages", [])
    last_message = messages[-1] if messages else None
    tool_calls = getattr(last_message, "tool_calls", None) if isinstance(last_message, AIMessage) else None

    if not tool_calls:
        logger.info("Routing from agent to: END")
        return "end"

    if any(registry.classify(call["name"]) is ToolKind.TERMINAL for call in tool_calls):
        logger.info("Routing from agent to: END (finish tool called)")
        return "end"

    logger.info(f"Routing from agent to: tools ({len(tool_calls)} calls)")
    return "tools"


def build_workflow(
    nodes: WorkflowNodes | None = None,
    checkpointer: BaseCheckpointSaver | None = None,
) -> Any:
    """Build the LangGraph workflow for the assistant.

    Args:
        nodes: WorkflowNodes instance with collaborators.
        checkpointer: Checkpointer for state persistence.

    Returns:
        Compiled StateGraph ready for execution.
    """
    if nodes is None:
        nodes = WorkflowNodes()

    graph = StateGraph(ConversationState)

    graph.add_node(CONTEXT_INJECT, nodes.context_inject_node)
    graph.add_node(AGENT_THINK, nodes.agent_node)
    graph.add_node(TOOL_EXEC, nodes.tools_node)

    graph.add_edge(START, CONTEXT_INJECT)
    graph.add_edge(CONTEXT_INJECT, AGENT_THINK)
    graph.add_conditional_edges(
        AGENT_THINK,
        partial(route_after_agent, registry=nodes.tool_registry),
        {
            "tools": TOOL_EXEC,
            "end": END,
        },
    )
    graph.add_edge(TOOL_EXEC, AGENT_THINK)

    if checkpointer is None:
        checkpointer = MemorySaver()

    return graph.compile(checkpointer=checkpointer)


def get_workflow_mermaid() -> str:
    """Generate Mermaid diagram for the workflow.

    Returns:
        Mermaid diagram string.
    """
    return """```mermaid
stateDiagram-v2
    [*] --> ContextInject
    ContextInject --> AgentThink
    AgentThink --> ToolExec: ordinary tool calls
    ToolExec --> AgentThink
    AgentThink --> [*]: no tool calls
    AgentThink --> [*]: finish tool called

    note right of ContextInject
        First turn: full protocol history
        Later turns: messages after watermark
    end note

    note right of ToolExec
        One result message per call
        Errors returned as text
    end note
```"""


def generate_workflow_diagram(output_path: Path | None = None) -> str:
    """Generate and optionally save workflow diagram.

    Args:
        output_path: Optional path to save the diagram.

    Returns:
        The Mermaid diagram string.
    """
    diagram = get_workflow_mermaid()

    if output_path:
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(diagram, encoding="utf-8")
        logger.info(f"Workflow diagram saved to {output_path}")

    return diagram
