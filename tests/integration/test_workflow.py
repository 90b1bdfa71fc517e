"""Integration tests for the LangGraph workflow.

Tests cover:
- First turn injects the full protocol history
- Later turns inject only messages after the watermark
- No new messages adds no context
- Tool loop: N calls produce N results in order
- Finish tool ends the turn without dispatch
- Model and configuration failures abort the turn
"""

from __future__ import annotations

from pathlib import Path

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from langgraph.checkpoint.memory import MemorySaver

from omnimax_agent.context.formatters import parse_timestamp, to_epoch_ms
from omnimax_agent.models.factory import ModelConfigurationError
from omnimax_agent.orchestration.errors import ConfigurationError, ModelInvocationError
from omnimax_agent.orchestration.state import ModelSelection, StateManager
from omnimax_agent.orchestration.workflow import (
    CONTEXT_MESSAGE_NAME,
    WorkflowNodes,
    build_workflow,
    generate_workflow_diagram,
    get_workflow_mermaid,
)
from omnimax_agent.tools.context_tools import LATEST_MESSAGES_TOOL, PROTOCOL_HISTORY_TOOL
from omnimax_agent.tools.registry import FINISH_TOOL_NAME


@pytest.fixture
def graph(context_provider, scripted_model, fixed_clock):
    nodes = WorkflowNodes(
        context_provider=context_provider,
        model_factory=lambda selection: scripted_model,
        clock=fixed_clock,
    )
    return build_workflow(nodes, MemorySaver())


@pytest.fixture
def thread() -> dict:
    return {"configurable": {"thread_id": "P1:A1"}}


@pytest.fixture
def turn(session_context, selection, persona):
    def make(query: str, **overrides):
        values = {
            "system_prompt": persona.prompt,
            "available_tool_names": persona.tool_names,
            "persona_id": persona.id,
        }
        values.update(overrides)
        return StateManager.create_turn_input(query, session_context, selection, **values)

    return make


def _context_messages(messages) -> list[SystemMessage]:
    return [m for m in messages if isinstance(m, SystemMessage) and m.name == CONTEXT_MESSAGE_NAME]


def _call(name: str, args: dict, call_id: str) -> dict:
    return {"name": name, "args": args, "id": call_id}


class TestContextInjection:
    """Tests for the context injection step."""

    async def test_first_turn_gets_full_history(self, graph, thread, turn, scripted_model) -> None:
        scripted_model.responses.append(AIMessage(content="The order is late."))

        result = await graph.ainvoke(turn("Summarize"), config=thread)

        messages = result["messages"]
        assert [type(m) for m in messages] == [HumanMessage, SystemMessage, AIMessage]
        assert messages[1].content.startswith("Conversation History:\n")
        assert "Hello, my order is late" in messages[1].content
        assert result["last_processed_client_message_timestamp"] == to_epoch_ms(
            parse_timestamp("2024-05-01T10:01:00Z")
        )

    async def test_model_sees_directive_first(self, graph, thread, turn, scripted_model) -> None:
        scripted_model.responses.append(AIMessage(content="ok"))

        await graph.ainvoke(turn("Summarize"), config=thread)

        sent = scripted_model.calls[0]
        assert isinstance(sent[0], SystemMessage)
        assert "You summarize service sessions." in sent[0].content
        assert "Protocol number: P1" in sent[0].content
        assert "2024-05-01 12:00:00" in sent[0].content
        assert [type(m) for m in sent[1:]] == [HumanMessage, HumanMessage]
        assert sent[2].content.startswith("[Context]\nConversation History:")
        assert scripted_model.bound_tools == [
            PROTOCOL_HISTORY_TOOL,
            LATEST_MESSAGES_TOOL,
            FINISH_TOOL_NAME,
        ]

    async def test_no_new_messages_adds_no_context(self, graph, thread, turn, scripted_model) -> None:
        scripted_model.responses.extend([AIMessage(content="first"), AIMessage(content="second")])

        await graph.ainvoke(turn("Summarize"), config=thread)
        result = await graph.ainvoke(turn("Anything new?"), config=thread)

        messages = result["messages"]
        assert len(_context_messages(messages)) == 1
        assert [type(m) for m in messages[3:]] == [HumanMessage, AIMessage]

    async def test_new_messages_injected_incrementally(
        self, graph, thread, turn, scripted_model, platform
    ) -> None:
        scripted_model.responses.extend([AIMessage(content="first"), AIMessage(content="second")])

        await graph.ainvoke(turn("Summarize"), config=thread)
        platform.add_message("A1", "It arrived broken", "2024-05-01T11:00:00Z")
        result = await graph.ainvoke(turn("Anything new?"), config=thread)

        contexts = _context_messages(result["messages"])
        assert len(contexts) == 2
        assert "It arrived broken" in contexts[1].content
        assert "Hello, my order is late" not in contexts[1].content
        assert result["last_processed_client_message_timestamp"] == to_epoch_ms(
            parse_timestamp("2024-05-01T11:00:00Z")
        )

    async def test_fetch_failure_is_injected_as_text(
        self, graph, thread, turn, scripted_model, platform
    ) -> None:
        platform.status_code = 500
        scripted_model.responses.append(AIMessage(content="I could not load the history."))

        result = await graph.ainvoke(turn("Summarize"), config=thread)

        context = _context_messages(result["messages"])[0]
        assert context.content.startswith("An error occurred while fetching the protocol history:")
        assert result.get("last_processed_client_message_timestamp") is None
        assert result["messages"][-1].content == "I could not load the history."


class TestToolLoop:
    """Tests for the think/act loop."""

    async def test_every_call_gets_a_result(self, graph, thread, turn, scripted_model) -> None:
        scripted_model.responses.extend(
            [
                AIMessage(
                    content="",
                    tool_calls=[
                        _call(LATEST_MESSAGES_TOOL, {"session_id": "A1", "base_url": "https://platform.example"}, "c1"),
                        _call("unknown_tool", {}, "c2"),
                    ],
                ),
                AIMessage(content="Done checking."),
            ]
        )

        result = await graph.ainvoke(turn("Check again"), config=thread)

        tool_results = [m for m in result["messages"] if isinstance(m, ToolMessage)]
        assert [m.tool_call_id for m in tool_results] == ["c1", "c2"]
        assert "Conversation History:" in tool_results[0].content
        assert tool_results[1].status == "error"
        assert len(scripted_model.calls) == 2
        assert result["messages"][-1].content == "Done checking."

    async def test_tool_outside_persona_is_refused(
        self, graph, thread, turn, scripted_model
    ) -> None:
        scripted_model.responses.extend(
            [
                AIMessage(
                    content="",
                    tool_calls=[
                        _call(
                            PROTOCOL_HISTORY_TOOL,
                            {"contact_id": "C1", "protocol_number": "P1", "base_url": "https://platform.example"},
                            "c1",
                        )
                    ],
                ),
                AIMessage(content="ok"),
            ]
        )

        result = await graph.ainvoke(
            turn("Summarize", available_tool_names=[LATEST_MESSAGES_TOOL, "ghost_tool"]),
            config=thread,
        )

        tool_result = next(m for m in result["messages"] if isinstance(m, ToolMessage))
        assert tool_result.status == "error"
        assert scripted_model.bound_tools == [LATEST_MESSAGES_TOOL, FINISH_TOOL_NAME]

    async def test_finish_tool_ends_turn(self, graph, thread, turn, scripted_model) -> None:
        scripted_model.responses.append(
            AIMessage(
                content="",
                tool_calls=[
                    _call(LATEST_MESSAGES_TOOL, {"session_id": "A1", "base_url": "x"}, "c1"),
                    _call(FINISH_TOOL_NAME, {"answer": "All done"}, "c2"),
                ],
            )
        )

        result = await graph.ainvoke(turn("Wrap up"), config=thread)

        assert len(scripted_model.calls) == 1
        assert not any(isinstance(m, ToolMessage) for m in result["messages"])
        assert result["messages"][-1].tool_calls[-1]["name"] == FINISH_TOOL_NAME

    async def test_next_turn_after_finish(self, graph, thread, turn, scripted_model) -> None:
        """Test that an earlier finish call is answered in the next model input."""
        scripted_model.responses.extend(
            [
                AIMessage(content="", tool_calls=[_call(FINISH_TOOL_NAME, {}, "done-1")]),
                AIMessage(content="second"),
            ]
        )

        await graph.ainvoke(turn("First"), config=thread)
        await graph.ainvoke(turn("Second"), config=thread)

        second_input = scripted_model.calls[1]
        answered = [m for m in second_input if isinstance(m, ToolMessage)]
        assert [m.tool_call_id for m in answered] == ["done-1"]


class TestFailures:
    """Tests for fatal failures."""

    async def test_model_failure(self, graph, thread, turn, scripted_model) -> None:
        scripted_model.error = RuntimeError("rate limited")

        with pytest.raises(ModelInvocationError, match="rate limited"):
            await graph.ainvoke(turn("Summarize"), config=thread)

    async def test_unsupported_provider(self, context_provider, session_context, thread, fixed_clock) -> None:
        graph = build_workflow(WorkflowNodes(context_provider=context_provider, clock=fixed_clock))
        state = StateManager.create_turn_input(
            "hi", session_context, ModelSelection(provider="mistral", model="m", api_key="k")
        )

        with pytest.raises(ModelConfigurationError, match="Unsupported provider"):
            await graph.ainvoke(state, config=thread)

    async def test_missing_session_identifier(self, graph, thread) -> None:
        with pytest.raises(ConfigurationError, match="contact_id"):
            await graph.ainvoke(
                {
                    "messages": [HumanMessage(content="hi")],
                    "protocol_number": "P1",
                    "attendance_id": "A1",
                    "base_url": "https://platform.example",
                },
                config=thread,
            )


class TestCheckpoints:
    """Tests for checkpoint production during a turn."""

    async def test_checkpoints_form_a_chain(self, graph, thread, turn, scripted_model) -> None:
        """Test one checkpoint per node transition, linked newest to oldest."""
        scripted_model.responses.extend(
            [
                AIMessage(
                    content="",
                    tool_calls=[
                        _call(
                            LATEST_MESSAGES_TOOL,
                            {"session_id": "A1", "base_url": "https://platform.example"},
                            "c1",
                        )
                    ],
                ),
                AIMessage(content="one"),
                AIMessage(content="two"),
            ]
        )

        await graph.ainvoke(turn("First"), config=thread)
        await graph.ainvoke(turn("Second"), config=thread)

        history = [snapshot async for snapshot in graph.aget_state_history(thread)]
        # Per turn: the input, the start write, then one per node run.
        # First turn runs context_inject, agent, tools, agent; second turn context_inject, agent.
        assert len(history) == (2 + 4) + (2 + 2)
        assert [snapshot.metadata["step"] for snapshot in reversed(history)] == list(range(-1, 9))
        assert [snapshot.metadata["source"] for snapshot in history].count("input") == 2
        for newer, older in zip(history, history[1:]):
            assert newer.parent_config["configurable"]["checkpoint_id"] == older.config["configurable"]["checkpoint_id"]
        assert history[-1].parent_config is None


class TestDiagram:
    """Tests for the workflow diagram helpers."""

    def test_mermaid(self) -> None:
        diagram = get_workflow_mermaid()

        assert "stateDiagram-v2" in diagram
        assert "ContextInject --> AgentThink" in diagram

    def test_generate_saves_file(self, tmp_path: Path) -> None:
        output = tmp_path / "docs" / "workflow.md"

        diagram = generate_workflow_diagram(output)

        assert output.read_text(encoding="utf-8") == diagram
