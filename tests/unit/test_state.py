"""Unit tests for conversation state management.

Tests cover:
- Append-only message merge
- Session context validation and thread ids
- Thread identity validation
- Turn input construction
- Serialization/deserialization
"""

from __future__ import annotations

import json

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from pydantic import ValidationError

from omnimax_agent.orchestration.state import (
    TRANSIENT_CHANNELS,
    ModelSelection,
    SessionContext,
    StateManager,
    StateValidationError,
    StateValidator,
    append_messages,
)


@pytest.fixture
def session() -> SessionContext:
    return SessionContext(
        protocolNumber="P1",
        attendanceId="A1",
        contactId="C1",
        baseUrl="https://platform.example/",
    )


class TestAppendMessages:
    """Tests for the messages reducer."""

    def test_concatenates_in_order(self) -> None:
        """Test that right-hand messages follow left-hand ones."""
        left = [HumanMessage(content="a")]
        right = [AIMessage(content="b"), HumanMessage(content="c")]

        merged = append_messages(left, right)

        assert [m.content for m in merged] == ["a", "b", "c"]

    def test_single_message_is_accepted(self) -> None:
        """Test that a bare message is treated as a one-element list."""
        merged = append_messages([HumanMessage(content="a")], AIMessage(content="b"))

        assert [m.content for m in merged] == ["a", "b"]

    def test_does_not_deduplicate_by_id(self) -> None:
        """Test that messages sharing an id are both kept."""
        first = HumanMessage(content="a", id="same")
        second = HumanMessage(content="a again", id="same")

        merged = append_messages([first], [second])

        assert len(merged) == 2

    def test_inputs_are_not_mutated(self) -> None:
        """Test that the left list is not modified in place."""
        left = [HumanMessage(content="a")]
        append_messages(left, [AIMessage(content="b")])

        assert len(left) == 1

    def test_none_inputs(self) -> None:
        """Test merging with missing sides."""
        assert append_messages(None, None) == []
        assert len(append_messages(None, [HumanMessage(content="a")])) == 1


class TestSessionContext:
    """Tests for SessionContext validation."""

    def test_aliases_and_thread_id(self, session: SessionContext) -> None:
        """Test that camelCase payload keys populate the context."""
        assert session.protocol_number == "P1"
        assert session.thread_id == "P1:A1"

    def test_field_names_are_accepted(self) -> None:
        """Test populating by field name."""
        context = SessionContext(
            protocol_number="P2",
            attendance_id="A2",
            contact_id="C2",
            base_url="https://x.example",
        )

        assert context.thread_id == "P2:A2"

    def test_trailing_slash_stripped(self, session: SessionContext) -> None:
        """Test that the base URL is normalized."""
        assert session.base_url == "https://platform.example"

    def test_numeric_identifiers_are_coerced(self) -> None:
        """Test that numeric ids from JSON payloads become strings."""
        context = SessionContext(
            protocolNumber=2024001,
            attendanceId=77,
            contactId=5,
            baseUrl="https://x.example",
        )

        assert context.thread_id == "2024001:77"

    @pytest.mark.parametrize("field", ["protocolNumber", "attendanceId", "contactId", "baseUrl"])
    def test_blank_identifier_rejected(self, field: str) -> None:
        """Test that every identifier is required."""
        payload = {
            "protocolNumber": "P1",
            "attendanceId": "A1",
            "contactId": "C1",
            "baseUrl": "https://x.example",
        }
        payload[field] = "  "

        with pytest.raises(ValidationError):
            SessionContext(**payload)

    def test_context_is_frozen(self, session: SessionContext) -> None:
        """Test that the session context is immutable."""
        with pytest.raises(ValidationError):
            session.protocol_number = "P9"  # type: ignore[misc]


class TestStateValidator:
    """Tests for thread identity validation."""

    def test_no_previous_state(self) -> None:
        """Test that a fresh thread accepts any identifiers."""
        StateValidator.validate_session_identity(None, {"protocol_number": "P1"})

    def test_same_identifiers(self) -> None:
        """Test that unchanged identifiers pass."""
        state = {"protocol_number": "P1", "attendance_id": "A1", "contact_id": "C1"}

        StateValidator.validate_session_identity(state, dict(state))

    def test_changed_contact_rejected(self) -> None:
        """Test that changing an identifier raises."""
        previous = {"protocol_number": "P1", "attendance_id": "A1", "contact_id": "C1"}
        incoming = {"protocol_number": "P1", "attendance_id": "A1", "contact_id": "C2"}

        with pytest.raises(StateValidationError, match="contact_id"):
            StateValidator.validate_session_identity(previous, incoming)


class TestStateManager:
    """Tests for StateManager helpers."""

    def test_create_turn_input(self, session: SessionContext) -> None:
        """Test that turn input carries the query, persona and model fields."""
        selection = ModelSelection(provider="groq", model="llama", api_key="k")

        state = StateManager.create_turn_input(
            "status?",
            session,
            selection,
            system_prompt="Be brief.",
            available_tool_names=("a", "b"),
            persona_id="p1",
        )

        assert len(state["messages"]) == 1
        assert isinstance(state["messages"][0], HumanMessage)
        assert state["messages"][0].content == "status?"
        assert state["system_prompt"] == "Be brief."
        assert state["available_tool_names"] == ["a", "b"]
        assert state["persona_id"] == "p1"
        assert state["protocol_number"] == "P1"
        assert state["base_url"] == "https://platform.example"
        assert state["provider"] == "groq"
        assert state["api_key"] == "k"
        assert "last_processed_client_message_timestamp" not in state

    def test_extra_messages_precede_query(self, session: SessionContext) -> None:
        """Test that extra messages are placed before the utterance."""
        note = SystemMessage(content="persona changed")

        state = StateManager.create_turn_input(
            "hi",
            session,
            ModelSelection(provider="openai", model="m"),
            extra_messages=[note],
        )

        assert state["messages"][0] is note
        assert state["messages"][-1].content == "hi"

    def test_update_state_appends_messages(self) -> None:
        """Test that update_state appends rather than replaces messages."""
        state = {"messages": [HumanMessage(content="a")], "system_prompt": "x"}

        new_state = StateManager.update_state(
            state, {"messages": [AIMessage(content="b")], "system_prompt": "y"}
        )

        assert [m.content for m in new_state["messages"]] == ["a", "b"]
        assert new_state["system_prompt"] == "y"
        assert state["system_prompt"] == "x"
        assert len(state["messages"]) == 1

    def test_serialize_round_trip(self, session: SessionContext) -> None:
        """Test that roles, tool calls and tool-call ids survive serialization."""
        state = StateManager.create_turn_input(
            "hi", session, ModelSelection(provider="openai", model="m", api_key="secret")
        )
        state = StateManager.update_state(
            state,
            {
                "messages": [
                    AIMessage(
                        content="",
                        tool_calls=[{"name": "lookup", "args": {"q": 1}, "id": "call-1"}],
                    ),
                    ToolMessage(content="result", tool_call_id="call-1", name="lookup"),
                ],
                "last_processed_client_message_timestamp": 1714557600000,
            },
        )

        restored = StateManager.deserialize_state(StateManager.serialize_state(state))

        assert [type(m) for m in restored["messages"]] == [HumanMessage, AIMessage, ToolMessage]
        assert restored["messages"][1].tool_calls[0]["id"] == "call-1"
        assert restored["messages"][1].tool_calls[0]["args"] == {"q": 1}
        assert restored["messages"][2].tool_call_id == "call-1"
        assert restored["last_processed_client_message_timestamp"] == 1714557600000

    def test_serialize_drops_transient_channels(self, session: SessionContext) -> None:
        """Test that credentials are never serialized."""
        state = StateManager.create_turn_input(
            "hi", session, ModelSelection(provider="openai", model="m", api_key="secret")
        )

        data = json.loads(StateManager.serialize_state(state))

        for channel in TRANSIENT_CHANNELS:
            assert channel not in data
        assert "secret" not in StateManager.serialize_state(state)

    def test_deserialize_invalid_json(self) -> None:
        """Test that invalid JSON raises ValueError."""
        with pytest.raises(ValueError, match="Invalid JSON"):
            StateManager.deserialize_state("{not json")

    def test_deserialize_non_object(self) -> None:
        """Test that a JSON array is rejected."""
        with pytest.raises(ValueError, match="JSON object"):
            StateManager.deserialize_state("[]")
