"""LangGraph State Schema and State Management Utilities.

This module defines the conversation state threaded through every node of the
assistant workflow, the append-only merge used for its message history, and
the helpers that build per-turn input and serialize state for storage.
"""

from __future__ import annotations

import copy
import json
from typing import Annotated, Any, Sequence, TypedDict

from langchain_core.messages import (
    BaseMessage,
    HumanMessage,
    messages_from_dict,
    messages_to_dict,
)
from pydantic import BaseModel, ConfigDict, Field, field_validator


# Fields that are supplied fresh on every invocation and never written to
# durable checkpoints.
TRANSIENT_CHANNELS: tuple[str, ...] = ("api_key",)

# Session identifiers that must stay constant for the life of a thread.
IDENTITY_FIELDS: tuple[str, ...] = ("protocol_number", "attendance_id", "contact_id")


class StateValidationError(Exception):
    """Raised when state or session identifiers are invalid."""

    pass


def append_messages(
    left: Sequence[BaseMessage] | None,
    right: Sequence[BaseMessage] | BaseMessage | None,
) -> list[BaseMessage]:
    """Merge two message sequences by concatenation.

    Order is preserved and messages sharing an id are kept as-is; callers are
    responsible for not resubmitting the same message.

    Args:
        left: Messages already in state.
        right: Messages produced by a node or supplied as input.

    Returns:
        A new list containing ``left`` followed by ``right``.
    """
    merged = list(left or [])
    if right is None:
        return merged
    if isinstance(right, BaseMessage):
        merged.append(right)
    else:
        merged.extend(right)
    return merged


class ConversationState(TypedDict, total=False):
    """LangGraph state schema for one assistant thread.

    Attributes:
        messages: Ordered conversation turns (append-only merge).
        system_prompt: Prompt of the active persona.
        available_tool_names: Tool names the active persona may use.
        protocol_number: Protocol the thread belongs to.
        attendance_id: Active service session (cod_atendimento).
        contact_id: Customer contact identifier.
        base_url: Origin of the host platform.
        last_processed_client_message_timestamp: Watermark in epoch ms.
        provider: Model back-end identifier.
        model: Model name for the back-end.
        api_key: Credential for the back-end (never checkpointed).
        model_base_url: Optional endpoint override for the back-end.
        persona_id: Identity of the active persona.
    """

    messages: Annotated[list[BaseMessage], append_messages]

    # Persona configuration (fresh every invocation)
    system_prompt: str
    available_tool_names: list[str]
    persona_id: str | None

    # Session identifiers (constant per thread)
    protocol_number: str
    attendance_id: str
    contact_id: str
    base_url: str

    # Context watermark
    last_processed_client_message_timestamp: int | None

    # Model selection (fresh every invocation)
    provider: str
    model: str
    api_key: str | None
    model_base_url: str | None


class SessionContext(BaseModel):
    """Identifiers of the customer session the assistant is embedded in."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    protocol_number: str = Field(..., alias="protocolNumber")
    attendance_id: str = Field(..., alias="attendanceId")
    contact_id: str = Field(..., alias="contactId")
    base_url: str = Field(..., alias="baseUrl")

    @field_validator("protocol_number", "attendance_id", "contact_id", "base_url", mode="before")
    @classmethod
    def _require_value(cls, value: Any) -> str:
        if value is None or not str(value).strip():
            raise ValueError("session identifier cannot be empty")
        return str(value).strip()

    @field_validator("base_url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def thread_id(self) -> str:
        """Thread identifier derived from protocol and active session."""
        return f"{self.protocol_number}:{self.attendance_id}"


class ModelSelection(BaseModel):
    """Per-invocation model back-end parameters."""

    model_config = ConfigDict(frozen=True)

    provider: str
    model: str
    api_key: str | None = None
    base_url: str | None = None


class StateValidator:
    """Validates thread invariants across invocations."""

    @staticmethod
    def validate_session_identity(
        previous: ConversationState | dict[str, Any] | None,
        incoming: ConversationState | dict[str, Any],
    ) -> None:
        """Ensure session identifiers did not change within a thread.

        Args:
            previous: State restored from the last checkpoint, if any.
            incoming: The per-turn input about to be merged.

        Raises:
            StateValidationError: If any identifier differs.
        """
        if not previous:
            return

        changed = [
            name
            for name in IDENTITY_FIELDS
            if previous.get(name) and incoming.get(name) and previous.get(name) != incoming.get(name)
        ]
        if changed:
            raise StateValidationError(
                f"Session identifiers cannot change within a thread: {', '.join(changed)}"
            )


class StateManager:
    """Builds, updates and serializes conversation state.

    Example:
        >>> session = SessionContext(
        ...     protocolNumber="P1", attendanceId="A1", contactId="C1",
        ...     baseUrl="https://host.example")
        >>> turn = StateManager.create_turn_input(
        ...     "status?", session, ModelSelection(provider="openai", model="gpt-4o"))
        >>> turn["messages"][0].content
        'status?'
    """

    @staticmethod
    def create_turn_input(
        query: str,
        session: SessionContext,
        selection: ModelSelection,
        system_prompt: str = "",
        available_tool_names: Sequence[str] = (),
        persona_id: str | None = None,
        extra_messages: Sequence[BaseMessage] = (),
    ) -> ConversationState:
        """Create the partial state submitted for one turn.

        Args:
            query: The new user utterance.
            session: Session identifiers of the thread.
            selection: Model back-end parameters for this turn.
            system_prompt: Prompt of the active persona.
            available_tool_names: Tools the persona may use.
            persona_id: Identity of the active persona.
            extra_messages: Messages placed before the utterance.

        Returns:
            A ConversationState holding only this turn's contributions.
        """
        return ConversationState(
            messages=[*extra_messages, HumanMessage(content=query)],
            system_prompt=system_prompt,
            available_tool_names=list(available_tool_names),
            persona_id=persona_id,
            protocol_number=session.protocol_number,
            attendance_id=session.attendance_id,
            contact_id=session.contact_id,
            base_url=session.base_url,
            provider=selection.provider,
            model=selection.model,
            api_key=selection.api_key,
            model_base_url=selection.base_url,
        )

    @staticmethod
    def update_state(state: ConversationState, updates: dict[str, Any]) -> ConversationState:
        """Create a new state with updated values (immutable update).

        ``messages`` in ``updates`` are appended rather than replaced.
        """
        new_state = dict(state)
        for key, value in updates.items():
            if key == "messages":
                new_state[key] = append_messages(state.get("messages"), value)
            else:
                new_state[key] = copy.deepcopy(value) if isinstance(value, (list, dict)) else value
        return ConversationState(**new_state)  # type: ignore[typeddict-item]

    @staticmethod
    def serialize_state(state: ConversationState | dict[str, Any]) -> str:
        """Serialize state to a JSON string.

        Transient channels are omitted.
        """
        data = {k: v for k, v in dict(state).items() if k not in TRANSIENT_CHANNELS}
        data["messages"] = messages_to_dict(list(state.get("messages", [])))
        return json.dumps(data, indent=2, default=str)

    @staticmethod
    def deserialize_state(json_str: str) -> ConversationState:
        """Deserialize state from a JSON string.

        Raises:
            ValueError: If the JSON is invalid or not an object.
        """
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ValueError("State must be a JSON object")

        data["messages"] = messages_from_dict(data.get("messages", []))
        return ConversationState(**data)  # type: ignore[typeddict-item]
