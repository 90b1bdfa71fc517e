"""Orchestrator for managing LangGraph execution of assistant turns.

This module provides the Orchestrator, which runs one turn of a session
thread through the workflow and owns the checkpointer, and the
AssistantService entrypoint, which resolves personas and model settings and
renders fatal errors as a textual reply.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage
from langgraph.checkpoint.base import BaseCheckpointSaver
from langgraph.checkpoint.memory import MemorySaver
from langgraph.errors import GraphRecursionError
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from omnimax_agent.config.settings import AssistantSettings, Persona, load_settings
from omnimax_agent.context.platform_client import PlatformClient
from omnimax_agent.context.providers import ContextProvider
from omnimax_agent.orchestration.errors import OrchestratorError, ThreadIdentityError
from omnimax_agent.orchestration.sqlite_checkpointer import LocalSqliteSaver
from omnimax_agent.orchestration.state import (
    ConversationState,
    ModelSelection,
    SessionContext,
    StateManager,
    StateValidationError,
    StateValidator,
)
from omnimax_agent.orchestration.workflow import WorkflowNodes, build_workflow, message_text
from omnimax_agent.tools import build_default_registry
from omnimax_agent.tools.registry import ToolKind

logger = logging.getLogger(__name__)

PERSONA_SWITCH_MESSAGE_NAME = "persona_switch"


@dataclass
class OrchestratorConfig:
    """Configuration for the Orchestrator.

    Attributes:
        db_path: Path to SQLite database for checkpoints.
        use_sqlite_checkpointer: Whether to persist checkpoints in SQLite.
        recursion_limit: Maximum graph steps per turn.
        max_retries: Retries delegated to the model back-end client.
    """

    db_path: Path = field(
        default_factory=lambda: Path(os.getenv("OMNIMAX_DB_PATH", "data/omnimax_checkpoints.db"))
    )
    use_sqlite_checkpointer: bool = True
    recursion_limit: int = 25
    max_retries: int = 0

    @classmethod
    def from_settings(cls, settings: AssistantSettings) -> "OrchestratorConfig":
        return cls(
            db_path=settings.storage.db_path,
            use_sqlite_checkpointer=settings.storage.use_sqlite,
            recursion_limit=settings.storage.recursion_limit,
            max_retries=settings.model.max_retries,
        )


@dataclass(frozen=True)
class CheckpointSummary:
    """One entry of a thread's checkpoint history.

    Attributes:
        checkpoint_id: Identifier of the checkpoint.
        parent_checkpoint_id: Checkpoint this one was derived from.
        step: Graph step recorded in the checkpoint metadata.
        source: What produced the checkpoint ("input", "loop", ...).
        message_count: Number of messages in the checkpointed state.
        created_at: Timestamp recorded by LangGraph.
        next_nodes: Nodes scheduled to run after this checkpoint.
    """

    checkpoint_id: str
    parent_checkpoint_id: str | None
    step: int | None
    source: str | None
    message_count: int
    created_at: str | None
    next_nodes: tuple[str, ...] = ()


class Orchestrator:
    """Runs assistant turns for session threads.

    Example:
        >>> orchestrator = Orchestrator(OrchestratorConfig(use_sqlite_checkpointer=False))
        >>> reply = await orchestrator.run_turn("Summarize", persona, session, selection)
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        nodes: WorkflowNodes | None = None,
        checkpointer: BaseCheckpointSaver | None = None,
    ) -> None:
        """Initialize the Orchestrator.

        Args:
            config: Configuration options. Defaults to OrchestratorConfig().
            nodes: Workflow nodes; defaults to the platform-backed nodes.
            checkpointer: Explicit checkpointer, overriding the config.
        """
        self.config = config or OrchestratorConfig()
        self._workflow_nodes = nodes or WorkflowNodes(max_retries=self.config.max_retries)

        if checkpointer is not None:
            self._checkpointer = checkpointer
        elif self.config.use_sqlite_checkpointer:
            self._checkpointer = LocalSqliteSaver(self.config.db_path)
            logger.info(f"Using SQLite checkpointer at {self.config.db_path}")
        else:
            self._checkpointer = MemorySaver()

        self._graph = build_workflow(
            nodes=self._workflow_nodes,
            checkpointer=self._checkpointer,
        )

    @property
    def checkpointer(self) -> BaseCheckpointSaver:
        return self._checkpointer

    def _thread_config(self, thread_id: str) -> dict[str, Any]:
        return {
            "configurable": {"thread_id": thread_id},
            "recursion_limit": self.config.recursion_limit,
        }

    async def _load_previous_state(self, thread_config: dict[str, Any]) -> ConversationState | None:
        # Checkpointer read failures degrade to an empty thread inside the saver.
        snapshot = await self._graph.aget_state(thread_config)
        return snapshot.values or None  # type: ignore[return-value]

    async def run_turn(
        self,
        query: str,
        persona: Persona,
        session: SessionContext,
        selection: ModelSelection,
    ) -> str:
        """Run one user turn to completion.

        Args:
            query: The attendant's utterance.
            persona: Active persona (prompt and permitted tools).
            session: Session identifiers; they determine the thread.
            selection: Model back-end for this turn.

        Returns:
            The final assistant text.

        Raises:
            ConfigurationError: Invalid configuration or session identifiers.
            CheckpointWriteError: State of the turn could not be persisted.
            ModelInvocationError: The model back-end failed.
            OrchestratorError: Any other failure that aborted the turn.
        """
        thread_config = self._thread_config(session.thread_id)
        previous = await self._load_previous_state(thread_config)

        extra_messages: list[BaseMessage] = []
        if previous and previous.get("persona_id") and previous.get("persona_id") != persona.id:
            logger.info(f"Persona switched on thread {session.thread_id} to {persona.id}")
            extra_messages.append(
                SystemMessage(
                    content=(
                        f"The active persona changed to {persona.name} ({persona.id}). "
                        "Follow its instructions from now on."
                    ),
                    name=PERSONA_SWITCH_MESSAGE_NAME,
                )
            )

        turn_input = StateManager.create_turn_input(
            query,
            session,
            selection,
            system_prompt=persona.prompt,
            available_tool_names=persona.tool_names,
            persona_id=persona.id,
            extra_messages=extra_messages,
        )

        try:
            StateValidator.validate_session_identity(previous, turn_input)
        except StateValidationError as e:
            raise ThreadIdentityError(str(e)) from e

        logger.info(f"Running turn on thread {session.thread_id} with persona {persona.id}")

        try:
            result = await self._graph.ainvoke(turn_input, config=thread_config)
        except OrchestratorError:
            raise
        except GraphRecursionError as e:
            raise OrchestratorError(
                f"Turn exceeded {self.config.recursion_limit} steps without finishing"
            ) from e
        except Exception as e:
            logger.error(f"Turn on thread {session.thread_id} failed: {e}")
            raise OrchestratorError(f"Turn failed: {e}") from e

        return self._final_text(result.get("messages", []))

    def _final_text(self, messages: list[BaseMessage]) -> str:
        """Text of the last assistant message, else its finish-tool answer."""
        for message in reversed(messages):
            if not isinstance(message, AIMessage):
                continue
            text = message_text(message).strip()
            if text:
                return text
            for call in message.tool_calls:
                if self._workflow_nodes.tool_registry.classify(call["name"]) is ToolKind.TERMINAL:
                    answer = (call.get("args") or {}).get("answer")
                    if answer:
                        return str(answer)
            return ""
        return ""

    async def get_history(self, thread_id: str, limit: int | None = None) -> list[CheckpointSummary]:
        """List checkpoints of a thread, newest first.

        Args:
            thread_id: The thread identifier ("{protocol}:{attendance}").
            limit: Maximum number of entries.

        Returns:
            Checkpoint summaries, newest first.
        """
        history: list[CheckpointSummary] = []
        async for snapshot in self._graph.aget_state_history(
            {"configurable": {"thread_id": thread_id}}, limit=limit
        ):
            parent = (snapshot.parent_config or {}).get("configurable", {})
            metadata = snapshot.metadata or {}
            history.append(
                CheckpointSummary(
                    checkpoint_id=snapshot.config["configurable"]["checkpoint_id"],
                    parent_checkpoint_id=parent.get("checkpoint_id"),
                    step=metadata.get("step"),
                    source=metadata.get("source"),
                    message_count=len(snapshot.values.get("messages", [])),
                    created_at=snapshot.created_at,
                    next_nodes=tuple(snapshot.next),
                )
            )
        return history

    async def clear_thread(self, thread_id: str) -> None:
        """Delete every checkpoint of a thread."""
        logger.info(f"Deleting checkpoints of thread {thread_id}")
        await self._checkpointer.adelete_thread(thread_id)


class InvokeRequest(BaseModel):
    """Payload of one assistant invocation."""

    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(..., min_length=1)
    persona_id: str | None = Field(None, alias="personaId")
    session_context: SessionContext = Field(..., alias="sessionContext")


def render_error_block(error: BaseException) -> str:
    """Render a fatal failure as the reply text shown to the attendant."""
    return f"**Error** ({type(error).__name__})\n\n{error}"


class AssistantService:
    """Invocation entrypoint: request in, reply text out.

    Fatal failures never escape ``handle``; they come back as an error block.
    """

    def __init__(
        self,
        settings: AssistantSettings | None = None,
        orchestrator: Orchestrator | None = None,
    ) -> None:
        self.settings = settings or load_settings()
        if orchestrator is None:
            client = PlatformClient(
                timeout=self.settings.http.timeout,
                page_size=self.settings.http.page_size,
            )
            provider = ContextProvider(client)
            config = OrchestratorConfig.from_settings(self.settings)
            nodes = WorkflowNodes(
                context_provider=provider,
                tool_registry=build_default_registry(provider),
                max_retries=config.max_retries,
            )
            orchestrator = Orchestrator(config, nodes=nodes)
        self.orchestrator = orchestrator

    async def handle(self, request: InvokeRequest | Mapping[str, Any]) -> str:
        """Answer one invocation.

        Args:
            request: An InvokeRequest or its JSON-shaped mapping.

        Returns:
            The assistant reply, or an error block on fatal failure.
        """
        try:
            if not isinstance(request, InvokeRequest):
                request = InvokeRequest.model_validate(request)
        except ValidationError as e:
            logger.error(f"Invalid invocation payload: {e}")
            return render_error_block(e)

        persona = self.settings.resolve_persona(request.persona_id)
        selection = self.settings.model.to_selection()

        try:
            return await self.orchestrator.run_turn(
                request.query,
                persona,
                request.session_context,
                selection,
            )
        except OrchestratorError as e:
            logger.error(f"Invocation for {request.session_context.thread_id} failed: {e}")
            return render_error_block(e)
