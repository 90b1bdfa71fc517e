"""Shared fixtures: a scripted chat model and an in-memory host platform."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable

import httpx
import pytest
from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage
from langchain_core.outputs import ChatGeneration, ChatResult
from pydantic import Field

from omnimax_agent.config.settings import Persona
from omnimax_agent.context.platform_client import PlatformClient
from omnimax_agent.context.providers import ContextProvider
from omnimax_agent.orchestration.state import ModelSelection, SessionContext
from omnimax_agent.tools.context_tools import LATEST_MESSAGES_TOOL, PROTOCOL_HISTORY_TOOL

BASE_URL = "https://platform.example"
FIXED_NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class ScriptedChatModel(BaseChatModel):
    """Chat model that replays scripted replies and records its inputs."""

    responses: list[Any] = Field(default_factory=list)
    calls: list[list[BaseMessage]] = Field(default_factory=list)
    bound_tools: list[str] = Field(default_factory=list)
    error: Any = None

    @property
    def _llm_type(self) -> str:
        return "scripted"

    def bind_tools(self, tools: Any, **kwargs: Any) -> "ScriptedChatModel":
        self.bound_tools = [tool.name for tool in tools]
        return self

    def _generate(
        self,
        messages: list[BaseMessage],
        stop: list[str] | None = None,
        run_manager: Any = None,
        **kwargs: Any,
    ) -> ChatResult:
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        reply = self.responses.pop(0) if self.responses else AIMessage(content="(no scripted reply)")
        return ChatResult(generations=[ChatGeneration(message=reply)])


class FakePlatform:
    """In-memory host platform served through httpx.MockTransport."""

    def __init__(self) -> None:
        self.sessions: list[dict[str, Any]] = []
        self.requests: list[httpx.Request] = []
        self.status_code = 200

    def add_session(
        self,
        protocol_number: str,
        attendance_id: str,
        contact_name: str = "Maria",
        agent_name: str = "Joao",
    ) -> dict[str, Any]:
        session = {
            "num_protocolo": protocol_number,
            "cod_atendimento": attendance_id,
            "nom_contato": contact_name,
            "nom_agente": agent_name,
            "msgs": [],
        }
        self.sessions.append(session)
        return session

    def add_message(
        self,
        attendance_id: str,
        text: str,
        at: str,
        inbound: bool = True,
        automatic: bool = False,
    ) -> None:
        for session in self.sessions:
            if str(session["cod_atendimento"]) == attendance_id:
                session["msgs"].append(
                    {
                        "bol_entrante": "1" if inbound else "0",
                        "bol_automatica": "1" if automatic else "0",
                        "dsc_msg": text,
                        "dat_msg": at,
                        "dat_original": at,
                    }
                )
                return
        raise KeyError(attendance_id)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.status_code != 200:
            return httpx.Response(self.status_code)

        path = request.url.path
        if "/get-atendimentos/cod_contato/" in path:
            return httpx.Response(200, json={"success": 1, "data": self.sessions})
        if "/getMensagens/cod_atendimento/" in path:
            attendance_id = path.rsplit("/", 1)[-1]
            for session in self.sessions:
                if str(session["cod_atendimento"]) == attendance_id:
                    return httpx.Response(200, json={"success": 1, "data": {"msgs": session["msgs"]}})
            return httpx.Response(200, json={"success": 0, "data": None})
        return httpx.Response(404)

    def client(self) -> PlatformClient:
        return PlatformClient(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def platform() -> FakePlatform:
    """Platform with one session of protocol P1 holding two messages."""
    fake = FakePlatform()
    fake.add_session("P1", "A1")
    fake.add_message("A1", "Hello, my order is late", "2024-05-01T10:00:00Z")
    fake.add_message("A1", "Let me check that for you", "2024-05-01T10:01:00Z", inbound=False)
    return fake


@pytest.fixture
def context_provider(platform: FakePlatform) -> ContextProvider:
    return ContextProvider(platform.client())


@pytest.fixture
def session_context() -> SessionContext:
    return SessionContext(
        protocolNumber="P1",
        attendanceId="A1",
        contactId="C1",
        baseUrl=BASE_URL,
    )


@pytest.fixture
def selection() -> ModelSelection:
    return ModelSelection(provider="openai", model="test-model", api_key="sk-secret")


@pytest.fixture
def persona() -> Persona:
    return Persona(
        id="summarizer",
        name="Summarizer",
        prompt="You summarize service sessions.",
        tool_names=[PROTOCOL_HISTORY_TOOL, LATEST_MESSAGES_TOOL],
    )


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def scripted_model() -> ScriptedChatModel:
    return ScriptedChatModel()
