"""Record types for the host platform's session and message listings.

The raw models mirror the JSON returned by the platform (field names must
match the API keys exactly); ProcessedMessage is the normalized form used
to build transcripts.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SpeakerRole(Enum):
    """Who authored a transcript message."""

    CUSTOMER = "customer"
    AGENT = "agent"
    SYSTEM = "system"


class RawMessage(BaseModel):
    """One message as returned by the platform."""

    model_config = ConfigDict(extra="ignore")

    bol_entrante: str = "0"
    bol_automatica: str | None = None
    dsc_msg: str = ""
    dat_msg: str | None = None
    dat_original: str | None = None

    @field_validator("bol_entrante", "bol_automatica", mode="before")
    @classmethod
    def _flag_to_str(cls, value: object) -> object:
        if isinstance(value, (bool, int)):
            return "1" if value else "0"
        return value

    @field_validator("dsc_msg", mode="before")
    @classmethod
    def _none_to_empty(cls, value: object) -> object:
        return "" if value is None else value


class RawSession(BaseModel):
    """One service session (atendimento) as returned by the platform."""

    model_config = ConfigDict(extra="ignore")

    num_protocolo: str | int | None = None
    cod_atendimento: str | int | None = None
    dat_atendimento: str | None = None
    msgs: list[RawMessage] = Field(default_factory=list)
    nom_contato: str | None = None
    nom_agente: str | None = None

    @field_validator("msgs", mode="before")
    @classmethod
    def _none_to_list(cls, value: object) -> object:
        return [] if value is None else value

    def matches_protocol(self, protocol_number: str) -> bool:
        """Check whether this session belongs to the given protocol."""
        return self.num_protocolo is not None and str(self.num_protocolo) == str(protocol_number)


@dataclass(frozen=True)
class ProcessedMessage:
    """A normalized transcript message.

    Attributes:
        role: Speaker classification.
        sender_name: Display name of the speaker.
        content: Raw message text (may contain HTML entities).
        timestamp: Timezone-aware time the message was originally sent.
    """

    role: SpeakerRole
    sender_name: str
    content: str
    timestamp: datetime
