"""Read-only adapters from the host platform's transcripts to model context."""

from omnimax_agent.context.formatters import (
    classify_role,
    format_messages_for_llm,
    process_raw_messages,
    to_epoch_ms,
)
from omnimax_agent.context.platform_client import PlatformApiError, PlatformClient
from omnimax_agent.context.providers import (
    NO_HISTORY_SENTINEL,
    NO_NEW_MESSAGES_SENTINEL,
    ContextProvider,
    TranscriptResult,
)
from omnimax_agent.context.records import (
    ProcessedMessage,
    RawMessage,
    RawSession,
    SpeakerRole,
)

__all__ = [
    "ContextProvider",
    "NO_HISTORY_SENTINEL",
    "NO_NEW_MESSAGES_SENTINEL",
    "PlatformApiError",
    "PlatformClient",
    "ProcessedMessage",
    "RawMessage",
    "RawSession",
    "SpeakerRole",
    "TranscriptResult",
    "classify_role",
    "format_messages_for_llm",
    "process_raw_messages",
    "to_epoch_ms",
]
