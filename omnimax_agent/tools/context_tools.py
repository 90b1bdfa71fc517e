"""Transcript tools the model can call on demand.

These expose the two context providers directly to the model, so a persona
can re-read the whole protocol or poll the active session mid-turn.
"""

from __future__ import annotations

from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field

from omnimax_agent.context.providers import ContextProvider

PROTOCOL_HISTORY_TOOL = "get_entire_protocol_history"
LATEST_MESSAGES_TOOL = "get_latest_messages_from_session"


class EntireProtocolArgs(BaseModel):
    contact_id: str = Field(..., description="The unique ID of the customer contact.")
    protocol_number: str = Field(
        ..., description="The main protocol number to get the complete history for."
    )
    base_url: str = Field(..., description="The base URL of the service platform.")


class LatestMessagesArgs(BaseModel):
    session_id: str = Field(
        ..., description="The unique ID of the CURRENT, ACTIVE service session (attendance id)."
    )
    base_url: str = Field(..., description="The base URL of the service platform.")
    since_timestamp: int | None = Field(
        default=None,
        description="Optional Unix timestamp in milliseconds; only messages after it are returned.",
    )


def create_context_tools(provider: ContextProvider) -> list[BaseTool]:
    """Build the protocol-history and latest-messages tools over a provider."""

    async def get_entire_protocol_history(contact_id: str, protocol_number: str, base_url: str) -> str:
        return await provider.fetch_full_history(contact_id, protocol_number, base_url)

    async def get_latest_messages_from_session(
        session_id: str,
        base_url: str,
        since_timestamp: int | None = None,
    ) -> str:
        return await provider.fetch_incremental(session_id, base_url, since_timestamp)

    return [
        StructuredTool.from_function(
            coroutine=get_entire_protocol_history,
            name=PROTOCOL_HISTORY_TOOL,
            description=(
                "Fetches the complete and unified history of all conversations belonging to a "
                "single protocol number. Use this for comprehensive summaries or to understand "
                "the customer's full journey for a specific issue."
            ),
            args_schema=EntireProtocolArgs,
        ),
        StructuredTool.from_function(
            coroutine=get_latest_messages_from_session,
            name=LATEST_MESSAGES_TOOL,
            description=(
                "Fetches recent messages from the single, currently active chat session. Use this "
                "to get the latest context for real-time questions."
            ),
            args_schema=LatestMessagesArgs,
        ),
    ]
