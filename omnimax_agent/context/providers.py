"""Context providers that turn platform transcripts into model-ready text.

Both providers are read-only on the platform. Failures never escape as
exceptions: they are returned as human-readable text so the assistant can
still acknowledge the user when a fetch goes wrong.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from omnimax_agent.context.formatters import (
    format_messages_for_llm,
    process_raw_messages,
    sort_chronologically,
    to_epoch_ms,
)
from omnimax_agent.context.platform_client import PlatformApiError, PlatformClient
from omnimax_agent.context.records import ProcessedMessage

logger = logging.getLogger(__name__)

NO_HISTORY_SENTINEL = "No service sessions found for protocol number {protocol_number}."
NO_NEW_MESSAGES_SENTINEL = "No new messages since the last check."


@dataclass(frozen=True)
class TranscriptResult:
    """Transcript text plus what it covered.

    Attributes:
        text: Rendered transcript, sentinel or error text.
        latest_timestamp: Newest message time in epoch ms, if any message was rendered.
        message_count: Number of messages rendered.
        failed: Whether the text describes a fetch failure.
    """

    text: str
    latest_timestamp: int | None = None
    message_count: int = 0
    failed: bool = False

    @property
    def has_new_messages(self) -> bool:
        return self.message_count > 0


def _render(messages: list[ProcessedMessage]) -> TranscriptResult:
    return TranscriptResult(
        text=format_messages_for_llm(messages),
        latest_timestamp=to_epoch_ms(messages[-1].timestamp),
        message_count=len(messages),
    )


class ContextProvider:
    """Fetches conversation transcripts from the host platform."""

    def __init__(self, client: PlatformClient | None = None) -> None:
        self.client = client or PlatformClient()

    async def fetch_full_history_result(
        self,
        contact_id: str,
        protocol_number: str,
        base_url: str,
    ) -> TranscriptResult:
        """Fetch every message of a protocol across all its sessions.

        Args:
            contact_id: The customer contact identifier.
            protocol_number: Protocol whose sessions are included.
            base_url: Origin of the platform.

        Returns:
            TranscriptResult with the merged chronological transcript, the
            no-history sentinel, or error text.
        """
        logger.info(f"Fetching full history for contact {contact_id}, protocol {protocol_number}")
        try:
            sessions = await self.client.get_sessions_by_contact(contact_id, base_url)
        except PlatformApiError as exc:
            logger.error(f"Full history fetch failed for protocol {protocol_number}: {exc}")
            return TranscriptResult(
                text=f"An error occurred while fetching the protocol history: {exc}",
                failed=True,
            )

        relevant = [session for session in sessions if session.matches_protocol(protocol_number)]
        if not relevant:
            return TranscriptResult(text=NO_HISTORY_SENTINEL.format(protocol_number=protocol_number))

        merged: list[ProcessedMessage] = []
        for session in relevant:
            merged.extend(process_raw_messages(session.msgs, session.nom_contato, session.nom_agente))

        ordered = sort_chronologically(merged)
        if not ordered:
            return TranscriptResult(text=format_messages_for_llm(ordered))
        return _render(ordered)

    async def fetch_incremental_result(
        self,
        session_id: str,
        base_url: str,
        since_timestamp: int | None = None,
    ) -> TranscriptResult:
        """Fetch messages of the active session newer than a watermark.

        Args:
            session_id: The active session identifier.
            base_url: Origin of the platform.
            since_timestamp: Epoch ms; only strictly newer messages are kept.

        Returns:
            TranscriptResult with the new messages, the no-new-messages
            sentinel, or error text.
        """
        logger.info(f"Fetching messages for session {session_id} since {since_timestamp}")
        try:
            raw_messages = await self.client.get_messages_by_session(session_id, base_url)
        except PlatformApiError as exc:
            logger.error(f"Incremental fetch failed for session {session_id}: {exc}")
            return TranscriptResult(
                text=f"An error occurred while fetching the latest messages: {exc}",
                failed=True,
            )

        messages = process_raw_messages(raw_messages)
        if since_timestamp is not None:
            messages = [m for m in messages if to_epoch_ms(m.timestamp) > since_timestamp]

        if not messages:
            return TranscriptResult(text=NO_NEW_MESSAGES_SENTINEL)
        return _render(messages)

    async def fetch_full_history(self, contact_id: str, protocol_number: str, base_url: str) -> str:
        """Transcript text for a whole protocol."""
        result = await self.fetch_full_history_result(contact_id, protocol_number, base_url)
        return result.text

    async def fetch_incremental(
        self,
        session_id: str,
        base_url: str,
        since_timestamp: int | None = None,
    ) -> str:
        """Transcript text for new messages of the active session."""
        result = await self.fetch_incremental_result(session_id, base_url, since_timestamp)
        return result.text
