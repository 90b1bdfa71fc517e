"""Utility functions for turning platform records into transcript text."""

from __future__ import annotations

import html
import logging
from datetime import datetime, timezone
from typing import Iterable, Sequence

from omnimax_agent.context.records import ProcessedMessage, RawMessage, SpeakerRole

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

DISPLAY_TIMESTAMP_FORMAT = "%d/%m/%Y %H:%M:%S"

_SENDER_FALLBACK = {
    SpeakerRole.CUSTOMER: "Customer",
    SpeakerRole.AGENT: "Agent",
    SpeakerRole.SYSTEM: "System",
}


def classify_role(raw: RawMessage) -> SpeakerRole:
    """Classify the speaker of a raw message from its flags."""
    if raw.bol_automatica == "1":
        return SpeakerRole.SYSTEM
    if raw.bol_entrante == "1":
        return SpeakerRole.CUSTOMER
    return SpeakerRole.AGENT


def _parse_naive_or_aware(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return datetime.strptime(value, DISPLAY_TIMESTAMP_FORMAT)


def parse_timestamp(value: str | None) -> datetime:
    """Parse a platform timestamp into an aware datetime.

    Accepts ISO-8601 and the console's ``DD/MM/YYYY HH:MM:SS`` display form.
    Naive values are platform local time and get the local zone attached.
    Missing or unparseable values map to the epoch so they sort first.
    """
    if not value:
        return EPOCH
    try:
        parsed = _parse_naive_or_aware(value.strip())
    except ValueError:
        logger.warning(f"Unparseable message timestamp: {value!r}")
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.astimezone()
    return parsed


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(value.timestamp() * 1000)


def process_raw_messages(
    raw_messages: Iterable[RawMessage],
    contact_name: str | None = None,
    agent_name: str | None = None,
) -> list[ProcessedMessage]:
    """Normalize raw messages and sort them chronologically.

    The sort is stable, so messages sharing a timestamp keep their original
    record order.

    Args:
        raw_messages: Messages as returned by the platform.
        contact_name: Display name for customer messages.
        agent_name: Display name for agent messages.

    Returns:
        Processed messages ordered by timestamp.
    """
    names = {
        SpeakerRole.CUSTOMER: contact_name or _SENDER_FALLBACK[SpeakerRole.CUSTOMER],
        SpeakerRole.AGENT: agent_name or _SENDER_FALLBACK[SpeakerRole.AGENT],
        SpeakerRole.SYSTEM: _SENDER_FALLBACK[SpeakerRole.SYSTEM],
    }

    processed: list[ProcessedMessage] = []
    for raw in raw_messages:
        role = classify_role(raw)
        processed.append(
            ProcessedMessage(
                role=role,
                sender_name=names[role],
                content=raw.dsc_msg,
                timestamp=parse_timestamp(raw.dat_original or raw.dat_msg),
            )
        )
    return sort_chronologically(processed)


def sort_chronologically(messages: Iterable[ProcessedMessage]) -> list[ProcessedMessage]:
    """Stable sort by timestamp."""
    return sorted(messages, key=lambda message: message.timestamp)


def format_timestamp(value: datetime) -> str:
    """Render a timestamp in its own zone, in the directive's clock format."""
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def format_messages_for_llm(messages: Sequence[ProcessedMessage]) -> str:
    """Render processed messages as a transcript block for the model."""
    if not messages:
        return "No messages found."

    turns = [
        f"{message.sender_name} ({message.role.value.capitalize()}) at "
        f"{format_timestamp(message.timestamp)}:\n{html.unescape(message.content)}"
        for message in messages
    ]
    return "Conversation History:\n" + "\n---\n".join(turns)
