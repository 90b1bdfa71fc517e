"""Async client for the host platform's session and message listings."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from omnimax_agent.context.records import RawMessage, RawSession

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "Accept": "application/json, text/javascript, */*; q=0.01",
    "X-Requested-With": "XMLHttpRequest",
}


class PlatformApiError(Exception):
    """Raised when the platform cannot be reached or returns an unusable payload."""

    pass


class PlatformClient:
    """Read-only access to the platform's listing endpoints.

    Both operations are idempotent. A payload with ``success != 1`` is an
    empty result; transport failures, HTTP error statuses and malformed
    payloads raise PlatformApiError.

    Example:
        >>> client = PlatformClient(timeout=10.0)
        >>> sessions = await client.get_sessions_by_contact("42", "https://host.example")
    """

    SESSIONS_PATH = "/Painel/atendimento/get-atendimentos/cod_contato/{contact_id}"
    MESSAGES_PATH = "/Painel/chat/getMensagens/cod_atendimento/{session_id}"

    def __init__(
        self,
        timeout: float = 30.0,
        page_size: int = 20,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            timeout: Per-request timeout in seconds.
            page_size: Number of sessions requested per contact listing.
            transport: Optional httpx transport (used by tests).
            headers: Extra headers sent with every request.
        """
        self.timeout = timeout
        self.page_size = page_size
        self._transport = transport
        self._headers = {**DEFAULT_HEADERS, **(headers or {})}

    async def _post(self, url: str, data: dict[str, str] | None = None) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers=self._headers,
            ) as client:
                response = await client.post(url, data=data)
                response.raise_for_status()
                payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise PlatformApiError(f"HTTP {exc.response.status_code} from {url}") from exc
        except httpx.HTTPError as exc:
            raise PlatformApiError(f"Request to {url} failed: {exc}") from exc
        except ValueError as exc:
            raise PlatformApiError(f"Invalid JSON from {url}: {exc}") from exc

        if not isinstance(payload, dict):
            raise PlatformApiError(f"Unexpected payload from {url}: expected a JSON object")
        return payload

    async def get_sessions_by_contact(self, contact_id: str, base_url: str) -> list[RawSession]:
        """Fetch the service sessions of a contact.

        Args:
            contact_id: The contact identifier (cod_contato).
            base_url: Origin of the platform.

        Returns:
            Raw sessions, possibly empty.
        """
        url = base_url.rstrip("/") + self.SESSIONS_PATH.format(contact_id=contact_id)
        payload = await self._post(url, data={"page": "1", "rows": str(self.page_size)})

        if payload.get("success") != 1 or not isinstance(payload.get("data"), list):
            logger.warning(f"Platform returned no sessions for contact {contact_id}")
            return []

        try:
            return [RawSession.model_validate(item) for item in payload["data"]]
        except ValidationError as exc:
            raise PlatformApiError(f"Malformed session record for contact {contact_id}: {exc}") from exc

    async def get_messages_by_session(self, session_id: str, base_url: str) -> list[RawMessage]:
        """Fetch all messages of one service session.

        Args:
            session_id: The session identifier (cod_atendimento).
            base_url: Origin of the platform.

        Returns:
            Raw messages, possibly empty.
        """
        url = base_url.rstrip("/") + self.MESSAGES_PATH.format(session_id=session_id)
        payload = await self._post(url)

        data = payload.get("data")
        if payload.get("success") != 1 or not isinstance(data, dict):
            logger.warning(f"Platform returned no messages for session {session_id}")
            return []

        try:
            return [RawMessage.model_validate(item) for item in data.get("msgs") or []]
        except ValidationError as exc:
            raise PlatformApiError(f"Malformed message record for session {session_id}: {exc}") from exc
