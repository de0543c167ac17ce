from __future__ import annotations

from enum import Enum
from typing import Protocol

import httpx

from repost_guard.core.errors import OracleUnavailable
from repost_guard.schemas.records import MessageRef


class MessageExistence(str, Enum):
    EXISTS = "exists"
    ABSENT = "absent"


class MessageExistenceOracle(Protocol):
    async def fetch_message(self, message_ref: MessageRef) -> MessageExistence:
        """Return whether the referenced message still exists.

        Raises:
            OracleUnavailable: the check could not complete.
        """
        ...


class HttpMessageOracle:
    """Existence checks against the chat platform's REST API.

    200 means the message exists and 404 means it is gone; any other status,
    transport error or timeout is reported as ``OracleUnavailable``.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout_seconds: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.headers = {"User-Agent": "repost-guard/1.0"}
        if token:
            self.headers["Authorization"] = f"Bot {token}"
        self._client = client

    async def fetch_message(self, message_ref: MessageRef) -> MessageExistence:
        url = f"{self.base_url}/channels/{message_ref.location_id}/messages/{message_ref.message_id}"
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=self.headers, timeout=self.timeout_seconds)
            else:
                async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                    response = await client.get(url, headers=self.headers)
        except httpx.HTTPError as exc:
            raise OracleUnavailable(f"message lookup for {message_ref.message_id} failed: {exc!r}") from exc

        if response.status_code == 200:
            return MessageExistence.EXISTS
        if response.status_code == 404:
            return MessageExistence.ABSENT
        raise OracleUnavailable(
            f"message lookup for {message_ref.message_id} returned status {response.status_code}"
        )
