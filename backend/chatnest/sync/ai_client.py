"""Client for the HTTP-triggered ask-gpt function."""
import logging
from typing import Optional

import httpx

from chatnest.errors import AIReplyError

from .collaborators import CompletionClient

logger = logging.getLogger(__name__)


class AskGptClient(CompletionClient):
    """Calls ``POST {base_url}{endpoint_path}`` with ``{"message": ...}``.

    Non-2xx responses surface as ``AIReplyError`` carrying the body's
    ``error`` field (``"Unknown error"`` when absent).
    """

    def __init__(
        self,
        base_url: str,
        endpoint_path: str = "/functions/v1/ask-gpt",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 60.0,
    ) -> None:
        self.url = f"{base_url.rstrip('/')}{endpoint_path}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def ask(self, message: str, access_token: str) -> str:
        try:
            response = await self._client.post(
                self.url,
                json={"message": message},
                headers={"Authorization": f"Bearer {access_token}"},
            )
        except httpx.HTTPError as e:
            logger.error(f"ask-gpt request failed: {e}")
            raise AIReplyError(f"Could not reach AI: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}

        if not response.is_success:
            error = data.get("error") or "Unknown error"
            logger.warning("ask-gpt returned %s: %s", response.status_code, error)
            raise AIReplyError(error)

        reply = data.get("reply")
        if not isinstance(reply, str) or not reply:
            raise AIReplyError("AI returned no reply")
        return reply
