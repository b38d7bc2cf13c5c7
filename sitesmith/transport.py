import logging
from collections.abc import AsyncIterator
from typing import Protocol

import httpx

from sitesmith.errors import TransportError


logger = logging.getLogger("sitesmith.transport")

DEFAULT_ERROR = "Failed to generate website"


class GenerationTransport(Protocol):
    def stream(self, prompt: str) -> AsyncIterator[str]:
        """Start a generation run and yield raw text chunks of its event stream."""
        ...


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return DEFAULT_ERROR
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"] or DEFAULT_ERROR
    return DEFAULT_ERROR


class HttpGenerationTransport:
    """POSTs the prompt to the generation endpoint and streams the SSE body."""

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        self.url = url
        # Generation runs for minutes; only the connect phase is bounded by default
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout, connect=10.0)
        )

    async def stream(self, prompt: str) -> AsyncIterator[str]:
        async with self._client.stream(
            "POST", self.url, json={"prompt": prompt}
        ) as response:
            if response.status_code >= 400:
                await response.aread()
                message = _error_message(response)
                logger.warning(
                    "generation request failed status=%d error=%s",
                    response.status_code,
                    message,
                )
                raise TransportError(message)
            async for chunk in response.aiter_text():
                if chunk:
                    yield chunk

    async def aclose(self) -> None:
        await self._client.aclose()
