import logging

import httpx

from ..config import (
    GATEWAY_API_KEY,
    GATEWAY_CONNECT_TIMEOUT_SECS,
    GATEWAY_READ_TIMEOUT_SECS,
    GATEWAY_URL,
    MODEL,
)
from ..errors import CoachingError, GatewayError
from .prompts import build_gateway_payload
from .stream import StreamingResponseReader

logger = logging.getLogger(__name__)


class GatewayClient:
    """Owns the outbound HTTP connection pool to the LLM gateway."""

    def __init__(
        self,
        api_key: str = GATEWAY_API_KEY,
        url: str = GATEWAY_URL,
        model: str = MODEL,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._url = url
        self._model = model
        self._http = httpx.AsyncClient(
            timeout=httpx.Timeout(GATEWAY_READ_TIMEOUT_SECS, connect=GATEWAY_CONNECT_TIMEOUT_SECS),
            transport=transport,
        )

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
        }

    def _payload(self, messages: list[dict]) -> dict:
        return build_gateway_payload(messages, self._model)

    def reader(self) -> StreamingResponseReader:
        """A reader that talks to the gateway directly, system prompt included."""
        return StreamingResponseReader(
            self._http, self._url, headers=self._headers(), build_body=self._payload
        )

    async def open_stream(self, messages: list[dict]) -> httpx.Response:
        """Start a streamed completion and return the open upstream response.

        The caller owns the response and must close it.
        """
        if not self.configured:
            raise CoachingError("GATEWAY_API_KEY is not configured")

        logger.info("AI coaching request with %d messages", len(messages))
        request = self._http.build_request(
            "POST", self._url, json=self._payload(messages), headers=self._headers()
        )
        response = await self._http.send(request, stream=True)
        if not response.is_success:
            try:
                error_text = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            logger.error("AI gateway error: %s %s", response.status_code, error_text[:500])
            if response.status_code in (402, 429):
                raise GatewayError.from_status(response.status_code)
            raise GatewayError.from_status(
                response.status_code, f"AI gateway error: {response.status_code}"
            )
        return response

    async def close(self) -> None:
        await self._http.aclose()
