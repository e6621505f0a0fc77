import codecs
import json
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum

import httpx

from ..errors import GatewayError, StreamError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_MARKER = "[DONE]"


class FrameKind(str, Enum):
    DATA = "data"
    DONE = "done"
    IGNORED = "ignored"


@dataclass
class Frame:
    kind: FrameKind
    payload: str = ""


def classify_line(line: str) -> Frame:
    """Classify one stripped line of an event-stream body."""
    if not line.startswith(DATA_PREFIX):
        # blank separators, ":" keep-alive comments, event:/id:/retry: fields
        return Frame(FrameKind.IGNORED)
    payload = line[len(DATA_PREFIX) :].strip()
    if payload == DONE_MARKER:
        return Frame(FrameKind.DONE)
    return Frame(FrameKind.DATA, payload)


def extract_delta(parsed) -> str | None:
    """Pull choices[0].delta.content out of a chat-completion chunk."""
    if not isinstance(parsed, dict):
        return None
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class FrameDecoder:
    """Incrementally turn response bytes into content deltas.

    Network reads do not line up with frame boundaries, so bytes are decoded
    with an incremental UTF-8 decoder and only complete lines are parsed. A
    data frame whose JSON does not parse yet is held back and joined with the
    following lines until it does; a new data line replaces a stale one.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._partial: str | None = None
        self.done = False

    def feed(self, chunk: bytes) -> list[str]:
        if self.done:
            return []
        self._buffer += self._decoder.decode(chunk)
        deltas = []
        while not self.done:
            newline_index = self._buffer.find("\n")
            if newline_index == -1:
                break
            line = self._buffer[:newline_index].strip()
            self._buffer = self._buffer[newline_index + 1 :]
            deltas.extend(self._handle_line(line))
        return deltas

    def finish(self) -> list[str]:
        """Flush whatever is left once the stream has closed."""
        if self.done:
            return []
        self._buffer += self._decoder.decode(b"", final=True)
        deltas = []
        remainder, self._buffer = self._buffer, ""
        for line in remainder.split("\n"):
            if self.done:
                break
            deltas.extend(self._handle_line(line.strip()))
        if self._partial is not None:
            logger.warning("Dropping incomplete frame at end of stream: %r", self._partial[:200])
            self._partial = None
        self.done = True
        return deltas

    def _handle_line(self, line: str) -> list[str]:
        frame = classify_line(line)

        if self._partial is not None:
            if frame.kind is FrameKind.IGNORED and line:
                return self._try_parse(self._partial + "\n" + line)
            if frame.kind is not FrameKind.IGNORED:
                logger.warning("Discarding unparseable frame: %r", self._partial[:200])
                self._partial = None

        if frame.kind is FrameKind.DONE:
            self.done = True
            return []
        if frame.kind is FrameKind.DATA:
            return self._try_parse(frame.payload)
        return []

    def _try_parse(self, payload: str) -> list[str]:
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            self._partial = payload
            return []
        self._partial = None
        delta = extract_delta(parsed)
        return [delta] if delta else []


async def _error_message(response: httpx.Response) -> str | None:
    try:
        body = await response.aread()
        data = json.loads(body)
    except (httpx.HTTPError, ValueError):
        return None
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        return data["error"]
    return None


class StreamingResponseReader:
    """Turns one coaching request into an async sequence of content deltas.

    `open()` sends the request and checks the status before handing back the
    delta iterator, so a rejected request fails before anything is yielded.
    Each call issues a fresh request; a sequence cannot be resumed once it
    has ended.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        headers: dict[str, str] | None = None,
        build_body: Callable[[list[dict]], dict] | None = None,
    ) -> None:
        self._client = client
        self._url = url
        self._headers = headers or {}
        self._build_body = build_body or (lambda messages: {"messages": messages})

    @asynccontextmanager
    async def open(self, messages: list[dict]) -> AsyncIterator[AsyncIterator[str]]:
        body = self._build_body(messages)
        try:
            async with self._client.stream(
                "POST", self._url, json=body, headers=self._headers
            ) as response:
                if not response.is_success:
                    message = await _error_message(response)
                    logger.error("AI gateway error: %s %s", response.status_code, message)
                    raise GatewayError.from_status(response.status_code, message)
                yield self._deltas(response)
        except httpx.HTTPError as e:
            logger.exception("Coaching stream failed")
            raise StreamError(str(e) or type(e).__name__) from e

    async def _deltas(self, response: httpx.Response) -> AsyncIterator[str]:
        decoder = FrameDecoder()
        async for chunk in response.aiter_bytes():
            for delta in decoder.feed(chunk):
                yield delta
            if decoder.done:
                return
        for delta in decoder.finish():
            yield delta

    async def stream(self, messages: list[dict]) -> AsyncIterator[str]:
        async with self.open(messages) as deltas:
            async for delta in deltas:
                yield delta
