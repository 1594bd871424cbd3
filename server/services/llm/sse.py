"""
Server-Sent Events decoding for streamed completions.

SSEDecoder is a push-style state machine: feed it text chunks as they arrive
and it returns the token events completed by each chunk. It has no I/O of its
own, so any transport that delivers partial bodies can drive it.
"""
import json
from typing import AsyncIterable, AsyncIterator, Optional

import httpx

from models import CompleteEvent, ErrorEvent, StreamEvent, TokenEvent
from utils import get_logger

logger = get_logger("llm.sse")

DONE_LINE = "data: [DONE]"
IMPERSONATION_MARKER = "\nUser:"

TRANSPORT_ERRORS = (httpx.HTTPError, httpx.StreamError, httpx.InvalidURL, OSError)


def extract_delta(payload: dict) -> Optional[str]:
    """
    Pull the text delta out of a decoded event, tolerating provider shapes.

    Lookup order: choices[0].delta.content, choices[0].text, then top-level
    text, token and content.
    """
    choices = payload.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        choice = choices[0]
        delta = choice.get("delta")
        if isinstance(delta, dict) and isinstance(delta.get("content"), str):
            return delta["content"]
        if isinstance(choice.get("text"), str):
            return choice["text"]
    for field in ("text", "token", "content"):
        if isinstance(payload.get(field), str):
            return payload[field]
    return None


def parse_event(lines: list[str]) -> Optional[str]:
    """Decode one buffered SSE event into a delta, or None if it carries none."""
    payloads = []
    for line in lines:
        if line.startswith("data: "):
            payloads.append(line[6:])
        elif line.startswith("data:"):
            payloads.append(line[5:])
    data = "\n".join(payloads)
    if not data.strip() or data.strip() == "[DONE]":
        return None

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Dropping undecodable event: %.200s", data)
        return None
    if not isinstance(payload, dict):
        return None
    return extract_delta(payload)


def clean_response(text: str) -> str:
    """Cut the text at the first impersonated user turn and strip trailing whitespace."""
    index = text.find(IMPERSONATION_MARKER)
    if index >= 0:
        text = text[:index]
    return text.rstrip()


class SSEDecoder:
    """Incremental SSE decoder producing TokenEvents and one final CompleteEvent."""

    def __init__(self):
        self.accumulated = ""
        self.done = False
        self._buffer = ""
        self._event_lines: list[str] = []

    def feed(self, chunk: str) -> list[TokenEvent]:
        """Consume a chunk of text; return the token events it completed."""
        events: list[TokenEvent] = []
        if self.done:
            return events
        self._buffer += chunk
        while not self.done:
            index = self._buffer.find("\n")
            if index < 0:
                break
            line = self._buffer[:index].rstrip("\r")
            self._buffer = self._buffer[index + 1:]
            self._handle_line(line, events)
        return events

    def finish(self) -> CompleteEvent:
        """End of stream: flush anything still buffered and return the cleaned text."""
        events: list[TokenEvent] = []
        if not self.done:
            line = self._buffer.rstrip("\r")
            self._buffer = ""
            if line:
                self._handle_line(line, events)
            self._flush_event(events)
            self.done = True
        return CompleteEvent(text=clean_response(self.accumulated))

    def _handle_line(self, line: str, events: list[TokenEvent]) -> None:
        if line == DONE_LINE:
            self._flush_event(events)
            self.done = True
        elif not line.strip():
            self._flush_event(events)
        else:
            self._event_lines.append(line)

    def _flush_event(self, events: list[TokenEvent]) -> None:
        if not self._event_lines:
            return
        delta = parse_event(self._event_lines)
        self._event_lines = []
        if delta:
            self.accumulated += delta
            events.append(TokenEvent(delta=delta, accumulated=self.accumulated))


async def decode_stream(chunks: AsyncIterable[str]) -> AsyncIterator[StreamEvent]:
    """
    Decode an async source of text chunks into stream events.

    Yields TokenEvents as they complete, then exactly one CompleteEvent, or an
    ErrorEvent (and nothing after it) if the source raises a transport error.
    """
    decoder = SSEDecoder()
    try:
        async for chunk in chunks:
            for event in decoder.feed(chunk):
                yield event
            if decoder.done:
                break
    except TRANSPORT_ERRORS as e:
        logger.warning("Stream failed: %s", e)
        yield ErrorEvent(message=str(e) or "Streaming failed")
        return
    yield decoder.finish()
