"""
Server-Sent Events transport for the upstream event stream.
"""

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional

import httpx

from shared.logging import get_logger
from shared.errors import TransportError, UpstreamAuthenticationError, MalformedEventError

from ..models import Credential, InboundEvent


@dataclass
class ServerSentEvent:
    """A raw event as framed on the wire."""
    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEDecoder:
    """Incremental text/event-stream decoder fed one line at a time."""

    def __init__(self):
        self._event = ""
        self._data: List[str] = []
        self._retry: Optional[int] = None
        self.last_event_id: Optional[str] = None

    def feed_line(self, line: str) -> Optional[ServerSentEvent]:
        """Consume a line; returns an event when a blank line completes one."""
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        name, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]

        if name == "event":
            self._event = value
        elif name == "data":
            self._data.append(value)
        elif name == "id":
            if "\0" not in value:
                self.last_event_id = value
        elif name == "retry":
            if value.isdigit():
                self._retry = int(value)

        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        # A blank line with no data lines only resets the event name
        if not self._data:
            self._event = ""
            self._retry = None
            return None

        event = ServerSentEvent(
            event=self._event or "message",
            data="\n".join(self._data),
            id=self.last_event_id,
            retry=self._retry
        )
        self._event = ""
        self._data = []
        self._retry = None
        return event


def to_inbound_event(sse: ServerSentEvent) -> InboundEvent:
    """Decode the JSON payload of a wire event."""
    if not sse.data:
        payload = {}
    else:
        try:
            payload = json.loads(sse.data)
        except json.JSONDecodeError as e:
            raise MalformedEventError(
                "Event payload is not valid JSON",
                {"kind": sse.event, "error": str(e)}
            )

    return InboundEvent(kind=sse.event, payload=payload, event_id=sse.id)


class EventStream:
    """Async iterator over decoded events of one open response."""

    def __init__(self, response: httpx.Response):
        self._response = response
        self._decoder = SSEDecoder()
        self.logger = get_logger("relay.stream.transport")

    def __aiter__(self) -> AsyncIterator[InboundEvent]:
        return self._events()

    async def _events(self) -> AsyncIterator[InboundEvent]:
        async for line in self._response.aiter_lines():
            sse = self._decoder.feed_line(line)
            if sse is None:
                continue

            try:
                yield to_inbound_event(sse)
            except MalformedEventError as e:
                self.logger.warning(
                    "Discarding malformed event",
                    kind=sse.event,
                    error=e.details.get("error")
                )


class UpstreamTransport:
    """Opens authenticated SSE connections against the upstream API."""

    def __init__(
        self,
        base_url: str,
        stream_path: str = "/api/events/stream",
        session_cookie_name: str = "better-auth.session_token",
        connect_timeout: float = 10.0,
        http_transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.base_url = base_url.rstrip('/')
        self.stream_path = stream_path
        self.session_cookie_name = session_cookie_name
        self.connect_timeout = connect_timeout
        self._http_transport = http_transport
        self.logger = get_logger("relay.stream.transport")

    @property
    def url(self) -> str:
        return f"{self.base_url}{self.stream_path}"

    @asynccontextmanager
    async def connect(self, credential: Credential) -> AsyncIterator[EventStream]:
        """Open the stream; the connection is released when the block exits."""
        headers = {
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            "Authorization": f"Bearer {credential.token}"
        }
        # No read timeout: the stream is idle between events
        timeout = httpx.Timeout(self.connect_timeout, read=None)

        try:
            async with httpx.AsyncClient(
                timeout=timeout,
                cookies={self.session_cookie_name: credential.token},
                transport=self._http_transport
            ) as client:
                async with client.stream("GET", self.url, headers=headers) as response:
                    if response.status_code in (401, 403):
                        raise UpstreamAuthenticationError(
                            details={"status_code": response.status_code}
                        )
                    if response.status_code != 200:
                        raise TransportError(
                            "Unexpected upstream status",
                            {"status_code": response.status_code}
                        )

                    content_type = response.headers.get("content-type", "")
                    if not content_type.startswith("text/event-stream"):
                        raise TransportError(
                            "Upstream did not return an event stream",
                            {"content_type": content_type}
                        )

                    self.logger.debug("Upstream stream opened", url=self.url)
                    yield EventStream(response)

        except httpx.TimeoutException as e:
            raise TransportError("Upstream timeout", {"error": str(e)})
        except httpx.HTTPError as e:
            raise TransportError("Upstream request error", {"error": str(e)})
