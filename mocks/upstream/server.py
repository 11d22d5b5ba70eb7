"""
Mock upstream event API emitting channel-point pause events over SSE.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Dict, Any, Optional, Set

from fastapi import FastAPI, Header, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from shared.logging import get_logger


class PauseRedemption(BaseModel):
    """Channel-point redemption that should pause the game."""

    reward_id: str = Field(alias="rewardId")
    reward_title: str = Field(default="Pause the game", alias="rewardTitle")
    viewer_name: str = Field(default="viewer", alias="viewerName")
    cost: int = 100


class MockUpstreamServer:
    """Mock upstream implementation."""

    def __init__(self, tokens: Optional[Set[str]] = None, heartbeat_interval: float = 15.0):
        self.logger = get_logger("mock.upstream")
        self.app = FastAPI(title="Mock Upstream", version="1.0.0")
        self.tokens = tokens if tokens is not None else {"dev-session-token"}
        self.heartbeat_interval = heartbeat_interval
        self.queues: Set[asyncio.Queue] = set()

        self._setup_routes()

    def _setup_routes(self):

        @self.app.get("/api/events/stream")
        async def event_stream(authorization: Optional[str] = Header(None)):
            """SSE stream of pause events for the authenticated broadcaster."""
            token = (authorization or "").removeprefix("Bearer ").strip()
            if token not in self.tokens:
                raise HTTPException(status_code=401, detail="Invalid session")

            return StreamingResponse(
                self._stream(),
                media_type="text/event-stream",
                headers={
                    "Cache-Control": "no-cache",
                    "Connection": "keep-alive"
                }
            )

        @self.app.post("/api/events/pause")
        async def publish_pause(redemption: PauseRedemption):
            """Broadcast a pause event to every open stream."""
            payload = {
                **redemption.model_dump(by_alias=True),
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
            for queue in list(self.queues):
                await queue.put(("pause", payload))

            self.logger.info("Pause event published", reward_id=redemption.reward_id, listeners=len(self.queues))
            return {"delivered_to": len(self.queues)}

    async def _stream(self):
        queue: asyncio.Queue = asyncio.Queue(maxsize=100)
        self.queues.add(queue)
        try:
            yield format_sse("connected", {"message": "Connected to event stream"})
            while True:
                try:
                    kind, payload = await asyncio.wait_for(queue.get(), timeout=self.heartbeat_interval)
                    yield format_sse(kind, payload)
                except asyncio.TimeoutError:
                    yield ": heartbeat\n\n"
        finally:
            self.queues.discard(queue)


def format_sse(kind: str, payload: Dict[str, Any]) -> str:
    """Frame one named SSE event."""
    return f"event: {kind}\ndata: {json.dumps(payload)}\n\n"


def create_app():
    """Create mock upstream application."""
    server = MockUpstreamServer()
    return server.app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(create_app(), host="127.0.0.1", port=8090)
