"""
Upstream connection state machine.

A single actor task owns the connection state. Commands (start/stop/restart) and
reports from the transport read loop and the reconnect timer are posted to
its inbox and applied one at a time, so a stop can never race a reconnect.
Reports carry the generation of the connection attempt that produced them;
anything from a superseded generation is ignored.
"""

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Protocol, AsyncContextManager, AsyncIterable

from shared.logging import get_logger, set_connection_context
from shared.errors import GatingError, RelayException, TransportError
from shared.retry import RetryBudget, RetryConfig

from ..models import ConnectionState, Credential, InboundEvent


class Transport(Protocol):
    def connect(self, credential: Credential) -> AsyncContextManager[AsyncIterable[InboundEvent]]:
        ...


EventHandler = Callable[[InboundEvent], Awaitable[None]]
GateCheck = Callable[[], Optional[str]]
CredentialSource = Callable[[], Optional[Credential]]


@dataclass
class ConnectorSnapshot:
    """Point-in-time view of the connector."""
    state: ConnectionState
    retry_attempts: int
    max_attempts: int
    connection_id: Optional[str] = None
    last_error: Optional[str] = None


TransitionListener = Callable[[ConnectionState, ConnectionState, ConnectorSnapshot], None]


@dataclass
class _Message:
    kind: str  # start | stop | restart | opened | failed | retry
    generation: int = 0
    reason: str = ""
    error: Optional[BaseException] = None
    done: Optional[asyncio.Future] = None


class StreamConnector:
    """Owns the single upstream connection and its retry budget."""

    def __init__(
        self,
        transport: Transport,
        gate: GateCheck,
        credential_source: CredentialSource,
        event_handler: EventHandler,
        retry_config: Optional[RetryConfig] = None
    ):
        self.transport = transport
        self.gate = gate
        self.credential_source = credential_source
        self.event_handler = event_handler
        self.logger = get_logger("relay.stream.connector")

        self._state = ConnectionState.IDLE
        self._budget = RetryBudget(config=retry_config or RetryConfig())
        self._generation = 0
        self._connection_id: Optional[str] = None
        self._last_error: Optional[str] = None
        self._listeners: List[TransitionListener] = []

        self._inbox: Optional[asyncio.Queue] = None
        self._actor_task: Optional[asyncio.Task] = None
        self._read_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def retry_attempts(self) -> int:
        return self._budget.attempts

    @property
    def running(self) -> bool:
        return self._actor_task is not None and not self._actor_task.done()

    def snapshot(self) -> ConnectorSnapshot:
        """Read-only view of the current state; never blocks."""
        return ConnectorSnapshot(
            state=self._state,
            retry_attempts=self._budget.attempts,
            max_attempts=self._budget.max_attempts,
            connection_id=self._connection_id,
            last_error=self._last_error
        )

    def add_listener(self, listener: TransitionListener):
        """Register a callback invoked after every state transition."""
        self._listeners.append(listener)

    async def startup(self):
        """Start the actor task."""
        if self.running:
            return
        self._inbox = asyncio.Queue()
        self._actor_task = asyncio.create_task(self._run(), name="relay-stream-connector")
        self.logger.info("Stream connector started")

    async def shutdown(self):
        """Tear down any connection and stop the actor task."""
        if not self.running:
            return

        await self.disconnect("shutdown")

        self._actor_task.cancel()
        try:
            await self._actor_task
        except asyncio.CancelledError:
            pass
        self._actor_task = None

        # Release anyone still waiting on a queued command
        while not self._inbox.empty():
            message = self._inbox.get_nowait()
            if message.done is not None and not message.done.done():
                message.done.set_result(self._state)

        self.logger.info("Stream connector stopped")

    async def connect(self, reason: str = "command") -> ConnectionState:
        """Request a connection; resolves with the state after the request is applied."""
        return await self._submit(_Message("start", reason=reason))

    async def disconnect(self, reason: str = "command") -> ConnectionState:
        """Request teardown; resolves once the transport has been released."""
        return await self._submit(_Message("stop", reason=reason))

    async def restart(self, reason: str = "command") -> ConnectionState:
        """Drop any active or pending connection and connect again with the current credential."""
        return await self._submit(_Message("restart", reason=reason))

    async def _submit(self, message: _Message) -> ConnectionState:
        if not self.running:
            raise RelayException("CONNECTOR_NOT_RUNNING", "Stream connector not started")

        message.done = asyncio.get_running_loop().create_future()
        self._inbox.put_nowait(message)
        return await message.done

    def _post(self, message: _Message):
        if self._inbox is not None:
            self._inbox.put_nowait(message)

    async def _run(self):
        """Actor loop: apply inbox messages one at a time."""
        while True:
            message = await self._inbox.get()
            try:
                await self._apply(message)
            except Exception as e:
                self.logger.error(
                    "Failed to apply connector message",
                    message=message.kind,
                    error=str(e),
                    exc_info=True
                )
            finally:
                if message.done is not None and not message.done.done():
                    message.done.set_result(self._state)

    async def _apply(self, message: _Message):
        if message.kind == "start":
            await self._handle_start(message.reason)
        elif message.kind == "stop":
            await self._handle_stop(message.reason)
        elif message.kind == "restart":
            await self._handle_restart(message.reason)
        elif message.kind == "opened":
            self._handle_opened(message.generation)
        elif message.kind == "failed":
            self._handle_failed(message.generation, message.error)
        elif message.kind == "retry":
            self._handle_retry(message.generation)

    async def _handle_start(self, reason: str):
        if self._state in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            self.logger.debug("Start ignored, connection already active", state=self._state.value, trigger=reason)
            return

        refusal = self.gate()
        if refusal:
            self._log_refusal(refusal, reason)
            return

        # Explicit start supersedes any pending reconnect
        self._cancel_reconnect()
        if self._state in (ConnectionState.IDLE, ConnectionState.FAILED):
            self._budget.reset()

        self._begin_connect(reason)

    async def _handle_stop(self, reason: str):
        if self._state == ConnectionState.IDLE and self._read_task is None and self._reconnect_task is None:
            self.logger.debug("Stop ignored, already idle", trigger=reason)
            return

        await self._teardown()
        self._budget.reset()
        self._last_error = None
        self._transition(ConnectionState.IDLE)
        self.logger.info("Upstream connection stopped", trigger=reason)

    async def _handle_restart(self, reason: str):
        if self._state in (ConnectionState.IDLE, ConnectionState.FAILED):
            await self._handle_start(reason)
            return

        await self._teardown()
        self._budget.reset()
        self._last_error = None

        refusal = self.gate()
        if refusal:
            self._transition(ConnectionState.IDLE)
            self._log_refusal(refusal, reason)
            return

        self.logger.info("Restarting upstream connection", trigger=reason)
        self._begin_connect(reason)

    def _handle_opened(self, generation: int):
        if generation != self._generation or self._state != ConnectionState.CONNECTING:
            return

        self._budget.reset()
        self._last_error = None
        self._transition(ConnectionState.OPEN)
        self.logger.info("Upstream connection established", connection_id=self._connection_id)

    def _handle_failed(self, generation: int, error: Optional[BaseException]):
        if generation != self._generation:
            return
        if self._state not in (ConnectionState.CONNECTING, ConnectionState.OPEN):
            return

        self._read_task = None
        self._last_error = str(error) if error else "unknown error"
        attempts = self._budget.record_failure()

        self.logger.warning(
            "Upstream connection failed",
            connection_id=self._connection_id,
            error=self._last_error,
            error_code=getattr(error, "code", None),
            attempt=attempts,
            max_attempts=self._budget.max_attempts
        )
        self._transition(ConnectionState.RECONNECTING)

        if self._budget.exhausted:
            self.logger.error(
                "Max reconnection attempts reached, giving up",
                attempts=attempts,
                max_attempts=self._budget.max_attempts
            )
            self._transition(ConnectionState.FAILED)
            return

        delay = self._budget.next_delay()
        self.logger.info(
            "Reconnecting",
            delay_seconds=round(delay, 3),
            attempt=attempts,
            max_attempts=self._budget.max_attempts
        )
        self._schedule_reconnect(delay)

    def _handle_retry(self, generation: int):
        if generation != self._generation or self._state != ConnectionState.RECONNECTING:
            return

        self._reconnect_task = None
        refusal = self.gate()
        if refusal:
            self._budget.reset()
            self._transition(ConnectionState.IDLE)
            self.logger.info("Reconnect abandoned, connection no longer permitted", reason=refusal)
            return

        self._begin_connect("retry")

    def _begin_connect(self, reason: str):
        credential = self.credential_source()
        if credential is None:
            self._budget.reset()
            self._transition(ConnectionState.IDLE)
            self._log_refusal("missing_credential", reason)
            return

        self._generation += 1
        self._connection_id = f"upstream-{self._generation}"
        self._transition(ConnectionState.CONNECTING)
        self.logger.info(
            "Connecting to upstream",
            connection_id=self._connection_id,
            trigger=reason,
            attempt=self._budget.attempts
        )
        self._read_task = asyncio.create_task(
            self._read_loop(self._generation, self._connection_id, credential),
            name=f"relay-read-{self._connection_id}"
        )

    def _log_refusal(self, refusal: str, trigger: str):
        error = GatingError(details={"reason": refusal, "trigger": trigger})
        self.logger.info(
            error.message,
            error_code=error.code,
            state=self._state.value,
            **error.details
        )

    async def _teardown(self):
        """Cancel the timer and the read loop, waiting for the transport to be released."""
        self._generation += 1
        self._cancel_reconnect()

        task = self._read_task
        self._read_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def _schedule_reconnect(self, delay: float):
        self._cancel_reconnect()
        self._reconnect_task = asyncio.create_task(
            self._reconnect_after(self._generation, delay),
            name="relay-reconnect-timer"
        )

    def _cancel_reconnect(self):
        if self._reconnect_task is not None and not self._reconnect_task.done():
            self._reconnect_task.cancel()
        self._reconnect_task = None

    async def _reconnect_after(self, generation: int, delay: float):
        await asyncio.sleep(delay)
        self._post(_Message("retry", generation=generation))

    async def _read_loop(self, generation: int, connection_id: str, credential: Credential):
        """Run one connection until it fails; reports back to the actor."""
        set_connection_context(connection_id)
        try:
            async with self.transport.connect(credential) as stream:
                self._post(_Message("opened", generation=generation))
                async for event in stream:
                    await self._dispatch(event)
            error: BaseException = TransportError("Upstream closed the stream")
        except asyncio.CancelledError:
            raise
        except RelayException as e:
            error = e
        except Exception as e:
            error = TransportError(str(e) or type(e).__name__)

        self._post(_Message("failed", generation=generation, error=error))

    async def _dispatch(self, event: InboundEvent):
        try:
            await self.event_handler(event)
        except Exception as e:
            self.logger.error(
                "Event handler failed",
                kind=event.kind,
                error=str(e),
                exc_info=True
            )

    def _transition(self, new_state: ConnectionState):
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        snapshot = self.snapshot()
        self.logger.debug(
            "Connection state changed",
            from_state=old_state.value,
            to_state=new_state.value,
            retry_attempts=snapshot.retry_attempts
        )

        for listener in list(self._listeners):
            try:
                listener(old_state, new_state, snapshot)
            except Exception as e:
                self.logger.error("Transition listener failed", error=str(e))
