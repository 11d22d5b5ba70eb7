"""
Event relay service.
"""

from typing import Optional, Dict, Any

from fastapi import Body

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.logging import get_logger, set_event_context
from shared.retry import RetryConfig

from .auth.credentials import CredentialProvider
from .config.gating import connection_refusal
from .config.store import ConfigStore
from .control.surface import ControlSurface
from .delivery.router import DeliveryRouter
from .delivery.targets import TargetRegistry
from .models import (
    ConfigurationUpdate,
    ConnectionState,
    InboundEvent,
    MatchedEvent,
    StatusReport,
    TargetRegistration,
)
from .status.reporter import StatusReporter
from .stream.connector import ConnectorSnapshot, StreamConnector, Transport
from .stream.event_filter import EventFilter
from .stream.transport import UpstreamTransport


class RelayService(BaseService):
    """Relay service implementation."""

    def __init__(
        self,
        config: Optional[ServiceConfig] = None,
        transport: Optional[Transport] = None,
        registry: Optional[TargetRegistry] = None,
        store: Optional[ConfigStore] = None
    ):
        super().__init__("relay", 8040, config=config)
        self.event_logger = get_logger("relay.events")

        # Settings and credentials
        self.config_store = store or ConfigStore(self.config.config_store_path)
        self.credentials = CredentialProvider(self.config_store)

        # Matching and delivery
        self.event_filter = EventFilter(
            event_kind=self.config.pause_event_kind,
            identifier_field=self.config.filter_field
        )
        self.target_registry = registry or TargetRegistry()
        self.delivery_router = DeliveryRouter(
            registry=self.target_registry,
            match_pattern=self.config.target_match_pattern,
            timeout=self.config.delivery_timeout_seconds,
            metrics=self.metrics
        )

        # Upstream connection
        self.transport = transport or UpstreamTransport(
            base_url=self.config.api_base_url,
            stream_path=self.config.stream_path,
            session_cookie_name=self.config.session_cookie_name,
            connect_timeout=self.config.connect_timeout_seconds
        )
        self.connector = StreamConnector(
            transport=self.transport,
            gate=self._gating_refusal,
            credential_source=self.credentials.get_credential,
            event_handler=self._handle_upstream_event,
            retry_config=RetryConfig(
                max_attempts=self.config.max_reconnect_attempts,
                base_delay=self.config.reconnect_delay_seconds,
                max_delay=self.config.max_reconnect_delay_seconds,
                jitter=self.config.retry_jitter,
                backoff_strategy=self.config.retry_strategy
            )
        )
        self.connector.add_listener(self._record_transition)

        # Control and status
        self.status_reporter = StatusReporter(self.connector)
        self.control = ControlSurface(
            connector=self.connector,
            store=self.config_store,
            credentials=self.credentials,
            reporter=self.status_reporter
        )

        self._setup_relay_routes()
        self.app.state.relay_service = self

    def _setup_relay_routes(self):
        """Set up relay-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "relay",
                "message": "Event Relay",
                "version": "1.0.0",
                "upstream": self.config.api_base_url,
                "capabilities": ["sse", "fan-out", "control"]
            }

        @self.app.post("/control/start")
        async def control_start():
            """Start (or resume) the upstream connection."""
            return await self.control.handle_command({"type": "start"})

        @self.app.post("/control/stop")
        async def control_stop():
            """Stop the upstream connection."""
            return await self.control.handle_command({"type": "stop"})

        @self.app.get("/control/status", response_model=StatusReport)
        async def control_status():
            """Current connection status."""
            return self.control.query_status()

        @self.app.post("/control")
        async def control_command(message: Dict[str, Any] = Body(...)):
            """Generic ``{"type": ...}`` control message."""
            return await self.control.handle_command(message)

        @self.app.get("/config")
        async def get_settings():
            """Current settings with the credential token redacted."""
            return self._redacted_settings()

        @self.app.put("/config")
        async def update_settings(update: ConfigurationUpdate):
            """Partial settings write."""
            changes = update.model_dump(exclude_unset=True)
            changed = await self.config_store.update(**changes)
            return {
                "changed": sorted(changed),
                "settings": self._redacted_settings(),
                "status": self.control.query_status().model_dump(by_alias=True, mode="json")
            }

        @self.app.get("/targets")
        async def list_targets():
            """Registered consumer endpoints."""
            return {"targets": self.target_registry.list_targets()}

        @self.app.post("/targets", status_code=201)
        async def register_target(registration: TargetRegistration):
            """Register an HTTP consumer endpoint."""
            target_id = self.target_registry.register_http(
                url=registration.url,
                origin=registration.origin,
                target_id=registration.target_id,
                timeout=self.config.delivery_timeout_seconds
            )
            return {"targetId": target_id}

        @self.app.delete("/targets/{target_id}")
        async def remove_target(target_id: str):
            """Remove a consumer endpoint."""
            self.target_registry.unregister(target_id)
            return {"success": True, "targetId": target_id}

    def _redacted_settings(self) -> Dict[str, Any]:
        settings = self.config_store.get()
        credential = settings.credential
        return {
            "enabled": settings.enabled,
            "filterId": settings.filter_id,
            "credential": {
                "present": True,
                "expiresAt": credential.expires_at.isoformat() if credential.expires_at else None,
                "expired": credential.is_expired()
            } if credential else None
        }

    def _gating_refusal(self) -> Optional[str]:
        return connection_refusal(self.config_store.get(), self.credentials.get_credential())

    def _record_transition(self, old_state: ConnectionState, new_state: ConnectionState, snapshot: ConnectorSnapshot):
        self.metrics.record_connection_state(new_state.value, snapshot.retry_attempts)

    async def _handle_upstream_event(self, event: InboundEvent):
        """Filter an upstream event and deliver it if it matches."""
        set_event_context(event.event_id)
        self.metrics.record_upstream_event(event.kind)

        if event.kind == "connected":
            self.event_logger.info("Connected to event stream", data=event.payload)
            return

        if event.kind != self.event_filter.event_kind:
            self.event_logger.debug("Ignoring upstream event", kind=event.kind)
            return

        # Filter against the settings as they are now, not as they were at connect time
        filter_id = self.config_store.get().filter_id
        if not self.event_filter.matches(event, filter_id):
            self.event_logger.info(
                "Reward ID does not match configured ID",
                received=self.event_filter.identifier_of(event),
                configured=filter_id
            )
            return

        self.metrics.record_matched_event()
        self.event_logger.info("Reward ID matches, delivering event", filter_id=filter_id)
        await self.delivery_router.deliver(MatchedEvent(event=event, filter_id=filter_id))

    async def _check_dependencies(self) -> Dict[str, Any]:
        """Report upstream connection status."""
        report = self.control.query_status()
        return {
            "upstream": "ok" if report.connected else report.state.value,
            "delivery_targets": len(self.target_registry)
        }

    async def start(self):
        """Start relay components and connect if settings allow."""
        await self.connector.startup()
        self.control.attach()
        await self.control.start("startup")
        self.logger.info("Relay service components started")

    async def stop(self):
        """Stop relay components."""
        self.control.detach()
        await self.connector.shutdown()
        self.logger.info("Relay service components stopped")


def create_app(config: Optional[ServiceConfig] = None):
    """Create relay service application."""
    service = RelayService(config=config)
    return service.app


if __name__ == "__main__":
    service = RelayService()
    service.run()
