"""
Control surface: the only entry point that drives connector transitions.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from shared.logging import get_logger
from shared.errors import ValidationError

from ..auth.credentials import CredentialProvider
from ..config.gating import connection_refusal
from ..config.store import ConfigChanges, ConfigStore
from ..models import ConnectionState, StatusReport
from ..status.reporter import StatusReporter
from ..stream.connector import StreamConnector


class ControlCommand(str, Enum):
    """Inbound control commands."""
    START = "start"
    STOP = "stop"
    QUERY_STATUS = "query_status"


GATING_FIELDS = {"enabled", "credential"}


class ControlSurface:
    """Translates commands and settings changes into connector requests."""

    def __init__(
        self,
        connector: StreamConnector,
        store: ConfigStore,
        credentials: CredentialProvider,
        reporter: StatusReporter
    ):
        self.connector = connector
        self.store = store
        self.credentials = credentials
        self.reporter = reporter
        self.logger = get_logger("relay.control.surface")
        self._attached = False

    def attach(self):
        """Start following settings changes."""
        if not self._attached:
            self.store.subscribe(self._on_config_changed)
            self._attached = True

    def detach(self):
        if self._attached:
            self.store.unsubscribe(self._on_config_changed)
            self._attached = False

    def gating_refusal(self) -> Optional[str]:
        """Why a connection is currently not permitted, or None."""
        return connection_refusal(self.store.get(), self.credentials.get_credential())

    async def start(self, reason: str = "command") -> ConnectionState:
        """Idempotent: no-op while connecting or open."""
        return await self.connector.connect(reason)

    async def stop(self, reason: str = "command") -> ConnectionState:
        """Idempotent: no-op while idle."""
        return await self.connector.disconnect(reason)

    def query_status(self) -> StatusReport:
        """Current state and retry count; never touches the network."""
        return self.reporter.report()

    async def handle_command(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Handle a ``{"type": <command>}`` control message.

        A start refused by gating is not an error: the reply carries the
        unchanged state and the refusal reason.
        """
        try:
            command = ControlCommand(message.get("type"))
        except ValueError:
            raise ValidationError("Unknown control command", {"type": message.get("type")})

        if command == ControlCommand.QUERY_STATUS:
            return self.query_status().model_dump(by_alias=True, mode="json")

        if command == ControlCommand.STOP:
            state = await self.stop("command")
            return {"success": True, "state": state.value}

        state = await self.start("command")
        response = {"success": True, "state": state.value}
        refusal = self.gating_refusal()
        if refusal:
            response["reason"] = refusal
        return response

    async def _on_config_changed(self, changes: ConfigChanges):
        """Re-evaluate gating when settings change.

        Changes to ``enabled`` or ``credential`` issue a start or stop; a new
        credential also replaces a live or pending connection. A
        ``filter_id`` change only does so when it flips the gating
        precondition; otherwise the open connection is kept and the new
        filter applies to subsequent events.
        """
        refusal = self.gating_refusal()

        if GATING_FIELDS & changes.keys():
            await self._apply_gating(refusal, sorted(changes), restart="credential" in changes)
            return

        if "filter_id" in changes:
            old_filter, _ = changes["filter_id"]
            previous = self.store.get().model_copy(update={"filter_id": old_filter})
            previous_refusal = connection_refusal(previous, self.credentials.get_credential())

            if (previous_refusal is None) != (refusal is None):
                await self._apply_gating(refusal, ["filter_id"])
            else:
                self.logger.info("Reward filter changed, keeping current connection")

    async def _apply_gating(self, refusal: Optional[str], changed_fields: List[str], restart: bool = False):
        if refusal is not None:
            self.logger.info(
                "Configuration changed, stopping stream",
                changed_fields=changed_fields,
                reason=refusal
            )
            await self.stop("config_change")
        elif restart:
            self.logger.info("Credential changed, reconnecting stream", changed_fields=changed_fields)
            await self.connector.restart("credential_change")
        else:
            self.logger.info("Configuration changed, starting stream", changed_fields=changed_fields)
            await self.start("config_change")
