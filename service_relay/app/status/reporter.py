"""
Connection status reporting.
"""

from ..models import ConnectionState, StatusReport
from ..stream.connector import StreamConnector


class StatusReporter:
    """Read-only view over the connector state, safe to poll at any rate."""

    def __init__(self, connector: StreamConnector):
        self.connector = connector

    def report(self) -> StatusReport:
        snapshot = self.connector.snapshot()
        return StatusReport(
            connected=snapshot.state == ConnectionState.OPEN,
            retry_attempts=snapshot.retry_attempts,
            state=snapshot.state,
            max_attempts=snapshot.max_attempts,
            last_error=snapshot.last_error
        )
