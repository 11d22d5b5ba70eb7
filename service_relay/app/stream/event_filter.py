"""
Reward ID matching for inbound events.
"""

from typing import Any, Optional

from ..models import InboundEvent


class EventFilter:
    """Decides whether an inbound event targets the configured reward."""

    def __init__(self, event_kind: str = "pause", identifier_field: str = "rewardId"):
        self.event_kind = event_kind
        self.identifier_field = identifier_field

    def identifier_of(self, event: InboundEvent) -> Optional[Any]:
        """Return the event's identifier field, if any."""
        if not isinstance(event.payload, dict):
            return None
        return event.payload.get(self.identifier_field)

    def matches(self, event: InboundEvent, filter_id: Optional[str]) -> bool:
        """Exact string match of the identifier field against ``filter_id``.

        An empty filter, a different event kind, or a payload without the
        identifier field never matches.
        """
        if not filter_id:
            return False
        if event.kind != self.event_kind:
            return False

        identifier = self.identifier_of(event)
        if not isinstance(identifier, str):
            return False
        return identifier == filter_id
