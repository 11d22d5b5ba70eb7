"""
Unit tests for reward ID matching.
"""

import pytest

from service_relay.app.models import InboundEvent
from service_relay.app.stream.event_filter import EventFilter

from conftest import pause_event


class TestEventFilter:
    """Test cases for EventFilter."""

    @pytest.fixture
    def event_filter(self):
        return EventFilter()

    def test_matching_reward_id(self, event_filter):
        assert event_filter.matches(pause_event("RWD-1"), "RWD-1") is True

    def test_different_reward_id(self, event_filter):
        assert event_filter.matches(pause_event("RWD-2"), "RWD-1") is False

    def test_match_is_case_sensitive(self, event_filter):
        assert event_filter.matches(pause_event("rwd-1"), "RWD-1") is False

    def test_empty_filter_never_matches(self, event_filter):
        assert event_filter.matches(pause_event(""), "") is False
        assert event_filter.matches(pause_event("RWD-1"), None) is False

    def test_missing_identifier_field(self, event_filter):
        assert event_filter.matches(pause_event(None), "RWD-1") is False

    def test_non_string_identifier(self, event_filter):
        event = InboundEvent(kind="pause", payload={"rewardId": 1})
        assert event_filter.matches(event, "1") is False

    def test_non_object_payload(self, event_filter):
        event = InboundEvent(kind="pause", payload=["RWD-1"])
        assert event_filter.matches(event, "RWD-1") is False
        assert event_filter.identifier_of(event) is None

    def test_other_event_kind(self, event_filter):
        event = InboundEvent(kind="connected", payload={"rewardId": "RWD-1"})
        assert event_filter.matches(event, "RWD-1") is False

    def test_custom_kind_and_field(self):
        event_filter = EventFilter(event_kind="redeem", identifier_field="id")
        event = InboundEvent(kind="redeem", payload={"id": "abc"})

        assert event_filter.matches(event, "abc") is True
        assert event_filter.identifier_of(event) == "abc"

    def test_matching_does_not_mutate_event(self, event_filter):
        event = pause_event("RWD-1")
        before = dict(event.payload)

        event_filter.matches(event, "RWD-1")

        assert event.payload == before
