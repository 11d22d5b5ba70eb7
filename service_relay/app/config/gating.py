"""
Connection gating: a stream may exist only when the relay is enabled, a
credential is present and a reward ID is configured.
"""

from typing import Optional

from ..models import Configuration, Credential


def connection_refusal(config: Configuration, credential: Optional[Credential]) -> Optional[str]:
    """Return why a connection is not permitted, or None if it is."""
    if not config.enabled:
        return "disabled"
    if credential is None:
        return "missing_credential"
    if not config.filter_id:
        return "missing_filter_id"
    return None
