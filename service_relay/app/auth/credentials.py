"""
Credential provider for the upstream event stream.
"""

from datetime import datetime
from typing import Callable, Optional

from shared.logging import get_logger

from ..config.store import ConfigStore
from ..models import Credential


class CredentialProvider:
    """Supplies the current session credential from the settings store."""

    def __init__(self, store: ConfigStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock
        self.logger = get_logger("relay.auth.credentials")

    def get_credential(self) -> Optional[Credential]:
        """Return the stored credential, or None if absent or expired."""
        credential = self.store.get().credential
        if credential is None:
            return None

        now = self.clock() if self.clock else None
        if credential.is_expired(now):
            self.logger.warning(
                "Stored credential has expired",
                expires_at=credential.expires_at.isoformat() if credential.expires_at else None
            )
            return None

        return credential
