"""
Durable settings store for the relay.

Holds the ``enabled`` flag, the reward ID to filter on and the session
credential. Writes are persisted as JSON and announced to subscribers with
the set of changed fields.
"""

import asyncio
import json
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import ValidationError

from ..models import Configuration


# field name -> (old value, new value)
ConfigChanges = Dict[str, Tuple[Any, Any]]
ChangeListener = Callable[[ConfigChanges], Union[None, Awaitable[None]]]


class ConfigStore:
    """Key/value settings store with change notifications."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(path).expanduser() if path else None
        self.logger = get_logger("relay.config.store")
        self._listeners: List[ChangeListener] = []
        self._lock = asyncio.Lock()
        self._config = self._load()

    def _load(self) -> Configuration:
        """Load persisted settings, creating defaults on first launch."""
        if self.path is None:
            return Configuration()

        if not self.path.exists():
            config = Configuration()
            self._persist(config)
            self.logger.info("Created default settings", path=str(self.path))
            return config

        try:
            with open(self.path, "r", encoding="utf-8") as handle:
                return Configuration.model_validate(json.load(handle))
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            self.logger.warning(
                "Stored settings unreadable, using defaults",
                path=str(self.path),
                error=str(e)
            )
            return Configuration()

    def _persist(self, config: Configuration):
        """Write settings atomically."""
        if self.path is None:
            return

        self.path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(temp_path, "w", encoding="utf-8") as handle:
            json.dump(config.model_dump(mode="json"), handle, indent=2)
        os.replace(temp_path, self.path)

    def get(self) -> Configuration:
        """Return a snapshot of the current settings."""
        return self._config.model_copy(deep=True)

    def subscribe(self, listener: ChangeListener):
        """Register a change listener. Listeners must not write back to the store."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: ChangeListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def update(self, **changes: Any) -> ConfigChanges:
        """Apply a partial write and notify listeners of fields that changed."""
        async with self._lock:
            current = self._config
            try:
                updated = Configuration.model_validate({**current.model_dump(), **changes})
            except PydanticValidationError as e:
                raise ValidationError("Invalid settings", {"errors": e.errors(include_url=False, include_context=False)})

            changed: ConfigChanges = {
                name: (getattr(current, name), getattr(updated, name))
                for name in changes
                if getattr(current, name) != getattr(updated, name)
            }

            if not changed:
                return {}

            self._persist(updated)
            self._config = updated

            self.logger.info("Settings updated", changed_fields=sorted(changed))

            await self._notify(changed)
            return changed

    async def _notify(self, changed: ConfigChanges):
        for listener in list(self._listeners):
            try:
                result = listener(changed)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                self.logger.error(
                    "Settings listener failed",
                    listener=getattr(listener, "__qualname__", repr(listener)),
                    error=str(e)
                )
