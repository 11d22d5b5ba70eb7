"""
Consumer endpoints and the live registry they are discovered from.
"""

import uuid
from abc import ABC, abstractmethod
from fnmatch import fnmatchcase
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from shared.logging import get_logger
from shared.errors import DeliveryError, NotFoundError


class DeliveryTarget(ABC):
    """A consumer endpoint able to act on a matched event."""

    def __init__(self, target_id: str, origin: str):
        self.target_id = target_id
        self.origin = origin

    @abstractmethod
    async def deliver(self, message: Dict[str, Any]) -> Dict[str, Any]:
        """Send ``{"type": "deliver", "payload": ...}``; returns ``{"success": bool}``."""

    def describe(self) -> Dict[str, Any]:
        return {"targetId": self.target_id, "origin": self.origin, "kind": type(self).__name__}


class HttpDeliveryTarget(DeliveryTarget):
    """Consumer reachable by an HTTP POST webhook."""

    def __init__(self, target_id: str, origin: str, url: str, timeout: float = 5.0):
        super().__init__(target_id, origin)
        self.url = url
        self.timeout = timeout

    async def deliver(self, message: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.url, json=message)
        except httpx.TimeoutException:
            raise DeliveryError(self.target_id, "Target timeout")
        except httpx.RequestError as e:
            raise DeliveryError(self.target_id, "Target unreachable", {"error": str(e)})

        if response.status_code >= 400:
            raise DeliveryError(
                self.target_id,
                "Target returned an error",
                {"status_code": response.status_code}
            )

        try:
            return response.json()
        except ValueError:
            raise DeliveryError(self.target_id, "Target returned a non-JSON response")

    def describe(self) -> Dict[str, Any]:
        return {**super().describe(), "url": self.url}


class CallbackDeliveryTarget(DeliveryTarget):
    """In-process consumer backed by an async callable."""

    def __init__(self, target_id: str, origin: str, callback: Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]):
        super().__init__(target_id, origin)
        self.callback = callback

    async def deliver(self, message: Dict[str, Any]) -> Dict[str, Any]:
        return await self.callback(message)


class TargetRegistry:
    """Live set of consumer endpoints; membership may change at any time."""

    def __init__(self):
        self.logger = get_logger("relay.delivery.registry")
        self._targets: Dict[str, DeliveryTarget] = {}

    def register(self, target: DeliveryTarget) -> str:
        """Add or replace a target."""
        self._targets[target.target_id] = target
        self.logger.info(
            "Delivery target registered",
            target_id=target.target_id,
            origin=target.origin,
            total_targets=len(self._targets)
        )
        return target.target_id

    def register_http(self, url: str, origin: str, target_id: Optional[str] = None, timeout: float = 5.0) -> str:
        target_id = target_id or str(uuid.uuid4())
        return self.register(HttpDeliveryTarget(target_id, origin, url, timeout=timeout))

    def unregister(self, target_id: str):
        if target_id not in self._targets:
            raise NotFoundError("Delivery target not found", {"target_id": target_id})

        del self._targets[target_id]
        self.logger.info(
            "Delivery target removed",
            target_id=target_id,
            total_targets=len(self._targets)
        )

    def get(self, target_id: str) -> Optional[DeliveryTarget]:
        return self._targets.get(target_id)

    def query(self, pattern: Optional[str] = None) -> List[DeliveryTarget]:
        """Targets whose origin matches ``pattern`` (all targets when None)."""
        return [
            target for target in list(self._targets.values())
            if pattern is None or fnmatchcase(target.origin, pattern)
        ]

    def list_targets(self) -> List[Dict[str, Any]]:
        return [target.describe() for target in self._targets.values()]

    def __len__(self) -> int:
        return len(self._targets)
