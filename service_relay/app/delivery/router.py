"""
Fan-out of matched events to consumer endpoints.
"""

import asyncio
import time
from typing import List, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector

from ..models import DeliveryResult, MatchedEvent
from .targets import DeliveryTarget, TargetRegistry


class DeliveryRouter:
    """Delivers a matched event to every currently registered target.

    Targets are looked up fresh for each event. Attempts run concurrently and
    each is bounded by ``timeout``; one target failing or hanging never holds
    up or fails the others. Failures are logged and dropped, never retried.
    """

    def __init__(
        self,
        registry: TargetRegistry,
        match_pattern: Optional[str] = None,
        timeout: float = 5.0,
        metrics: Optional[MetricsCollector] = None
    ):
        self.registry = registry
        self.match_pattern = match_pattern
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("relay.delivery.router")

    async def deliver(self, event: MatchedEvent) -> List[DeliveryResult]:
        targets = self.registry.query(self.match_pattern)
        if not targets:
            self.logger.info(
                "No delivery targets found",
                pattern=self.match_pattern,
                filter_id=event.filter_id
            )
            return []

        message = {"type": "deliver", "payload": event.to_dict()}
        results = await asyncio.gather(
            *(self._deliver_to(target, message) for target in targets)
        )

        self.logger.info(
            "Matched event delivered",
            filter_id=event.filter_id,
            target_count=len(results),
            succeeded=sum(1 for result in results if result.success),
            failed=sum(1 for result in results if not result.success)
        )
        return list(results)

    async def _deliver_to(self, target: DeliveryTarget, message: dict) -> DeliveryResult:
        start_time = time.monotonic()
        response = None
        error = None

        try:
            response = await asyncio.wait_for(target.deliver(message), timeout=self.timeout)
            if not isinstance(response, dict) or response.get("success") is not True:
                error = "Target reported failure"
        except asyncio.TimeoutError:
            error = f"Delivery timed out after {self.timeout}s"
        except Exception as e:
            error = str(e) or type(e).__name__

        duration = time.monotonic() - start_time
        result = DeliveryResult(
            target_id=target.target_id,
            success=error is None,
            error=error,
            duration_ms=round(duration * 1000, 2),
            response_data=response if isinstance(response, dict) else None
        )

        if result.success:
            self.logger.info(
                "Event delivered to target",
                target_id=target.target_id,
                duration_ms=result.duration_ms
            )
        else:
            self.logger.error(
                "Failed to deliver event to target",
                target_id=target.target_id,
                error=error,
                duration_ms=result.duration_ms
            )

        if self.metrics:
            self.metrics.record_delivery("success" if result.success else "failure", duration)

        return result
