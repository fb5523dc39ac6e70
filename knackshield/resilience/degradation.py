"""Graceful degradation for risky operations.

Provides:
- A registry of features currently running degraded
- Static fallback values registered per feature
- ``with_fallback``: operation, then fallback operation, then static fallback
"""

import inspect
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Optional, Union

from ..monitoring.metrics import degraded_features

logger = logging.getLogger(__name__)

Operation = Callable[[], Union[Any, Awaitable[Any]]]


@dataclass
class FallbackData:
    """A registered fallback value."""

    data: Any
    is_stale: bool = False
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: str = "fallback"  # cache, fallback or generated


async def _call(operation: Operation) -> Any:
    result = operation()
    if inspect.isawaitable(result):
        return await result
    return result


class DegradationRegistry:
    """Process-wide record of degraded features and their fallbacks.

    Construct one per process and pass it to the consumers that wrap risky
    operations; tests build a fresh instance each.

    Usage:
        registry = DegradationRegistry()
        registry.register_fallback("board_metrics", {"devices": 0})

        metrics = await registry.with_fallback(
            "board_metrics",
            lambda: service.read("object_7"),
        )
    """

    def __init__(self):
        self._degraded: set[str] = set()
        self._fallbacks: dict[str, FallbackData] = {}
        self._lock = threading.Lock()

    def register_fallback(self, feature: str, value: Any, source: str = "fallback") -> None:
        """Register a static fallback value for a feature."""
        with self._lock:
            self._fallbacks[feature] = FallbackData(data=value, source=source)

    def get_fallback(self, feature: str) -> Optional[FallbackData]:
        """Get the registered fallback, or None when nothing is registered."""
        with self._lock:
            return self._fallbacks.get(feature)

    def mark_degraded(self, feature: str) -> None:
        """Mark a feature as degraded."""
        with self._lock:
            newly = feature not in self._degraded
            self._degraded.add(feature)
        degraded_features.set(1, feature=feature)
        if newly:
            logger.warning(f'Feature "{feature}" marked as degraded - using fallback functionality')

    def mark_recovered(self, feature: str) -> None:
        """Mark a feature as recovered."""
        with self._lock:
            was_degraded = feature in self._degraded
            self._degraded.discard(feature)
        degraded_features.set(0, feature=feature)
        if was_degraded:
            logger.info(f'Feature "{feature}" recovered - restoring full functionality')

    def is_degraded(self, feature: str) -> bool:
        """Check if a feature is degraded."""
        with self._lock:
            return feature in self._degraded

    def degraded_features(self) -> list[str]:
        """Snapshot of currently degraded features."""
        with self._lock:
            return sorted(self._degraded)

    async def with_fallback(
        self,
        feature: str,
        operation: Operation,
        fallback_operation: Optional[Operation] = None,
    ) -> Any:
        """Execute an operation, degrading to fallbacks on failure.

        Args:
            feature: Feature name
            operation: Primary operation (sync or async callable)
            fallback_operation: Optional secondary operation tried on failure

        Returns:
            Operation result, fallback operation result or static fallback value

        Raises:
            Exception: The original error when no fallback is available
        """
        try:
            result = await _call(operation)
        except Exception as error:
            logger.error(f'Feature "{feature}" failed: {error}')
            self.mark_degraded(feature)

            if fallback_operation is not None:
                try:
                    return await _call(fallback_operation)
                except Exception as fallback_error:
                    logger.error(f'Fallback for "{feature}" also failed: {fallback_error}')

            fallback = self.get_fallback(feature)
            if fallback is not None:
                logger.info(f'Using fallback data for "{feature}"')
                return fallback.data

            raise

        if self.is_degraded(feature):
            self.mark_recovered(feature)
        return result

    def get_status(self) -> dict[str, Any]:
        """Get registry status."""
        with self._lock:
            return {
                "degraded": sorted(self._degraded),
                "fallbacks": sorted(self._fallbacks),
            }
