"""Process-wide registry of cleanup callbacks run at interpreter exit."""

import atexit
import threading
from collections.abc import Callable, Hashable

from ..utils.logging import LogContext, get_logger

logger = get_logger(__name__, LogContext.ORCHESTRATOR)


class CleanupRegistry:
    """Callbacks keyed by owner, each run at most once.

    The ``atexit`` handler is installed on the first registration only.
    Unregistering a key before exit means its callback never runs.
    """

    def __init__(self) -> None:
        self._callbacks: dict[Hashable, Callable[[], None]] = {}
        self._lock = threading.Lock()
        self._installed = False

    def register(self, key: Hashable, callback: Callable[[], None]) -> bool:
        """Register ``callback`` under ``key``.

        Returns:
            False if the key was already registered
        """
        with self._lock:
            if key in self._callbacks:
                return False
            self._callbacks[key] = callback
            if not self._installed:
                atexit.register(self.run_all)
                self._installed = True
        return True

    def unregister(self, key: Hashable) -> bool:
        with self._lock:
            return self._callbacks.pop(key, None) is not None

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._callbacks

    def run(self, key: Hashable) -> bool:
        """Pop and run one callback.

        Returns:
            True if a callback was registered and has now run
        """
        with self._lock:
            callback = self._callbacks.pop(key, None)
        if callback is None:
            return False
        try:
            callback()
        except Exception as e:
            logger.error("Cleanup callback failed", exception=e, key=str(key))
        return True

    def run_all(self) -> None:
        with self._lock:
            keys = list(self._callbacks)
        for key in keys:
            self.run(key)


_cleanup_registry: CleanupRegistry | None = None


def get_cleanup_registry() -> CleanupRegistry:
    """Get the global cleanup registry instance.

    Returns:
        CleanupRegistry instance
    """
    global _cleanup_registry
    if _cleanup_registry is None:
        _cleanup_registry = CleanupRegistry()
    return _cleanup_registry
