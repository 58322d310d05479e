"""Online/offline status of the device."""
import logging
import threading
from typing import Callable, List

logger = logging.getLogger(__name__)

Listener = Callable[[bool], None]


class ConnectivityMonitor:
    """Tracks whether the backend is reachable and notifies listeners on change.

    Status is set by the platform's network observer through ``set_online`` and
    also follows the outcome of remote calls (``report_success`` /
    ``report_failure``).
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_online(self, online: bool) -> None:
        """Update the status, notifying listeners only on a transition."""
        with self._lock:
            if self._online == online:
                return
            self._online = online
            listeners = list(self._listeners)

        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        for listener in listeners:
            try:
                listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")

    def report_success(self) -> None:
        self.set_online(True)

    def report_failure(self) -> None:
        self.set_online(False)
