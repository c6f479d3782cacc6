from enum import Enum
from typing import Callable, List

import structlog

logger = structlog.get_logger()


class ConnectivityState(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"


class ConnectivityMonitor:
    """Two-state online/offline machine fed by explicit network events."""

    def __init__(self, initial_online: bool = True):
        self.state = ConnectivityState.ONLINE if initial_online else ConnectivityState.OFFLINE
        self._listeners: List[Callable[[], None]] = []

    @property
    def is_online(self) -> bool:
        return self.state == ConnectivityState.ONLINE

    def on_online(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    def start(self) -> None:
        if self.is_online:
            self._fire()

    def set_online(self, online: bool) -> None:
        new_state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        if new_state == self.state:
            return
        previous, self.state = self.state, new_state
        logger.info("connectivity_changed", previous=previous.value, state=new_state.value)
        if new_state == ConnectivityState.ONLINE:
            self._fire()

    def _fire(self) -> None:
        for callback in list(self._listeners):
            try:
                callback()
            except Exception as e:
                logger.error("connectivity_listener_failed", listener=getattr(callback, "__qualname__", repr(callback)), error=str(e))
