"""
Connectivity monitor for the field device.
Platform online/offline signals are link-layer heuristics only; the sync
engine still treats a failed flush after an online edge as a normal failure.
"""
import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, List, Optional

logger = logging.getLogger(__name__)


class ConnectivityState(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


class ConnectivityMonitor:
    """Tracks the last known network state and notifies subscribers on edges only."""

    def __init__(self, initial_online: bool = True):
        self._state = ConnectivityState.ONLINE if initial_online else ConnectivityState.OFFLINE
        self._subscribers: List[Callable[[ConnectivityState], None]] = []
        self._probe_task: Optional[asyncio.Task] = None

    def current_status(self) -> ConnectivityState:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state == ConnectivityState.ONLINE

    def subscribe(self, callback: Callable[[ConnectivityState], None]) -> Callable[[], None]:
        """Register ``callback(state)`` for transitions. Returns an unsubscribe function."""
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def report_signal(self, online: bool) -> bool:
        """Feed a platform signal. Returns True when it changed the state."""
        new_state = ConnectivityState.ONLINE if online else ConnectivityState.OFFLINE
        if new_state == self._state:
            return False
        self._state = new_state
        logger.info("Connectivity changed: %s", new_state.value)
        for callback in list(self._subscribers):
            try:
                callback(new_state)
            except Exception:
                logger.exception("Connectivity subscriber failed")
        return True

    # ------------------------------------------------------------------
    # Active probing
    # ------------------------------------------------------------------

    def start_probe(self, probe: Callable[[], Awaitable[bool]], interval: float) -> None:
        """Poll ``probe()`` every ``interval`` seconds on the running loop."""
        if self._probe_task is not None and not self._probe_task.done():
            return
        self._probe_task = asyncio.get_running_loop().create_task(self._probe_loop(probe, interval))

    async def stop_probe(self) -> None:
        task, self._probe_task = self._probe_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _probe_loop(self, probe: Callable[[], Awaitable[bool]], interval: float) -> None:
        while True:
            try:
                reachable = bool(await probe())
            except Exception as exc:
                logger.debug("Connectivity probe failed: %s", exc)
                reachable = False
            self.report_signal(reachable)
            await asyncio.sleep(interval)
