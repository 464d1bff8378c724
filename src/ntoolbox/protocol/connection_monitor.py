"""
Device presence monitor.

Polls a probe (usually ``HidTransport.is_connected``) on a daemon thread and
notifies subscribers when presence flips. Subscribers are never told about a
state they already know: two consecutive polls with the same answer produce
no callback.

The monitor is started and stopped explicitly. While an operation owns the
device link the operation serializer stops it, and starts it again afterwards.
"""

import logging
import threading
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

Probe = Callable[[], bool]
ConnectionCallback = Callable[[bool], None]
Dispatch = Callable[[Callable[[], None]], None]


def _call_directly(fn: Callable[[], None]) -> None:
    fn()


class ConnectionMonitor:
    """
    Polling presence monitor.

    Args:
        probe: Callable returning True while the device is present
        interval: Seconds between polls
        dispatch: Runs each notification; defaults to calling it on the
            monitor thread

    Example:
        monitor = ConnectionMonitor(transport.probe, interval=0.5)
        unsubscribe = monitor.subscribe(lambda up: print("connected" if up else "gone"))
        monitor.start()
        ...
        monitor.stop()
        unsubscribe()
    """

    def __init__(
        self,
        probe: Probe,
        interval: float = 1.0,
        dispatch: Optional[Dispatch] = None,
    ):
        self.probe = probe
        self.interval = interval
        self.dispatch = dispatch or _call_directly
        self._subscribers: List[ConnectionCallback] = []
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._connected = False

    @property
    def connected(self) -> bool:
        """Last observed presence. False until the first poll sees a device."""
        return self._connected

    @property
    def running(self) -> bool:
        """True while a poll thread is alive and has not been told to stop."""
        return (
            self._thread is not None
            and self._thread.is_alive()
            and not self._stop_event.is_set()
        )

    def subscribe(self, callback: ConnectionCallback) -> Callable[[], None]:
        """
        Register ``callback(connected)``.

        Returns:
            A callable that removes the subscription. Calling it twice is
            harmless.
        """
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def poll_once(self) -> bool:
        """Probe once and notify subscribers if presence changed."""
        try:
            present = bool(self.probe())
        except OSError as exc:
            logger.warning(f"Device presence probe failed: {exc}")
            present = False

        if present == self._connected:
            return present

        self._connected = present
        logger.info("Device connected" if present else "Device disconnected")
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            self.dispatch(lambda cb=callback: self._notify(cb, present))
        return present

    @staticmethod
    def _notify(callback: ConnectionCallback, present: bool) -> None:
        try:
            callback(present)
        except Exception:
            logger.exception("Connection subscriber raised")

    def start(self) -> None:
        """
        Start polling. Does nothing if already running.

        Raises:
            RuntimeError: If a stopped poll thread is still inside its probe;
                only one thread may poll the device at a time
        """
        thread = self._thread
        if thread is not None and thread.is_alive():
            if not self._stop_event.is_set():
                return
            thread.join(self.interval + 1.0)
            if thread.is_alive():
                raise RuntimeError("Previous connection monitor thread is still polling")
        # Each run gets its own event so a lingering thread can never be revived
        stop_event = threading.Event()
        self._stop_event = stop_event
        self._thread = threading.Thread(
            target=self._run, args=(stop_event,), name="ntoolbox-connection-monitor", daemon=True
        )
        self._thread.start()
        logger.debug(f"Connection monitor started (interval={self.interval}s)")

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop polling and wait for the poll thread to exit."""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        if thread is threading.current_thread():
            self._thread = None
        else:
            thread.join(timeout if timeout is not None else self.interval + 1.0)
            if thread.is_alive():
                logger.warning("Connection monitor thread did not exit; probe still blocked")
            else:
                self._thread = None
        logger.debug("Connection monitor stopped")

    def _run(self, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            self.poll_once()
            stop_event.wait(self.interval)
