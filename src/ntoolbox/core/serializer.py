"""
Operation serializer.

At most one device operation runs at a time, on one background worker.
A submit while another operation is in flight is rejected (``None``), never
queued. Around every operation the serializer:

1. disables front-end controls (``on_busy_changed(False)``),
2. stops the presence monitor so the operation owns the device link,
3. runs the operation,
4. restarts the monitor if it was running before,
5. re-enables controls and delivers the OperationResult to ``on_complete``,
6. retires the ticket.

Steps 4-6 run on every exit path. The ticket is retired only once the
completion callback has been handed to ``dispatch``, so a new submit cannot
overtake the previous operation's completion. With the default dispatch this
means a submit made from inside ``on_complete`` is rejected. An operation that raises is logged and
reported as a failed result. Callbacks are handed to ``dispatch``, which a
GUI replaces with "post to the UI thread"; the default calls them directly on
the worker thread.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .results import OperationResult

logger = logging.getLogger(__name__)

Dispatch = Callable[[Callable[[], None]], None]
ProgressSink = Callable[[int], None]
Operation = Callable[[ProgressSink], OperationResult]


def _call_directly(fn: Callable[[], None]) -> None:
    fn()


@dataclass
class OperationTicket:
    """Handle for the operation in flight."""
    name: str
    future: Future = field(repr=False)

    @property
    def done(self) -> bool:
        return self.future.done()

    def result(self, timeout: Optional[float] = None) -> OperationResult:
        """Block until the operation finished and return its result."""
        return self.future.result(timeout)


class OperationSerializer:
    """
    Single-worker runner for device operations.

    Args:
        monitor: Object with ``start_monitoring()``, ``stop_monitoring()`` and
            a ``monitoring`` property (HidTransport), or None
        dispatch: Delivers callbacks on the front end's thread
        on_busy_changed: Called with False when controls must be disabled
            and True when they can be enabled again

    Example:
        serializer = OperationSerializer(monitor=transport)
        ticket = serializer.submit("read_dataflash", lambda progress: read(progress))
        if ticket is None:
            print("busy")
    """

    def __init__(
        self,
        monitor: Any = None,
        dispatch: Optional[Dispatch] = None,
        on_busy_changed: Optional[Callable[[bool], None]] = None,
    ):
        self.monitor = monitor
        self.dispatch = dispatch or _call_directly
        self.on_busy_changed = on_busy_changed
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ntoolbox-worker")
        self._lock = threading.Lock()
        self._ticket: Optional[OperationTicket] = None

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @property
    def current(self) -> Optional[OperationTicket]:
        return self._ticket

    def submit(
        self,
        name: str,
        operation: Operation,
        on_progress: Optional[ProgressSink] = None,
        on_complete: Optional[Callable[[OperationResult], None]] = None,
    ) -> Optional[OperationTicket]:
        """
        Start ``operation(progress)`` on the worker.

        Returns:
            The ticket, or None when another operation is in flight.
        """
        if not self._lock.acquire(blocking=False):
            logger.warning(f"Operation '{name}' rejected: another operation is running")
            return None

        registered = threading.Event()
        try:
            self._set_busy(True)
            future = self._executor.submit(
                self._run, name, operation, on_progress, on_complete, registered
            )
        except RuntimeError:
            self._set_busy(False)
            self._lock.release()
            raise
        ticket = OperationTicket(name=name, future=future)
        self._ticket = ticket
        # The worker holds until the ticket is published so it cannot retire it early.
        registered.set()
        return ticket

    def _set_busy(self, busy: bool) -> None:
        if self.on_busy_changed:
            enabled = not busy
            self.dispatch(lambda: self.on_busy_changed(enabled))

    def _run(
        self,
        name: str,
        operation: Operation,
        on_progress: Optional[ProgressSink],
        on_complete: Optional[Callable[[OperationResult], None]],
        registered: threading.Event,
    ) -> OperationResult:
        registered.wait()

        def progress(percent: int) -> None:
            if on_progress:
                self.dispatch(lambda: on_progress(percent))

        result: Optional[OperationResult] = None
        was_monitoring = False
        try:
            if self.monitor is not None and self.monitor.monitoring:
                self.monitor.stop_monitoring()
                was_monitoring = True
            logger.debug(f"Operation '{name}' started")
            result = operation(progress)
        except Exception as exc:
            logger.exception(f"Operation '{name}' failed unexpectedly")
            result = OperationResult.failure(operation=name, error=str(exc) or type(exc).__name__)
        finally:
            if result is None:
                result = OperationResult.failure(operation=name, error="Operation interrupted")
            if was_monitoring:
                try:
                    self.monitor.start_monitoring()
                except Exception:
                    logger.exception("Could not restart the connection monitor")
                    result.add_warning("Connection monitoring could not be restarted")
            try:
                self._set_busy(False)
                if on_complete:
                    final = result
                    self.dispatch(lambda: on_complete(final))
            finally:
                self._ticket = None
                self._lock.release()
            logger.debug(f"Operation '{name}' finished (ok={result.ok})")
        return result

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
