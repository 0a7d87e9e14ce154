"""Timer services driving ticks and delayed command effects.

``ThreadingTimerService`` runs on wall-clock time with background threads.
``VirtualTimerService`` keeps a virtual clock that only moves when
``advance()`` is called, which makes whole runs reproducible.
"""

import heapq
import itertools
import logging
import threading
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class TimerHandle:
    """Handle to a scheduled callback."""

    def __init__(self):
        self._cancelled = False
        self._fired = False

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._fired)

    def cancel(self) -> None:
        self._cancelled = True


class TimerService:
    """Interface for one-shot and periodic scheduling."""

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        raise NotImplementedError

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        raise NotImplementedError

    def shutdown(self) -> None:
        pass


class _ThreadTimerHandle(TimerHandle):
    def __init__(self):
        super().__init__()
        self.stop_event = threading.Event()
        self.timer: Optional[threading.Timer] = None
        self.thread: Optional[threading.Thread] = None

    def cancel(self) -> None:
        super().cancel()
        self.stop_event.set()
        if self.timer:
            self.timer.cancel()


class ThreadingTimerService(TimerService):
    """Wall-clock timers. Delays are divided by ``time_acceleration``.

    A one-shot handle stays active until its callback has returned, so a
    callback that first waits for a lock can still be cancelled meanwhile.
    Only handles that are still active are tracked.
    """

    def __init__(self, time_acceleration: float = 1.0):
        self.time_acceleration = time_acceleration
        self._handles: List[_ThreadTimerHandle] = []
        self._handles_lock = threading.Lock()

    def _scaled(self, seconds: float) -> float:
        return seconds / self.time_acceleration

    def _track(self, handle: _ThreadTimerHandle) -> None:
        with self._handles_lock:
            self._handles = [h for h in self._handles if h.active]
            self._handles.append(handle)

    def _forget(self, handle: _ThreadTimerHandle) -> None:
        with self._handles_lock:
            if handle in self._handles:
                self._handles.remove(handle)

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = _ThreadTimerHandle()

        def fire():
            try:
                if handle.active:
                    try:
                        callback()
                    finally:
                        handle._fired = True
            finally:
                self._forget(handle)

        handle.timer = threading.Timer(self._scaled(delay), fire)
        handle.timer.daemon = True
        self._track(handle)
        handle.timer.start()
        return handle

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        handle = _ThreadTimerHandle()
        period = self._scaled(interval)

        def loop():
            while not handle.stop_event.wait(period):
                try:
                    callback()
                except Exception as e:
                    logger.error(f"Error in periodic callback: {e}")

        handle.thread = threading.Thread(target=loop, daemon=True)
        self._track(handle)
        handle.thread.start()
        return handle

    def shutdown(self) -> None:
        with self._handles_lock:
            handles = list(self._handles)
            self._handles.clear()
        for handle in handles:
            handle.cancel()
            if handle.thread:
                handle.thread.join(timeout=5)


class _VirtualEntry(TimerHandle):
    def __init__(self, callback: Callback, interval: Optional[float]):
        super().__init__()
        self.callback = callback
        self.interval = interval


class VirtualTimerService(TimerService):
    """Deterministic timers on a virtual clock.

    Callbacks fire in due-time order; callbacks due at the same instant fire
    in the order they were scheduled.
    """

    def __init__(self):
        self.now = 0.0
        self._queue: List[Tuple[float, int, _VirtualEntry]] = []
        self._seq = itertools.count()

    def _push(self, due: float, entry: _VirtualEntry) -> None:
        heapq.heappush(self._queue, (due, next(self._seq), entry))

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        entry = _VirtualEntry(callback, interval=None)
        self._push(self.now + delay, entry)
        return entry

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}")
        entry = _VirtualEntry(callback, interval=interval)
        self._push(self.now + interval, entry)
        return entry

    @property
    def pending(self) -> int:
        return sum(1 for _, _, entry in self._queue if entry.active)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing everything that falls due. Returns callbacks fired."""
        deadline = self.now + seconds
        fired = 0
        while self._queue and self._queue[0][0] <= deadline:
            due, _, entry = heapq.heappop(self._queue)
            if not entry.active:
                continue
            self.now = due
            if entry.interval is not None:
                self._push(due + entry.interval, entry)
            try:
                entry.callback()
            finally:
                if entry.interval is None:
                    entry._fired = True
            fired += 1
        self.now = deadline
        return fired

    def shutdown(self) -> None:
        for _, _, entry in self._queue:
            entry.cancel()
        self._queue.clear()
