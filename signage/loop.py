import heapq
import itertools
import logging
import queue
import threading
import time
from typing import Any, Callable, List, Optional, Tuple


class TimerHandle:
    def __init__(self, callback: Callable[..., Any], args: Tuple, interval: Optional[float] = None) -> None:
        self.callback = callback
        self.args = args
        self.interval = interval
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class Dispatcher:
    """Single-threaded callback loop.

    Every piece of application state is touched only from callbacks run here.
    Other threads hand work over with ``post``; blocking I/O goes through
    ``run_in_background`` and comes back as a posted completion.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        spawn: Optional[Callable[[Callable[[], None]], None]] = None,
    ) -> None:
        self._clock = clock
        self._spawn = spawn or self._spawn_thread
        self._queue: "queue.Queue[Tuple[Callable[..., Any], Tuple]]" = queue.Queue()
        self._timers: List[Tuple[float, int, TimerHandle]] = []
        self._timers_lock = threading.Lock()
        self._seq = itertools.count()
        self._stop_event = threading.Event()

    @staticmethod
    def _spawn_thread(target: Callable[[], None]) -> None:
        threading.Thread(target=target, daemon=True).start()

    def now(self) -> float:
        return self._clock()

    def post(self, callback: Callable[..., Any], *args: Any) -> None:
        self._queue.put((callback, args))

    def call_later(self, delay_sec: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        handle = TimerHandle(callback, args)
        self._schedule(self._clock() + max(float(delay_sec), 0.0), handle)
        return handle

    def call_every(self, interval_sec: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        interval = float(interval_sec)
        if interval <= 0:
            raise ValueError("interval_sec must be positive")
        handle = TimerHandle(callback, args, interval=interval)
        self._schedule(self._clock() + interval, handle)
        return handle

    def _schedule(self, due: float, handle: TimerHandle) -> None:
        with self._timers_lock:
            heapq.heappush(self._timers, (due, next(self._seq), handle))
        # Wake a blocked run() so it recomputes its deadline.
        self._queue.put((_noop, ()))

    def run_in_background(
        self,
        work: Callable[[], Any],
        on_done: Optional[Callable[[Any], Any]] = None,
        on_error: Optional[Callable[[Exception], Any]] = None,
    ) -> None:
        def _target() -> None:
            try:
                result = work()
            except Exception as exc:
                if on_error is not None:
                    self.post(on_error, exc)
                else:
                    logging.warning("Background task failed: %s", exc)
                return
            if on_done is not None:
                self.post(on_done, result)

        self._spawn(_target)

    def _invoke(self, callback: Callable[..., Any], args: Tuple) -> None:
        try:
            callback(*args)
        except Exception:
            logging.exception("Callback %r failed", callback)

    def _pop_due_timer(self) -> Optional[TimerHandle]:
        with self._timers_lock:
            while self._timers:
                due, _seq, handle = self._timers[0]
                if handle.cancelled:
                    heapq.heappop(self._timers)
                    continue
                if due > self._clock():
                    return None
                heapq.heappop(self._timers)
                if handle.interval is not None:
                    heapq.heappush(self._timers, (due + handle.interval, next(self._seq), handle))
                return handle
        return None

    def _next_deadline(self) -> Optional[float]:
        with self._timers_lock:
            while self._timers and self._timers[0][2].cancelled:
                heapq.heappop(self._timers)
            if not self._timers:
                return None
            return self._timers[0][0]

    def run_pending(self) -> int:
        ran = 0
        while True:
            handle = self._pop_due_timer()
            if handle is not None:
                self._invoke(handle.callback, handle.args)
                ran += 1
                continue
            try:
                callback, args = self._queue.get_nowait()
            except queue.Empty:
                return ran
            if callback is _noop:
                continue
            self._invoke(callback, args)
            ran += 1

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        stop = stop_event or self._stop_event
        while not stop.is_set() and not self._stop_event.is_set():
            self.run_pending()
            deadline = self._next_deadline()
            timeout = 0.5 if deadline is None else min(max(deadline - self._clock(), 0.0), 0.5)
            try:
                callback, args = self._queue.get(timeout=timeout)
            except queue.Empty:
                continue
            if callback is not _noop:
                self._invoke(callback, args)

    def stop(self) -> None:
        self._stop_event.set()
        self._queue.put((_noop, ()))

    def cancel_all(self) -> None:
        with self._timers_lock:
            for _due, _seq, handle in self._timers:
                handle.cancel()
            self._timers = []


def _noop() -> None:
    return None
