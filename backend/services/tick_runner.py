"""
Tick Runner - periodic background loops for the phone pipeline

Each component (fetch, transfer, bulk transfer, title sweep) gets one
daemon thread that pushes its own Flask app context and calls its tick
function every `interval` seconds until the shared stop event is set.

Within one process a TickGuard keeps ticks of the same component from
overlapping. A watchdog timer force-releases a guard that was held too
long, so one hung upstream call cannot stall a component forever.
Across processes only database claims exclude.
"""
import threading
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from services.pipeline_config import TICK_WATCHDOG_SECONDS

logger = logging.getLogger(__name__)


class TickGuard:
    """
    Non-blocking re-entrancy guard with a watchdog.

    Usage:
        if not guard.acquire():
            return
        try:
            ...
        finally:
            guard.release()
    """

    def __init__(self, name: str, watchdog_seconds: float = TICK_WATCHDOG_SECONDS):
        self.name = name
        self.watchdog_seconds = watchdog_seconds
        self._lock = threading.Lock()
        self._running = False
        self._timer: Optional[threading.Timer] = None

    @property
    def running(self) -> bool:
        return self._running

    def acquire(self) -> bool:
        with self._lock:
            if self._running:
                logger.debug(f"{self.name} tick already running; skipping")
                return False
            self._running = True
            self._cancel_timer()
            self._timer = threading.Timer(self.watchdog_seconds, self._expire)
            self._timer.daemon = True
            self._timer.start()
            return True

    def release(self) -> None:
        with self._lock:
            self._cancel_timer()
            self._running = False

    def _expire(self) -> None:
        with self._lock:
            if self._running:
                logger.warning(f"{self.name} tick guard timeout elapsed; releasing running flag.")
            self._running = False
            self._timer = None

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


@dataclass
class PeriodicTask:
    name: str
    fn: Callable[[], object]
    interval: float
    runs: int = 0
    failures: int = 0


@dataclass
class TickRunner:
    """Owns the loop threads and the stop event they share."""
    app: object
    stop_event: threading.Event = field(default_factory=threading.Event)
    tasks: List[PeriodicTask] = field(default_factory=list)
    _threads: Dict[str, threading.Thread] = field(default_factory=dict)

    def add(self, name: str, fn: Callable[[], object], interval: float) -> PeriodicTask:
        task = PeriodicTask(name=name, fn=fn, interval=interval)
        self.tasks.append(task)
        return task

    def run_once(self, task: PeriodicTask) -> None:
        """One tick in its own app context; exceptions are logged, never raised."""
        with self.app.app_context():
            try:
                task.fn()
            except Exception:
                task.failures += 1
                logger.exception(f"{task.name} tick failed")
            finally:
                task.runs += 1

    def _loop(self, task: PeriodicTask) -> None:
        logger.info(f"{task.name} loop started (every {task.interval}s)")
        while not self.stop_event.is_set():
            self.run_once(task)
            self.stop_event.wait(task.interval)
        logger.info(f"{task.name} loop stopped after {task.runs} ticks ({task.failures} failed)")

    def start(self) -> None:
        for task in self.tasks:
            thread = threading.Thread(target=self._loop, args=(task,), name=f"tick-{task.name}", daemon=True)
            self._threads[task.name] = thread
            thread.start()

    def stop(self, timeout: float = 30.0) -> None:
        self.stop_event.set()
        for name, thread in self._threads.items():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning(f"{name} loop did not stop within {timeout}s")
