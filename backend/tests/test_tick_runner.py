"""
Tests for the in-process tick guard and periodic loop runner.
"""

import threading
import time

from services.tick_runner import TickGuard, TickRunner


# =============================================================================
# Guard
# =============================================================================

class TestTickGuard:

    def test_second_acquire_fails_until_release(self):
        guard = TickGuard('test', watchdog_seconds=60)
        assert guard.acquire() is True
        assert guard.acquire() is False
        guard.release()
        assert guard.acquire() is True
        guard.release()

    def test_watchdog_force_releases(self):
        guard = TickGuard('test', watchdog_seconds=0.05)
        assert guard.acquire() is True

        deadline = time.time() + 2
        while guard.running and time.time() < deadline:
            time.sleep(0.01)

        assert guard.running is False
        assert guard.acquire() is True
        guard.release()

    def test_release_cancels_watchdog(self):
        guard = TickGuard('test', watchdog_seconds=0.05)
        guard.acquire()
        guard.release()
        assert guard._timer is None


# =============================================================================
# Runner
# =============================================================================

class TestTickRunner:

    def test_run_once_counts_failures_without_raising(self, app):
        runner = TickRunner(app=app)

        def explode():
            raise RuntimeError('boom')

        task = runner.add('explode', explode, 1.0)
        runner.run_once(task)

        assert task.runs == 1
        assert task.failures == 1

    def test_run_once_pushes_app_context(self, app):
        from flask import current_app

        seen = []
        runner = TickRunner(app=app)
        task = runner.add('ctx', lambda: seen.append(current_app.name), 1.0)

        runner.run_once(task)

        assert seen == [app.name]

    def test_loops_until_stopped(self, app):
        ran = threading.Event()
        calls = []

        def tick():
            calls.append(1)
            if len(calls) >= 2:
                ran.set()

        runner = TickRunner(app=app)
        task = runner.add('fast', tick, 0.01)
        runner.start()
        try:
            assert ran.wait(2.0)
        finally:
            runner.stop(timeout=2.0)

        assert task.runs >= 2
        assert runner.stop_event.is_set()
