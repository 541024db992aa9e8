import threading
import time

from homeops.services.janitor import MAX_SWEEP_INTERVAL_SECONDS, MIN_SWEEP_INTERVAL_SECONDS, Janitor, sweep_interval_for


class TestSweepInterval:
    def test_bounded_by_ttl_and_ceiling(self):
        assert sweep_interval_for(30) == 30
        assert sweep_interval_for(3600) == MAX_SWEEP_INTERVAL_SECONDS

    def test_tiny_ttl_is_floored(self):
        assert sweep_interval_for(0.001) == MIN_SWEEP_INTERVAL_SECONDS
        assert MIN_SWEEP_INTERVAL_SECONDS >= 1


class TestJanitor:
    def test_sweeps_until_stopped(self):
        swept = threading.Event()

        def sweep():
            swept.set()
            return 1

        janitor = Janitor("test", sweep, 0.01)
        assert janitor.running is True
        assert swept.wait(2)

        janitor.stop()
        janitor.stop()
        assert janitor.running is False

    def test_sweep_errors_do_not_kill_thread(self):
        calls = []

        def sweep():
            calls.append(1)
            if len(calls) == 1:
                raise RuntimeError("boom")
            return 0

        janitor = Janitor("test", sweep, 0.01)
        try:
            deadline = time.monotonic() + 2
            while len(calls) < 2 and time.monotonic() < deadline:
                time.sleep(0.01)
            assert len(calls) >= 2
            assert janitor.running is True
        finally:
            janitor.stop()

    def test_no_thread_without_interval(self):
        janitor = Janitor("test", lambda: 0, 0)
        assert janitor.running is False
        janitor.stop()
