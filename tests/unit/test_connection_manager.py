# =============================================================================
# tests/unit/test_connection_manager.py
# Unit Tests for AvailabilityProber and ConnectivityMonitor
# =============================================================================

import threading
import time
import pytest

from flow_core.errors import TransportError, Unauthenticated
from flow_core.offline.connection_manager import AvailabilityProber, ConnectivityMonitor


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class TestAvailabilityProberCaching:
    """Probe results are trusted for the TTL"""

    def test_two_probes_within_ttl_hit_network_once(self, fake_remote):
        clock = FakeClock()
        prober = AvailabilityProber(fake_remote.ping, ttl_seconds=10, clock=clock)

        assert prober.probe() is True
        clock.advance(9.9)
        assert prober.probe() is True

        assert fake_remote.ping_count == 1

    def test_stale_result_is_reprobed(self, fake_remote):
        clock = FakeClock()
        prober = AvailabilityProber(fake_remote.ping, ttl_seconds=10, clock=clock)

        prober.probe()
        clock.advance(10)
        prober.probe()

        assert fake_remote.ping_count == 2

    def test_invalidate_forces_network_check(self, fake_remote):
        prober = AvailabilityProber(fake_remote.ping, ttl_seconds=60)

        prober.probe()
        prober.invalidate()
        prober.probe()

        assert fake_remote.ping_count == 2

    def test_concurrent_probes_share_one_check(self):
        calls = []
        gate = threading.Event()

        def slow_ping():
            calls.append(1)
            gate.wait(1)

        prober = AvailabilityProber(slow_ping, ttl_seconds=60)
        threads = [threading.Thread(target=prober.probe) for _ in range(5)]
        for t in threads:
            t.start()
        time.sleep(0.05)
        gate.set()
        for t in threads:
            t.join(2)

        assert len(calls) == 1


class TestAvailabilityProberStatus:
    """Failures mark the remote store unavailable"""

    def test_transport_error_is_unavailable(self, fake_remote):
        fake_remote.offline = True
        prober = AvailabilityProber(fake_remote.ping)

        assert prober.probe() is False
        status = prober.status
        assert status.available is False
        assert status.consecutive_failures == 1
        assert status.last_error.startswith("TransportError")
        assert status.last_checked is not None

    def test_unauthenticated_counts_as_unavailable(self, fake_remote):
        fake_remote.fail_next(Unauthenticated("no session"))
        prober = AvailabilityProber(fake_remote.ping)

        assert prober.probe() is False
        assert "Unauthenticated" in prober.status.last_error

    def test_success_resets_failure_count(self, fake_remote):
        fake_remote.fail_next(TransportError("down"), TransportError("down"))
        prober = AvailabilityProber(fake_remote.ping, ttl_seconds=0)

        prober.probe()
        prober.probe()
        assert prober.status.consecutive_failures == 2

        assert prober.probe() is True
        assert prober.status.consecutive_failures == 0
        assert prober.status.last_error is None

    def test_status_is_a_snapshot(self, fake_remote):
        prober = AvailabilityProber(fake_remote.ping)
        snapshot = prober.status
        prober.probe()

        assert snapshot.available is False
        assert prober.status.available is True


class TestConnectivityMonitor:
    """Online/offline callbacks fire on transitions only"""

    def test_first_check_does_not_fire(self):
        events = []
        monitor = ConnectivityMonitor(
            on_online=lambda: events.append("online"),
            on_offline=lambda: events.append("offline"),
            check=lambda: True,
        )

        monitor.check_now()

        assert events == []
        assert monitor.is_online is True

    def test_transitions_fire_callbacks(self):
        states = iter([True, False, False, True])
        events = []
        monitor = ConnectivityMonitor(
            on_online=lambda: events.append("online"),
            on_offline=lambda: events.append("offline"),
            check=lambda: next(states),
        )

        for _ in range(4):
            monitor.check_now()

        assert events == ["offline", "online"]

    def test_failing_callback_does_not_stop_others(self):
        states = iter([False, True])
        events = []

        def broken():
            raise RuntimeError("callback bug")

        monitor = ConnectivityMonitor(on_online=broken, check=lambda: next(states))
        monitor.register_callbacks(on_online=lambda: events.append("online"))

        monitor.check_now()
        monitor.check_now()

        assert events == ["online"]

    def test_background_thread_starts_and_stops(self):
        checked = threading.Event()

        def check():
            checked.set()
            return True

        monitor = ConnectivityMonitor(check=check, interval_seconds=0.01)
        monitor.start()
        try:
            assert checked.wait(1)
        finally:
            monitor.stop()
