# =============================================================================
# flow_core/offline/connection_manager.py
# Remote Availability Probing and Connectivity Monitoring
# =============================================================================
"""
AvailabilityProber - Answers "is the remote store usable right now?"

Features:
- Cheapest possible remote read (one id, limit 1)
- Result cached for a bounded interval, manual invalidate()
- One network check per cache miss even with concurrent callers

ConnectivityMonitor - Produces online/offline transition signals.

Features:
- Background thread checking internet reachability
- Callbacks fired on transitions only
"""

from __future__ import annotations
import socket
import threading
import time
from typing import Callable, List, Optional, Sequence, Tuple
import logging

from flow_core.errors import StorageError
from flow_core.offline.models import AvailabilityStatus, utcnow

logger = logging.getLogger(__name__)


class AvailabilityProber:
    """
    Cached remote availability check.

    Usage:
        prober = AvailabilityProber(remote.ping, ttl_seconds=10)
        if prober.probe():
            # Remote store is usable
        prober.invalidate()  # after a connectivity-restored event
    """

    def __init__(
        self,
        ping: Callable[[], object],
        ttl_seconds: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            ping: Remote round trip; any StorageError means unavailable
            ttl_seconds: How long a result is trusted
            clock: Monotonic clock (injectable for tests)
        """
        self._ping = ping
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._status = AvailabilityStatus()
        self._checked_at: Optional[float] = None
        self._checked_generation = 0
        self._generation = 0
        self._lock = threading.Lock()
        self.probe_count = 0

    @property
    def status(self) -> AvailabilityStatus:
        """Snapshot of the last probe result."""
        return self._status.snapshot()

    def is_stale(self) -> bool:
        if self._checked_at is None or self._checked_generation != self._generation:
            return True
        return (self._clock() - self._checked_at) >= self.ttl_seconds

    def probe(self) -> bool:
        """
        Return remote availability, hitting the network only when the cached
        result is stale or was invalidated.
        """
        with self._lock:
            if not self.is_stale():
                return self._status.available
            return self._check()

    def invalidate(self) -> None:
        """Force the next probe() to bypass the cache; never waits on a probe in flight."""
        self._generation += 1
        logger.debug("Availability cache invalidated")

    def _check(self) -> bool:
        self.probe_count += 1
        generation = self._generation
        available = False
        error_message = None

        try:
            self._ping()
            available = True
        except StorageError as e:
            # Unauthenticated counts as unavailable for storage purposes
            error_message = f"{e.kind.value}: {e.message}"
        except Exception as e:
            error_message = f"{type(e).__name__}: {e}"
            logger.warning(f"Unexpected error while probing remote store: {e}")

        previous = self._status.available
        self._status.available = available
        self._status.last_checked = utcnow()
        self._status.last_error = error_message
        if available:
            self._status.consecutive_failures = 0
        else:
            self._status.consecutive_failures += 1
        self._checked_at = self._clock()
        self._checked_generation = generation

        if available != previous:
            logger.info(f"Remote store {'available' if available else 'unavailable'}"
                        + (f" ({error_message})" if error_message else ""))
        else:
            logger.debug(f"Probe result: available={available}")

        return available


class ConnectivityMonitor:
    """
    Background watcher that turns network reachability changes into
    online/offline signals.

    Usage:
        monitor = ConnectivityMonitor(
            on_online=manager.handle_connectivity_restored,
            on_offline=manager.handle_connectivity_lost,
        )
        monitor.start()
    """

    DEFAULT_HOSTS: Tuple[Tuple[str, int], ...] = (
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
        ("208.67.222.222", 53), # OpenDNS
    )

    def __init__(
        self,
        on_online: Optional[Callable[[], None]] = None,
        on_offline: Optional[Callable[[], None]] = None,
        interval_seconds: float = 30.0,
        timeout_seconds: float = 5.0,
        hosts: Sequence[Tuple[str, int]] = DEFAULT_HOSTS,
        check: Optional[Callable[[], bool]] = None,
    ):
        self.interval_seconds = interval_seconds
        self.timeout_seconds = timeout_seconds
        self.hosts = tuple(hosts)
        self._check = check or self.check_internet
        self._online_callbacks: List[Callable[[], None]] = [on_online] if on_online else []
        self._offline_callbacks: List[Callable[[], None]] = [on_offline] if on_offline else []
        self._is_online: Optional[bool] = None
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    @property
    def is_online(self) -> Optional[bool]:
        """Last observed state (None before the first check)."""
        return self._is_online

    def check_internet(self) -> bool:
        """
        Check internet connectivity by attempting to reach well-known hosts.

        Returns:
            True if any host accepts a TCP connection
        """
        for host, port in self.hosts:
            try:
                with socket.create_connection((host, port), timeout=self.timeout_seconds):
                    return True
            except OSError:
                continue
        return False

    def check_now(self) -> bool:
        """Run one check and fire callbacks if the state changed."""
        online = bool(self._check())
        previous = self._is_online
        self._is_online = online

        if previous is None or previous == online:
            return online

        logger.info(f"Connectivity changed: {'online' if online else 'offline'}")
        callbacks = self._online_callbacks if online else self._offline_callbacks
        for callback in list(callbacks):
            try:
                callback()
            except Exception as e:
                logger.error(f"Error in connectivity callback: {e}", exc_info=True)
        return online

    def register_callbacks(
        self,
        on_online: Optional[Callable[[], None]] = None,
        on_offline: Optional[Callable[[], None]] = None,
    ) -> None:
        if on_online and on_online not in self._online_callbacks:
            self._online_callbacks.append(on_online)
        if on_offline and on_offline not in self._offline_callbacks:
            self._offline_callbacks.append(on_offline)

    def start(self) -> None:
        """Start background monitoring."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectivityMonitor",
        )
        self._monitor_thread.start()
        logger.debug("Connectivity monitoring started")

    def stop(self) -> None:
        """Stop background monitoring."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
        logger.debug("Connectivity monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            try:
                self.check_now()
            except Exception as e:
                logger.error(f"Error in connectivity check: {e}")

            if self._stop_monitoring.wait(timeout=self.interval_seconds):
                break
