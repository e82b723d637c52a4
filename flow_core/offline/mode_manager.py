# =============================================================================
# flow_core/offline/mode_manager.py
# Storage Mode State Machine (remote / local / hybrid)
# =============================================================================
"""
ModeManager - Owns the current StorageMode and decides when to switch.

Features:
- Initial mode from forced configuration, credentials and a probe
- Connectivity-restored / connectivity-lost handling
- Automatic fallback to local after repeated remote failures
- Bounded automatic retries with exponential backoff
- Serialized transitions; current_mode never blocks
- Event callbacks for mode changes
"""

from __future__ import annotations
import threading
from datetime import datetime
from typing import Any, Callable, List, Optional, Tuple, Union
import logging

from flow_core.errors import ConfigurationError
from flow_core.offline.config import StorageConfig
from flow_core.offline.connection_manager import AvailabilityProber
from flow_core.offline.local_database import LocalCacheStore
from flow_core.offline.models import StorageMode, StorageProvider, StorageStatus, utcnow

logger = logging.getLogger(__name__)

TimerFactory = Callable[[float, Callable[[], None]], Any]


class ModeManager:
    """
    State machine for the active storage mode.

    Usage:
        manager = ModeManager(config, prober, local_store)
        manager.initialize()
        if manager.current_mode is StorageMode.LOCAL:
            ...
        manager.handle_connectivity_restored()
    """

    def __init__(
        self,
        config: StorageConfig,
        prober: AvailabilityProber,
        local_store: LocalCacheStore,
        on_remote_restored: Optional[Callable[[], None]] = None,
        timer_factory: TimerFactory = threading.Timer,
    ):
        """
        Args:
            config: Storage configuration (read on every decision, so hot
                    reloads take effect)
            prober: Remote availability prober
            local_store: Local cache; must accept writes to enter local mode
            on_remote_restored: Called after a successful local -> remote
                                switch when offline sync is enabled
            timer_factory: threading.Timer compatible factory for retries
        """
        self.config = config
        self.prober = prober
        self.local_store = local_store
        self.on_remote_restored = on_remote_restored
        self._timer_factory = timer_factory

        # Settled state; read without locking
        self._mode = StorageMode.LOCAL
        self._last_switch: Optional[datetime] = None
        self._consecutive_failures = 0
        self._retry_count = 0
        self._is_online: Optional[bool] = None
        self._preferred_online_mode = StorageMode.REMOTE
        self._providers: Tuple[StorageProvider, ...] = ()

        self._state_lock = threading.Lock()
        self._transition_active = False
        self._pending_transition: Optional[Tuple[str, Callable[[], None]]] = None
        self._retry_timer: Optional[Any] = None
        self._callbacks: List[Callable[[StorageStatus], None]] = []
        self._initialized = False
        self._shutdown = False

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def current_mode(self) -> StorageMode:
        """Last settled mode; never blocks on an in-flight transition."""
        return self._mode

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def retry_count(self) -> int:
        return self._retry_count

    @property
    def retries_exhausted(self) -> bool:
        return self._retry_count >= self.config.remote_retry_attempts

    @property
    def is_transitioning(self) -> bool:
        return self._transition_active

    @property
    def remote_enabled(self) -> bool:
        """Whether configuration allows the remote store at all."""
        cfg = self.config
        return (
            cfg.enable_database
            and not cfg.force_local_mode
            and cfg.storage_mode != "local"
            and cfg.has_remote_credentials
        )

    # =========================================================================
    # INITIALIZATION
    # =========================================================================

    def initialize(self) -> StorageMode:
        """Resolve the startup mode."""
        if self._initialized:
            return self._mode

        mode = self._run_transition("initialize", lambda: self._apply_initial_mode("startup"))
        self._initialized = True
        logger.info(f"Mode manager initialized with mode: {mode.value}")
        return mode

    def _resolve_initial_mode(self) -> StorageMode:
        cfg = self.config

        if cfg.force_local_mode:
            logger.info("Local mode forced via configuration")
            return StorageMode.LOCAL

        if cfg.storage_mode != "auto":
            logger.info(f"Storage mode set to: {cfg.storage_mode}")
            return StorageMode(cfg.storage_mode)

        if not cfg.enable_database:
            logger.info("Remote store disabled, using local cache")
            return StorageMode.LOCAL

        if not cfg.has_remote_credentials:
            logger.info("No Supabase configuration found, using local cache")
            return StorageMode.LOCAL

        if self.prober.probe():
            logger.info("Remote store reachable, using remote mode")
            return StorageMode.REMOTE

        logger.warning("Remote store unavailable, falling back to local cache")
        return StorageMode.LOCAL

    def _apply_initial_mode(self, reason: str) -> None:
        mode = self._resolve_initial_mode()
        self._preferred_online_mode = StorageMode.HYBRID if mode is StorageMode.HYBRID else StorageMode.REMOTE
        if mode is StorageMode.LOCAL:
            self._enter_local(reason)
        else:
            self._set_mode(mode, reason)
        self.check_providers()

    def check_providers(self) -> Tuple[StorageProvider, ...]:
        """Refresh the provider list shown in diagnostics."""
        local_ok = self.local_store.check_writable()
        remote_ok = self.remote_enabled and self.prober.status.available
        providers = [
            StorageProvider("database", remote_ok, 2 if remote_ok else 0),
            StorageProvider("local", local_ok, 1 if local_ok else 0),
        ]
        self._providers = tuple(sorted(providers, key=lambda p: p.priority, reverse=True))
        if self.config.debug_storage:
            logger.debug(f"Available storage providers: {self._providers}")
        return self._providers

    # =========================================================================
    # TRANSITION SERIALIZATION
    # =========================================================================

    def _run_transition(self, name: str, action: Callable[[], None]) -> StorageMode:
        """
        Run a transition, or queue it behind the one in flight.

        At most one request waits; a newer request replaces an older waiting
        one. Returns the settled mode as seen by the caller.
        """
        with self._state_lock:
            if self._transition_active:
                logger.debug(f"Transition '{name}' queued behind in-flight transition")
                self._pending_transition = (name, action)
                return self._mode
            self._transition_active = True

        try:
            while True:
                action()
                with self._state_lock:
                    if self._pending_transition is None:
                        self._transition_active = False
                        break
                    name, action = self._pending_transition
                    self._pending_transition = None
                logger.debug(f"Running queued transition '{name}'")
        except BaseException:
            with self._state_lock:
                self._transition_active = False
                self._pending_transition = None
            raise

        return self._mode

    def _set_mode(self, mode: StorageMode, reason: str) -> None:
        with self._state_lock:
            previous = self._mode
            self._mode = mode
            if previous is not mode:
                self._last_switch = utcnow()

        if previous is not mode:
            logger.info(f"Storage mode changed: {previous.value} -> {mode.value} ({reason})")
            self._notify_callbacks()

    # =========================================================================
    # LOCAL -> REMOTE
    # =========================================================================

    def _switch_to_remote(self, reason: str) -> None:
        if self._mode.prefers_remote:
            return

        if not self.remote_enabled:
            logger.debug(f"Not switching to remote ({reason}): remote store disabled")
            return

        self.prober.invalidate()
        if not self.prober.probe():
            logger.warning(f"Failed to switch to remote mode ({reason}): "
                           f"{self.prober.status.last_error or 'probe failed'}")
            self._handle_switch_failure()
            return

        with self._state_lock:
            self._retry_count = 0
            self._consecutive_failures = 0
        self._cancel_retry_timer()
        self._set_mode(self._preferred_online_mode, reason)
        self.check_providers()

        if self.config.offline_sync_enabled and self.on_remote_restored is not None:
            logger.info("Offline sync enabled, enqueueing migration of local cache")
            try:
                self.on_remote_restored()
            except Exception as e:
                logger.error(f"Failed to enqueue migration after restore: {e}", exc_info=True)

    def _handle_switch_failure(self) -> None:
        with self._state_lock:
            self._retry_count += 1
            attempts = self._retry_count

        max_retries = self.config.remote_retry_attempts
        if attempts < max_retries:
            self._schedule_retry()
        else:
            logger.warning(
                f"Max retry attempts reached ({attempts}/{max_retries}), "
                "staying in local mode until a manual retry or reconnect"
            )

    def _retry_delay(self) -> float:
        """Exponential backoff: base, 2*base, 4*base, ... capped at max."""
        exponent = max(self._retry_count - 1, 0)
        delay = self.config.retry_base_delay_seconds * (2 ** exponent)
        return min(delay, self.config.retry_max_delay_seconds)

    def _schedule_retry(self) -> None:
        if self._shutdown or not self.remote_enabled or self._is_online is False:
            return
        if self._retry_count >= self.config.remote_retry_attempts:
            return

        delay = self._retry_delay()
        self._cancel_retry_timer()
        logger.info(
            f"Retry attempt {self._retry_count + 1}/{self.config.remote_retry_attempts} "
            f"in {delay:.1f} seconds..."
        )
        timer = self._timer_factory(delay, self._automatic_retry)
        timer.daemon = True
        with self._state_lock:
            self._retry_timer = timer
        timer.start()

    def _automatic_retry(self) -> None:
        with self._state_lock:
            self._retry_timer = None
        if self._shutdown:
            return
        self._run_transition("auto-retry", lambda: self._switch_to_remote("automatic retry"))

    def _cancel_retry_timer(self) -> None:
        with self._state_lock:
            timer, self._retry_timer = self._retry_timer, None
        if timer is not None:
            timer.cancel()

    # =========================================================================
    # REMOTE -> LOCAL
    # =========================================================================

    def _enter_local(self, reason: str) -> None:
        if not self.local_store.check_writable():
            logger.error("Failed to switch to local mode: local cache rejects writes")
            raise ConfigurationError(
                "No storage providers available: local cache is not writable",
                config_key="local_db_path",
            )
        self._set_mode(StorageMode.LOCAL, reason)

    def _switch_to_local(self, reason: str) -> None:
        if self._mode is StorageMode.LOCAL:
            return
        self._enter_local(reason)

    # =========================================================================
    # SIGNALS
    # =========================================================================

    def handle_connectivity_restored(self) -> StorageMode:
        """Network came back: reset the retry budget and try the remote store."""
        logger.info("Network connection restored")
        with self._state_lock:
            self._is_online = True
            self._retry_count = 0
        self._cancel_retry_timer()
        self.prober.invalidate()

        if self.remote_enabled:
            # Queued behind any in-flight transition
            logger.info("Attempting to switch to remote mode...")
            return self._run_transition(
                "connectivity-restored",
                lambda: self._switch_to_remote("connectivity restored"),
            )
        return self._mode

    def handle_connectivity_lost(self) -> StorageMode:
        """Network went away: drop to the local cache."""
        logger.warning("Network connection lost")
        with self._state_lock:
            self._is_online = False
        self._cancel_retry_timer()
        self.prober.invalidate()

        return self._run_transition(
            "connectivity-lost",
            lambda: self._switch_to_local("connectivity lost"),
        )

    def retry(self) -> StorageMode:
        """Manual retry: reset the retry budget and attempt local -> remote."""
        with self._state_lock:
            self._retry_count = 0
        self._cancel_retry_timer()
        self.check_providers()

        if self._mode is StorageMode.LOCAL:
            return self._run_transition("manual-retry", lambda: self._switch_to_remote("manual retry"))
        return self._mode

    def report_remote_failure(self, error: Optional[BaseException] = None) -> StorageMode:
        """
        Count a failed remote operation; switch to local once the threshold
        is crossed (remote mode only, hybrid keeps per-operation fallback).
        """
        with self._state_lock:
            self._consecutive_failures += 1
            failures = self._consecutive_failures

        threshold = self.config.remote_failure_threshold
        logger.debug(f"Remote failure {failures}/{threshold}: {error}")

        if self._mode is StorageMode.REMOTE and failures >= threshold:
            logger.warning(f"{failures} consecutive remote failures, switching to local mode")
            mode = self._run_transition(
                "failure-threshold",
                lambda: self._switch_to_local(f"{failures} consecutive remote failures"),
            )
            if mode is StorageMode.LOCAL:
                self._schedule_retry()
            return mode
        return self._mode

    def report_remote_success(self) -> None:
        if self._consecutive_failures:
            with self._state_lock:
                self._consecutive_failures = 0

    def force_mode(self, mode: Union[StorageMode, str]) -> StorageMode:
        """Operator override; 'auto' re-runs startup detection."""
        if isinstance(mode, str) and mode.lower() == "auto":
            logger.info("Re-detecting storage mode")
            return self._run_transition("force-auto", lambda: self._apply_initial_mode("re-detect"))

        mode = StorageMode(mode) if not isinstance(mode, StorageMode) else mode
        logger.info(f"Forcing storage mode to: {mode.value}")

        if mode is StorageMode.LOCAL:
            return self._run_transition("force-local", lambda: self._switch_to_local("forced"))

        self._preferred_online_mode = mode
        if mode is StorageMode.HYBRID:
            return self._run_transition("force-hybrid", lambda: self._set_mode(StorageMode.HYBRID, "forced"))

        with self._state_lock:
            self._retry_count = 0

        def switch() -> None:
            if self._mode is StorageMode.HYBRID:
                self._set_mode(StorageMode.REMOTE, "forced")
            else:
                self._switch_to_remote("forced")

        return self._run_transition("force-remote", switch)

    # =========================================================================
    # STATUS AND CALLBACKS
    # =========================================================================

    def get_status(self) -> StorageStatus:
        is_online = self._is_online
        if is_online is None:
            is_online = self.prober.status.available
        return StorageStatus(
            current_mode=self._mode,
            last_switch=self._last_switch,
            consecutive_failures=self._consecutive_failures,
            is_online=is_online,
            retry_count=self._retry_count,
            available_providers=self._providers,
        )

    def register_callback(self, callback: Callable[[StorageStatus], None]) -> None:
        """Register a callback for mode changes."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[StorageStatus], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        status = self.get_status()
        for callback in list(self._callbacks):
            try:
                callback(status)
            except Exception as e:
                logger.error(f"Error in mode callback: {e}")

    def shutdown(self) -> None:
        """Cancel pending retries; no new ones are scheduled afterwards."""
        self._shutdown = True
        self._cancel_retry_timer()
