"""
Background key rotation.

Every process runs one scheduler. Each cycle it reconciles the local config
store with the shared persistence backend and rotates key rings that have
outlived their timeout. Processes are not coordinated: two of them may
rotate in the same window and the last upsert wins. That skew is tolerated
because tokens are decoded against every retained key generation.
"""

import asyncio
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import ConfigSyncError, ConfigurationError
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .config import SessionConfig, utcnow
from .persistence import ConfigDB
from .store import ConfigStore

SYNC_FAILURES = (ConfigSyncError, ConfigurationError, asyncio.TimeoutError, OSError)


class KeyRotationScheduler:
    """Periodically syncs the config store and rotates stale keys."""

    def __init__(self, store: ConfigStore, db: ConfigDB, *,
                 clock: Callable[[], datetime] = utcnow,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
                 sync_timeout: float = 10.0,
                 metrics: Optional[MetricsCollector] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None):
        self.store = store
        self.db = db
        self.sync_timeout = sync_timeout
        self.metrics = metrics
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=60.0,
            expected_exception=SYNC_FAILURES,
            name="config-db",
        )
        self.logger = get_logger("session.rotation")
        self.last_error: Optional[ConfigSyncError] = None
        self.last_success: Optional[datetime] = None

        self._clock = clock
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.running = False

    async def start(self):
        """Start the rotation loop; the first cycle runs immediately."""
        if self._task is not None:
            return
        self.running = True
        self._task = asyncio.create_task(self._rotation_loop())
        self.logger.info(
            "Key rotation scheduler started",
            interval_seconds=self.interval_seconds,
        )

    async def stop(self):
        """Stop the rotation loop."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        self.logger.info("Key rotation scheduler stopped")

    @property
    def interval_seconds(self) -> float:
        return self.store.config.revalidate_interval.total_seconds()

    async def _rotation_loop(self):
        """Main rotation loop."""
        while self.running:
            try:
                await self.reconcile()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("Unexpected error in key rotation loop", error=str(e), exc_info=True)

            try:
                await self._sleep(self.interval_seconds)
            except asyncio.CancelledError:
                break

    async def reconcile(self) -> bool:
        """Run one sync cycle. Returns False when the cycle was skipped."""
        started = time.perf_counter()
        try:
            await self._sync()
        except ConfigSyncError as e:
            self.last_error = e
            self.logger.warning("Config sync failed; keeping current keys", code=e.code, error=e.message,
                                details=e.details)
            self._record("failed", started)
            return False

        self.last_error = None
        self.last_success = self._clock()
        self._record("ok", started)
        return True

    async def _sync(self):
        remote = await self._call("fetch", self.db.fetch)
        if remote is None:
            local = self.store.config
            await self._call("upsert", self.db.upsert, local)
            self.store.publish(local)
            self.logger.info("Seeded config store with local config")
        else:
            self.store.publish(remote)

        current = self.store.config
        now = self._clock()
        rotated, rings = self._rotate(current, now)
        if not rings:
            return

        # Only adopt the rotation once it is persisted; a failed upsert is retried next cycle
        await self._call("upsert", self.db.upsert, rotated)
        self.store.publish(rotated)
        for ring in rings:
            self.logger.info("Keys rotated", ring=ring, rotated_at=now.isoformat())
            if self.metrics:
                self.metrics.increment_counter("session_key_rotations_total", ring=ring)

    @staticmethod
    def _rotate(config: SessionConfig, now: datetime):
        rings: List[str] = []
        if config.cookie_keys_stale(now):
            config = config.rotate_cookie_keys(now)
            rings.append("cookie")
        if config.form_token_keys_stale(now):
            config = config.rotate_form_token_keys(now)
            rings.append("form_token")
        return config, rings

    async def _call(self, operation: str, func: Callable[..., Awaitable[Any]], *args) -> Any:
        """Call the backend through the circuit breaker, bounded by ``sync_timeout``."""

        async def _bounded():
            return await asyncio.wait_for(func(*args), timeout=self.sync_timeout)

        try:
            return await self.circuit_breaker.call(_bounded)
        except ConfigSyncError:
            raise
        except asyncio.TimeoutError:
            raise ConfigSyncError(
                "Config persistence timed out",
                details={"operation": operation, "timeout_seconds": self.sync_timeout}
            )
        except CircuitBreakerOpenException as e:
            raise ConfigSyncError("Config persistence unavailable", details={"operation": operation, "error": str(e)})
        except ConfigurationError as e:
            raise ConfigSyncError("Stored config is invalid", details={"operation": operation, "error": e.message})
        except OSError as e:
            raise ConfigSyncError("Config persistence unreachable", details={"operation": operation, "error": str(e)})

    def _record(self, status: str, started: float):
        if not self.metrics:
            return
        self.metrics.increment_counter("session_config_sync_total", status=status)
        self.metrics.get_metric("session_config_sync_duration_seconds").observe(time.perf_counter() - started)
        config = self.store.config
        self.metrics.set_gauge("session_key_generations", len(config.cookie_keys.key_pairs), ring="cookie")
        self.metrics.set_gauge("session_key_generations", len(config.form_token_keys.key_pairs), ring="form_token")

    def status(self) -> dict:
        """Operational view of the rotation state (no key material)."""
        config = self.store.config
        return {
            "running": self.running,
            "synced": self.store.synced,
            "cookie_generations": len(config.cookie_keys.key_pairs),
            "cookie_rotated_at": config.cookie_keys.rotated_at.isoformat(),
            "form_token_generations": len(config.form_token_keys.key_pairs),
            "form_token_rotated_at": config.form_token_keys.rotated_at.isoformat(),
            "last_success": self.last_success.isoformat() if self.last_success else None,
            "last_error": self.last_error.code if self.last_error else None,
            "circuit_breaker": self.circuit_breaker.state.value,
        }
