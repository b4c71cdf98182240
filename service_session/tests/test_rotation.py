"""
Unit tests for the key rotation scheduler.
"""

import asyncio
import pytest
from datetime import timedelta

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.metrics import MetricsCollector
from service_session.app.keys.rotation import KeyRotationScheduler
from service_session.app.keys.store import ConfigStore
from service_session.tests.helpers import EPOCH, FakeClock, FlakyConfigDB, make_config


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return ConfigStore(make_config(clock, token_lifetime=timedelta(hours=1)))


@pytest.fixture
def db():
    return FlakyConfigDB()


@pytest.fixture
def metrics():
    return MetricsCollector("session")


@pytest.fixture
def scheduler(store, db, clock, metrics):
    return KeyRotationScheduler(store, db, clock=clock, sync_timeout=1.0, metrics=metrics)


class TestReconcile:
    """Test cases for one sync cycle."""

    @pytest.mark.asyncio
    async def test_seeds_empty_backend(self, scheduler, store, db):
        """Test the local config is stored when the backend is empty."""
        local = store.config

        assert await scheduler.reconcile()

        assert db.upserts == 1
        assert await db.fetch() == local
        assert store.config is local
        assert store.synced

    @pytest.mark.asyncio
    async def test_adopts_remote_config(self, clock, scheduler, store, db):
        """Test an existing fleet config replaces the provisional local one."""
        remote = make_config(clock, login_path="/fleet-login")
        await db.upsert(remote)

        assert await scheduler.reconcile()

        assert store.config == remote
        assert store.config.login_path == "/fleet-login"
        assert store.synced
        assert db.upserts == 1

    @pytest.mark.asyncio
    async def test_rotates_stale_cookie_keys(self, clock, scheduler, store, db, metrics):
        """Test stale cookie keys rotate and the result is persisted."""
        await scheduler.reconcile()
        before = store.config
        now = clock.advance(hours=1, seconds=1)

        assert await scheduler.reconcile()

        after = store.config
        assert after.rotated_at == now
        assert after.key_pairs[1] == before.key_pairs[0]
        assert after.key_pairs[0] not in before.key_pairs
        assert len(after.key_pairs) == 2
        assert await db.fetch() == after
        assert metrics.sample("session_key_rotations_total", ring="cookie") == 1

    @pytest.mark.asyncio
    async def test_rotates_form_token_keys_on_their_own_timeout(self, clock, scheduler, store):
        """Test form-token keys rotate while cookie keys are still fresh."""
        await scheduler.reconcile()
        before = store.config
        clock.advance(minutes=5)

        assert await scheduler.reconcile()

        after = store.config
        assert after.cookie_keys == before.cookie_keys
        assert after.form_token_keys.active not in before.form_token_keys.key_pairs
        assert after.form_token_keys.key_pairs[1] == before.form_token_keys.active

    @pytest.mark.asyncio
    async def test_failed_upsert_is_not_applied(self, clock, scheduler, store, db):
        """Test a rotation is only published once it was persisted."""
        await scheduler.reconcile()
        before = store.config
        clock.advance(hours=2)
        db.upsert_failures = 1

        assert not await scheduler.reconcile()

        assert store.config is before
        assert store.config.key_pairs == before.key_pairs
        assert scheduler.last_error.code == "CONFIG_SYNC_FAILED"

        # Next cycle retries
        assert await scheduler.reconcile()
        assert store.config.rotated_at == clock()
        assert scheduler.last_error is None

    @pytest.mark.asyncio
    async def test_unchanged_remote_keeps_snapshot(self, scheduler, store):
        """Test a cycle with nothing to rotate does not rebuild the codecs."""
        await scheduler.reconcile()
        snapshot = store.snapshot()

        assert await scheduler.reconcile()

        assert store.snapshot() is snapshot

    @pytest.mark.asyncio
    async def test_fetch_failure_skips_cycle(self, scheduler, store, db, metrics):
        """Test an unreachable backend leaves the current keys in place."""
        before = store.config
        db.fetch_failures = 1

        assert not await scheduler.reconcile()

        assert store.config is before
        assert not store.synced
        assert db.upserts == 0
        assert metrics.sample("session_config_sync_total", status="failed") == 1

    @pytest.mark.asyncio
    async def test_slow_backend_times_out(self, store, db, clock):
        """Test backend calls are bounded by the sync timeout."""
        scheduler = KeyRotationScheduler(store, db, clock=clock, sync_timeout=0.01)
        db.fetch_delay = 0.2

        assert not await scheduler.reconcile()

        assert scheduler.last_error.details["operation"] == "fetch"
        assert not store.synced

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, scheduler, db):
        """Test the breaker stops calling a backend that keeps failing."""
        db.fetch_failures = 5

        for _ in range(3):
            assert not await scheduler.reconcile()
        assert scheduler.circuit_breaker.is_open()

        assert not await scheduler.reconcile()

        assert db.fetch_failures == 2
        assert scheduler.last_error.message == "Config persistence unavailable"

    @pytest.mark.asyncio
    async def test_processes_converge(self, clock, db):
        """Test two processes sharing one backend end up with the same keys."""
        first = ConfigStore(make_config(clock))
        second = ConfigStore(make_config(clock))

        await KeyRotationScheduler(first, db, clock=clock).reconcile()
        await KeyRotationScheduler(second, db, clock=clock).reconcile()

        assert first.config == second.config
        token = first.snapshot().cookie_codec.encode("authtoken", "user:42")
        assert second.snapshot().cookie_codec.decode("authtoken", token) == "user:42"

    @pytest.mark.asyncio
    async def test_records_metrics(self, scheduler, metrics):
        """Test sync outcomes and key generations are exported."""
        await scheduler.reconcile()

        assert metrics.sample("session_config_sync_total", status="ok") == 1
        assert metrics.sample("session_key_generations", ring="cookie") == 2
        assert metrics.sample("session_key_generations", ring="form_token") == 2


class TestSchedulerLoop:
    """Test cases for the background loop."""

    @pytest.mark.asyncio
    async def test_loop_runs_every_interval(self, store, db, clock):
        """Test the loop reconciles, then waits one revalidation interval."""
        sleeps = []
        done = asyncio.Event()

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            clock.advance(seconds=seconds)
            if len(sleeps) == 3:
                done.set()
                raise asyncio.CancelledError()

        scheduler = KeyRotationScheduler(store, db, clock=clock, sleep=fake_sleep)

        await scheduler.start()
        await asyncio.wait_for(done.wait(), timeout=1.0)
        await scheduler.stop()

        assert sleeps == [300.0, 300.0, 300.0]
        # Seed, then one form-token rotation per interval
        assert db.upserts == 3
        assert not scheduler.running

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, store, db, clock):
        """Test starting twice keeps a single task."""
        gate = asyncio.Event()

        async def blocked_sleep(seconds):
            await gate.wait()

        scheduler = KeyRotationScheduler(store, db, clock=clock, sleep=blocked_sleep)

        await scheduler.start()
        task = scheduler._task
        await scheduler.start()

        assert scheduler._task is task
        await scheduler.stop()
        assert scheduler._task is None

    @pytest.mark.asyncio
    async def test_status(self, scheduler):
        """Test the status view carries no key material."""
        await scheduler.reconcile()

        status = scheduler.status()

        assert status["synced"] is True
        assert status["cookie_generations"] == 2
        assert status["cookie_rotated_at"] == EPOCH.isoformat()
        assert status["last_error"] is None
        assert status["circuit_breaker"] == "closed"
        assert "key_pairs" not in status
