"""
Test helpers for the secure session package.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

from shared.errors import ConfigSyncError
from service_session.app.keys.config import ConfigOverrides, SessionConfig, initialize_config
from service_session.app.keys.persistence import InMemoryConfigDB
from service_session.app.session.carrier import CookieCarrier

EPOCH = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeClock:
    """Virtual clock; advance it instead of sleeping."""

    def __init__(self, start: datetime = EPOCH):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_config(clock: Optional[FakeClock] = None, **overrides) -> SessionConfig:
    """Build a config at the clock's current time."""
    now = clock() if clock else EPOCH
    return initialize_config(ConfigOverrides(**overrides), now=now)


def make_carrier(token: Optional[str] = None, path: str = "/private", secure: bool = True,
                 name: str = "authtoken") -> CookieCarrier:
    """Carrier for a request presenting ``token``."""
    cookies = {name: token.rstrip("=")} if token else {}
    return CookieCarrier(cookies, path, secure, name=name)


def next_request(carrier: CookieCarrier, path: str = "/private", secure: bool = True) -> CookieCarrier:
    """Carrier for the client's next request, after applying ``carrier``'s cookie change."""
    return make_carrier(carrier.read(), path=path, secure=secure, name=carrier.name)


class FlakyConfigDB(InMemoryConfigDB):
    """In-memory backend whose next calls can be made to fail."""

    def __init__(self, config: Optional[SessionConfig] = None):
        super().__init__(config)
        self.fetch_failures = 0
        self.upsert_failures = 0
        self.fetch_delay = 0.0

    async def fetch(self):
        if self.fetch_delay:
            await asyncio.sleep(self.fetch_delay)
        if self.fetch_failures:
            self.fetch_failures -= 1
            raise ConfigSyncError("backend unreachable")
        return await super().fetch()

    async def upsert(self, config):
        if self.upsert_failures:
            self.upsert_failures -= 1
            raise ConfigSyncError("backend unreachable")
        await super().upsert(config)
