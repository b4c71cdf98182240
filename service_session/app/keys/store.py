"""
Config store.

Holds one immutable ``KeySnapshot``: the current config together with the
codecs derived from it. Request handling reads the snapshot with a single
attribute access; the rotation task builds a complete new snapshot and swaps
it in under a lock. Readers therefore see either the old or the new key
list, never a mix.
"""

import threading
from dataclasses import dataclass
from shared.logging import get_logger
from ..codec.token_codec import TokenCodec
from .config import SessionConfig


@dataclass(frozen=True)
class KeySnapshot:
    """A config plus its derived codecs, published as one value."""

    config: SessionConfig
    cookie_codec: TokenCodec
    form_token_codec: TokenCodec
    synced: bool = False

    @classmethod
    def build(cls, config: SessionConfig, synced: bool = False) -> "KeySnapshot":
        return cls(
            config=config,
            cookie_codec=TokenCodec(config.cookie_keys.key_pairs),
            form_token_codec=TokenCodec(config.form_token_keys.key_pairs),
            synced=synced,
        )


class ConfigStore:
    """Owner of the process-wide config snapshot.

    Until the first successful sync the local config is provisional and any
    remote config replaces it. Afterwards a config whose cookie rotation
    timestamp is older than the current one is refused, so the timestamp
    this process observes never goes backwards.
    """

    def __init__(self, config: SessionConfig, synced: bool = False):
        self._lock = threading.Lock()
        self._snapshot = KeySnapshot.build(config, synced)
        self.logger = get_logger("session.config_store")

    def snapshot(self) -> KeySnapshot:
        return self._snapshot

    @property
    def config(self) -> SessionConfig:
        return self._snapshot.config

    @property
    def synced(self) -> bool:
        return self._snapshot.synced

    def publish(self, config: SessionConfig, synced: bool = True) -> bool:
        """Atomically replace the snapshot; returns False if ``config`` is stale.

        Publishing a config equal to the current one keeps the current
        snapshot and only marks it synced.
        """
        with self._lock:
            current = self._snapshot
            if current.synced and config.rotated_at < current.config.rotated_at:
                self.logger.warning(
                    "Refusing config older than the current one",
                    current_rotated_at=current.config.rotated_at.isoformat(),
                    offered_rotated_at=config.rotated_at.isoformat(),
                )
                return False
            if config == current.config:
                if synced and not current.synced:
                    self._snapshot = KeySnapshot(
                        current.config, current.cookie_codec, current.form_token_codec, True
                    )
                return True
            self._snapshot = KeySnapshot.build(config, synced or current.synced)

        if config.cookie_keys != current.config.cookie_keys:
            self.logger.info(
                "Session keys updated",
                generations=len(config.cookie_keys.key_pairs),
                rotated_at=config.rotated_at.isoformat(),
            )
        return True
