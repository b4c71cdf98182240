"""
Session configuration values and key material.

Everything here is an immutable value. Rotation and overriding produce new
instances; nothing is mutated in place, so a reader holding a config never
sees a half-rotated key list.

Key pairs follow the Fernet layout: a 128-bit signing key and a 128-bit
AES key. A key ring lists generations newest first; the first one is the
active generation used for encoding, the rest are fallbacks kept only for
decoding tokens issued before the latest rotation(s).
"""

from __future__ import annotations

import base64
import binascii
import secrets
from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Sequence, Tuple

from shared.config import BaseConfig
from shared.errors import ConfigurationError

KEY_LENGTH = 16
MIN_KEY_RETENTION = 2
DOCUMENT_VERSION = 1

DEFAULT_LOGIN_PATH = "/session"
DEFAULT_LOGOUT_PATH = "/"
DEFAULT_TOKEN_LIFETIME = timedelta(days=6 * 30)
DEFAULT_REVALIDATE_INTERVAL = timedelta(minutes=5)
DEFAULT_KEY_RETENTION = 2
DEFAULT_FORM_TOKEN_TIMEOUT = timedelta(minutes=5)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _b64(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii")


def _unb64(text: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(text.encode("ascii"))
    except (binascii.Error, ValueError, AttributeError) as e:
        raise ConfigurationError("Invalid key encoding", details={"error": str(e)})


@dataclass(frozen=True, repr=False)
class KeyPair:
    """One key generation: an authentication key and an encryption key."""

    auth_key: bytes
    encryption_key: bytes

    def __post_init__(self):
        for name in ("auth_key", "encryption_key"):
            value = getattr(self, name)
            if not isinstance(value, bytes) or len(value) != KEY_LENGTH:
                raise ConfigurationError(
                    f"{name} must be {KEY_LENGTH} bytes",
                    details={"field": name}
                )

    def __repr__(self) -> str:
        return "KeyPair(<redacted>)"

    @classmethod
    def generate(cls) -> "KeyPair":
        return cls(secrets.token_bytes(KEY_LENGTH), secrets.token_bytes(KEY_LENGTH))

    def fernet_key(self) -> bytes:
        """Return the urlsafe-base64 key Fernet expects (signing key first)."""
        return base64.urlsafe_b64encode(self.auth_key + self.encryption_key)

    def to_document(self) -> Dict[str, str]:
        return {"auth": _b64(self.auth_key), "encryption": _b64(self.encryption_key)}

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "KeyPair":
        try:
            return cls(_unb64(doc["auth"]), _unb64(doc["encryption"]))
        except (KeyError, TypeError) as e:
            raise ConfigurationError("Invalid key pair document", details={"error": str(e)})


@dataclass(frozen=True)
class KeyRing:
    """Ordered key generations, active first, plus when the ring last rotated."""

    key_pairs: Tuple[KeyPair, ...]
    rotated_at: datetime

    def __post_init__(self):
        if not self.key_pairs:
            raise ConfigurationError("A key ring needs at least one key generation")
        if self.rotated_at.tzinfo is None:
            raise ConfigurationError("rotated_at must be timezone-aware")
        object.__setattr__(self, "key_pairs", tuple(self.key_pairs))

    @property
    def active(self) -> KeyPair:
        return self.key_pairs[0]

    @property
    def fallbacks(self) -> Tuple[KeyPair, ...]:
        return self.key_pairs[1:]

    @classmethod
    def generate(cls, generations: int, now: datetime) -> "KeyRing":
        return cls(tuple(KeyPair.generate() for _ in range(generations)), now)

    def age(self, now: datetime) -> timedelta:
        return now - self.rotated_at

    def rotate(self, now: datetime, retention: int) -> "KeyRing":
        """Prepend a fresh generation and drop those beyond ``retention``."""
        if retention < MIN_KEY_RETENTION:
            raise ConfigurationError(
                f"key retention must be at least {MIN_KEY_RETENTION}",
                details={"retention": retention}
            )
        pairs = (KeyPair.generate(),) + self.key_pairs
        return KeyRing(pairs[:retention], now)

    def to_document(self) -> Dict[str, Any]:
        return {
            "rotated_at": self.rotated_at.isoformat(),
            "key_pairs": [pair.to_document() for pair in self.key_pairs],
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "KeyRing":
        try:
            rotated_at = datetime.fromisoformat(doc["rotated_at"])
            pairs = tuple(KeyPair.from_document(item) for item in doc["key_pairs"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError("Invalid key ring document", details={"error": str(e)})
        if rotated_at.tzinfo is None:
            rotated_at = rotated_at.replace(tzinfo=timezone.utc)
        return cls(pairs, rotated_at)


@dataclass(frozen=True)
class SessionConfig:
    """Complete rotation state and session parameters."""

    cookie_keys: KeyRing
    form_token_keys: KeyRing
    login_path: str = DEFAULT_LOGIN_PATH
    logout_path: str = DEFAULT_LOGOUT_PATH
    token_lifetime: timedelta = DEFAULT_TOKEN_LIFETIME
    revalidate_interval: timedelta = DEFAULT_REVALIDATE_INTERVAL
    key_retention: int = DEFAULT_KEY_RETENTION
    form_token_timeout: timedelta = DEFAULT_FORM_TOKEN_TIMEOUT

    def __post_init__(self):
        if self.key_retention < MIN_KEY_RETENTION:
            raise ConfigurationError(
                f"key retention must be at least {MIN_KEY_RETENTION}",
                details={"key_retention": self.key_retention}
            )
        for name in ("token_lifetime", "revalidate_interval", "form_token_timeout"):
            if getattr(self, name) <= timedelta(0):
                raise ConfigurationError(f"{name} must be positive", details={"field": name})

    @property
    def key_pairs(self) -> Tuple[KeyPair, ...]:
        return self.cookie_keys.key_pairs

    @property
    def rotated_at(self) -> datetime:
        return self.cookie_keys.rotated_at

    @property
    def max_age_seconds(self) -> int:
        """Cookie Max-Age derived from the token lifetime."""
        return int(self.token_lifetime.total_seconds())

    def cookie_keys_stale(self, now: datetime) -> bool:
        return self.cookie_keys.age(now) > self.token_lifetime

    def form_token_keys_stale(self, now: datetime) -> bool:
        return self.form_token_keys.age(now) >= self.form_token_timeout

    def rotate_cookie_keys(self, now: datetime) -> "SessionConfig":
        return replace(self, cookie_keys=self.cookie_keys.rotate(now, self.key_retention))

    def rotate_form_token_keys(self, now: datetime) -> "SessionConfig":
        return replace(self, form_token_keys=self.form_token_keys.rotate(now, self.key_retention))

    def to_document(self) -> Dict[str, Any]:
        """Serialize for a persistence backend (keys base64url, durations in seconds)."""
        return {
            "version": DOCUMENT_VERSION,
            "login_path": self.login_path,
            "logout_path": self.logout_path,
            "token_lifetime": self.token_lifetime.total_seconds(),
            "revalidate_interval": self.revalidate_interval.total_seconds(),
            "key_retention": self.key_retention,
            "form_token_timeout": self.form_token_timeout.total_seconds(),
            "cookie_keys": self.cookie_keys.to_document(),
            "form_token_keys": self.form_token_keys.to_document(),
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "SessionConfig":
        if not isinstance(doc, dict):
            raise ConfigurationError("Config document must be an object")
        version = doc.get("version", DOCUMENT_VERSION)
        if version != DOCUMENT_VERSION:
            raise ConfigurationError("Unsupported config document version", details={"version": version})
        try:
            return cls(
                cookie_keys=KeyRing.from_document(doc["cookie_keys"]),
                form_token_keys=KeyRing.from_document(doc["form_token_keys"]),
                login_path=doc["login_path"],
                logout_path=doc["logout_path"],
                token_lifetime=timedelta(seconds=doc["token_lifetime"]),
                revalidate_interval=timedelta(seconds=doc["revalidate_interval"]),
                key_retention=int(doc["key_retention"]),
                form_token_timeout=timedelta(seconds=doc["form_token_timeout"]),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError("Invalid config document", details={"error": str(e)})


@dataclass(frozen=True)
class ConfigOverrides:
    """Caller-supplied values; ``None`` (or an empty value) means "not set"."""

    login_path: Optional[str] = None
    logout_path: Optional[str] = None
    token_lifetime: Optional[timedelta] = None
    revalidate_interval: Optional[timedelta] = None
    key_retention: Optional[int] = None
    form_token_timeout: Optional[timedelta] = None
    key_pairs: Optional[Sequence[KeyPair]] = None
    rotated_at: Optional[datetime] = None
    form_token_key_pairs: Optional[Sequence[KeyPair]] = field(default=None)

    @classmethod
    def from_settings(cls, settings: BaseConfig) -> "ConfigOverrides":
        """Build overrides from environment-backed settings."""

        def seconds(value: Optional[int]) -> Optional[timedelta]:
            return timedelta(seconds=value) if value else None

        return cls(
            login_path=settings.login_path,
            logout_path=settings.logout_path,
            token_lifetime=seconds(settings.token_lifetime_seconds),
            revalidate_interval=seconds(settings.revalidate_interval_seconds),
            key_retention=settings.key_retention,
            form_token_timeout=seconds(settings.form_token_timeout_seconds),
        )


def _is_set(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (str, tuple, list)) and len(value) == 0:
        return False
    if isinstance(value, timedelta) and value <= timedelta(0):
        return False
    return True


def merge_overrides(base: ConfigOverrides, override: Optional[ConfigOverrides]) -> ConfigOverrides:
    """Return ``base`` with every set field of ``override`` taking precedence."""
    if override is None:
        return base
    changes = {
        f.name: getattr(override, f.name)
        for f in fields(ConfigOverrides)
        if _is_set(getattr(override, f.name))
    }
    return replace(base, **changes)


DEFAULTS = ConfigOverrides(
    login_path=DEFAULT_LOGIN_PATH,
    logout_path=DEFAULT_LOGOUT_PATH,
    token_lifetime=DEFAULT_TOKEN_LIFETIME,
    revalidate_interval=DEFAULT_REVALIDATE_INTERVAL,
    key_retention=DEFAULT_KEY_RETENTION,
    form_token_timeout=DEFAULT_FORM_TOKEN_TIMEOUT,
)


def _ring(pairs: Optional[Sequence[KeyPair]], retention: int, now: datetime, name: str) -> KeyRing:
    if not pairs:
        return KeyRing.generate(retention, now)
    if len(pairs) > retention:
        raise ConfigurationError(
            f"{name} lists more generations than the retention allows",
            details={"generations": len(pairs), "key_retention": retention}
        )
    return KeyRing(tuple(pairs), now)


def initialize_config(overrides: Optional[ConfigOverrides] = None,
                      now: Optional[datetime] = None) -> SessionConfig:
    """Build a config from defaults overlaid with ``overrides``.

    Missing key pairs are generated (``key_retention`` generations, at least
    one active and one fallback). The rotation timestamp is ``now`` unless
    the overrides pin one.
    """
    now = now or utcnow()
    merged = merge_overrides(DEFAULTS, overrides)
    retention = merged.key_retention
    if retention < MIN_KEY_RETENTION:
        raise ConfigurationError(
            f"key retention must be at least {MIN_KEY_RETENTION}",
            details={"key_retention": retention}
        )
    rotated_at = merged.rotated_at or now
    return SessionConfig(
        cookie_keys=_ring(merged.key_pairs, retention, rotated_at, "key_pairs"),
        form_token_keys=_ring(merged.form_token_key_pairs, retention, now, "form_token_key_pairs"),
        login_path=merged.login_path,
        logout_path=merged.logout_path,
        token_lifetime=merged.token_lifetime,
        revalidate_interval=merged.revalidate_interval,
        key_retention=retention,
        form_token_timeout=merged.form_token_timeout,
    )
