from __future__ import annotations

"""Access token caching for provider calls."""

from dataclasses import dataclass, field
import logging
import threading
import time
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "https://www.googleapis.com/auth/cloud-platform"
EXPIRY_SKEW_SECONDS = 60.0


@dataclass(frozen=True)
class AccessToken:
    """Bearer token with an absolute expiry (epoch seconds)."""
    value: str
    expires_at: float


def normalize_scopes(scopes: Iterable[str] | str | None) -> str:
    """Return the cache key for a scope set."""
    if scopes is None:
        values = [DEFAULT_SCOPE]
    elif isinstance(scopes, str):
        values = scopes.split()
    else:
        values = [str(scope) for scope in scopes]
    cleaned = sorted({value.strip() for value in values if value and value.strip()})
    return " ".join(cleaned or [DEFAULT_SCOPE])


@dataclass
class TokenCache:
    """Thread-safe keyed token cache; last writer wins."""
    skew_seconds: float = EXPIRY_SKEW_SECONDS
    clock: Callable[[], float] = time.time
    _entries: dict[str, AccessToken] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def get(self, key: str) -> AccessToken | None:
        """Return a cached token unless it is within the skew window of expiry."""
        with self._lock:
            token = self._entries.get(key)
            if token is None:
                return None
            if self.clock() >= token.expires_at - self.skew_seconds:
                del self._entries[key]
                return None
            return token

    def put(self, key: str, token: str, ttl: float) -> AccessToken:
        """Store a token that expires ``ttl`` seconds from now."""
        entry = AccessToken(value=token, expires_at=self.clock() + ttl)
        with self._lock:
            self._entries[key] = entry
        return entry


MintToken = Callable[[str], tuple[str, float]]


@dataclass
class CachedTokenSource:
    """Serve bearer tokens from a cache, minting through ``mint`` on a miss.

    ``mint`` receives the normalized scope string and returns
    ``(token, ttl_seconds)``.
    """
    mint: MintToken
    cache: TokenCache = field(default_factory=TokenCache)
    scopes: tuple[str, ...] = (DEFAULT_SCOPE,)

    def token(self) -> str:
        key = normalize_scopes(self.scopes)
        cached = self.cache.get(key)
        if cached is not None:
            return cached.value
        value, ttl = self.mint(key)
        logger.info("access_token_minted", extra={"scope_key": key, "ttl": ttl})
        return self.cache.put(key, value, ttl).value


def static_token_source(token: str, cache: TokenCache | None = None) -> CachedTokenSource:
    """Token source for a pre-issued token (e.g. from the environment)."""
    return CachedTokenSource(mint=lambda _key: (token, 3600.0), cache=cache or TokenCache())
