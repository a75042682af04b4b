from __future__ import annotations

from dataclasses import dataclass

from src.arbiter.auth import CachedTokenSource, TokenCache, normalize_scopes, static_token_source


@dataclass
class FakeClock:
    now: float = 1000.0

    def __call__(self) -> float:
        return self.now


def test_token_expires_inside_skew_window() -> None:
    clock = FakeClock()
    cache = TokenCache(clock=clock)
    cache.put("scope", "tok", ttl=120)

    clock.now += 59
    assert cache.get("scope").value == "tok"
    clock.now += 1
    assert cache.get("scope") is None


def test_scope_key_is_order_insensitive() -> None:
    assert normalize_scopes(["b", "a", "b"]) == "a b"
    assert normalize_scopes("b  a") == "a b"
    assert normalize_scopes(None) == "https://www.googleapis.com/auth/cloud-platform"


def test_token_source_mints_only_on_miss() -> None:
    clock = FakeClock()
    minted: list[str] = []

    def mint(key: str) -> tuple[str, float]:
        minted.append(key)
        return f"token-{len(minted)}", 300.0

    source = CachedTokenSource(mint=mint, cache=TokenCache(clock=clock), scopes=("x", "y"))

    assert source.token() == "token-1"
    assert source.token() == "token-1"
    clock.now += 241
    assert source.token() == "token-2"
    assert minted == ["x y", "x y"]


def test_static_token_source() -> None:
    assert static_token_source("abc").token() == "abc"
