"""OAuth redirect URI derivation."""

from __future__ import annotations

from typing import Final

LOGIN_CALLBACK_PATH: Final[str] = "/app/login/callback"
LOOPBACK_HOSTS: Final[tuple[str, ...]] = ("localhost", "127.0.0.1", "0.0.0.0")


def build_redirect_uris(host: str, scheme: str, port: int | str) -> tuple[str, ...]:
    """Return the callback URIs the identity provider must allow for ``host``.

    A server bound to any loopback alias can be reached through all of them, so
    every alias gets a URI, always in :data:`LOOPBACK_HOSTS` order.
    """

    hosts = LOOPBACK_HOSTS if host in LOOPBACK_HOSTS else (host,)
    return tuple(f"{scheme}://{name}:{port}{LOGIN_CALLBACK_PATH}" for name in hosts)


__all__ = ["LOGIN_CALLBACK_PATH", "LOOPBACK_HOSTS", "build_redirect_uris"]
