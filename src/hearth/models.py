"""Persisted and exchanged records for the setup protocol."""

from __future__ import annotations

from enum import Enum

from msgspec import Struct


class AppStatus(str, Enum):
    SETUP = "setup"
    READY = "ready"
    RESOURCE_ADMIN = "resource-admin"

    @property
    def is_terminal(self) -> bool:
        return self is not AppStatus.SETUP


class AppRegistration(Struct, frozen=True):
    """OAuth client registered with the identity provider during setup."""

    public_key: str
    kid: str
    issuer: str
    client_id: str
    client_secret: str
    alg: str = "RS256"


class AppInfo(Struct, frozen=True):
    """Application version with its current authorization mode and status."""

    version: str
    authz: bool
    status: AppStatus


class SetupResponse(Struct, frozen=True):
    status: AppStatus


__all__ = ["AppInfo", "AppRegistration", "AppStatus", "SetupResponse"]
