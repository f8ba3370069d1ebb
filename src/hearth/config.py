"""Application configuration objects."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

import msgspec
from msgspec import Struct, structs

ENV_PREFIX = "HEARTH_"


def _default_hf_home() -> str:
    return str(Path.home() / ".cache" / "huggingface" / "hub")


def _default_secrets_path() -> str:
    return str(Path.home() / ".hearth" / "secrets.enc")


class AppConfig(Struct, frozen=True):
    """Typed configuration for the bootstrap core.

    ``host``, ``scheme``, ``port`` and ``version`` form the settings provider
    consumed by :class:`~hearth.setup.SetupController`.
    """

    host: str = "localhost"
    scheme: str = "http"
    port: int = 1135
    version: str = "0.0.0"
    app_name: str = "hearth"
    auth_url: str = "https://id.example.com"
    auth_realm: str = "hearth"
    registration_path: str = "apps/resources"
    hf_home: str = msgspec.field(default_factory=_default_hf_home)
    hub_endpoint: str = "https://huggingface.co"
    secrets_path: str = msgspec.field(default_factory=_default_secrets_path)
    encryption_key: str | None = None
    http_timeout: float = 10.0

    @property
    def realm_url(self) -> str:
        return f"{self.auth_url.rstrip('/')}/realms/{self.auth_realm}"

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> "AppConfig":
        """Build a config from loosely typed values such as environment strings."""

        return msgspec.convert(dict(values), type=cls, strict=False)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "AppConfig":
        """Read ``HEARTH_*`` variables, e.g. ``HEARTH_PORT=8080``."""

        source = os.environ if environ is None else environ
        fields = {info.name for info in structs.fields(cls)}
        values: dict[str, object] = {}
        for key, value in source.items():
            if not key.startswith(ENV_PREFIX):
                continue
            name = key[len(ENV_PREFIX) :].lower()
            if name in fields:
                values[name] = value
        return cls.from_mapping(values)


__all__ = ["ENV_PREFIX", "AppConfig"]
