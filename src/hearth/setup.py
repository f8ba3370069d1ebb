"""One-time transition from the ``setup`` state into an operating mode."""

from __future__ import annotations

import logging
from typing import Protocol

from .auth import AuthRegistrar
from .exceptions import AlreadySetupError, RegistrationError
from .models import AppInfo, AppStatus, SetupResponse
from .redirects import build_redirect_uris
from .secrets import SecretStore

logger = logging.getLogger(__name__)


class SettingsProvider(Protocol):
    """Read-only server settings; satisfied by :class:`~hearth.config.AppConfig`."""

    @property
    def host(self) -> str: ...

    @property
    def scheme(self) -> str: ...

    @property
    def port(self) -> int: ...

    @property
    def version(self) -> str: ...


class SetupController:
    """Move the application out of ``setup`` exactly once.

    The controller keeps no state of its own. The read-check-write sequence
    runs inside :meth:`SecretStore.transaction`, which serializes concurrent
    callers and commits the staged writes as a single unit, so a failed
    registration leaves the store untouched and a second caller always sees
    the terminal status of the first.
    """

    def __init__(self, *, secrets: SecretStore, registrar: AuthRegistrar, settings: SettingsProvider) -> None:
        self.secrets = secrets
        self.registrar = registrar
        self.settings = settings

    async def setup(self, request_authz: bool) -> SetupResponse:
        async with self.secrets.transaction() as txn:
            current = txn.get_app_status()
            if current.is_terminal:
                logger.warning("Rejected setup: application is already %s", current.value)
                raise AlreadySetupError()

            if not request_authz:
                logger.info("Setting up without authorization")
                txn.set_authz(False)
                txn.set_app_status(AppStatus.READY)
                return SetupResponse(status=AppStatus.READY)

            redirect_uris = build_redirect_uris(self.settings.host, self.settings.scheme, self.settings.port)
            logger.info("Registering OAuth client for redirect URIs %s", ", ".join(redirect_uris))
            try:
                registration = await self.registrar.register_client(redirect_uris)
            except RegistrationError as exc:
                logger.warning("Client registration failed, nothing persisted: %s", exc)
                raise
            txn.set_app_registration(registration)
            txn.set_authz(True)
            txn.set_app_status(AppStatus.RESOURCE_ADMIN)
            return SetupResponse(status=AppStatus.RESOURCE_ADMIN)

    async def app_info(self) -> AppInfo:
        return AppInfo(
            version=self.settings.version,
            authz=self.secrets.get_authz(),
            status=self.secrets.get_app_status(),
        )


__all__ = ["SettingsProvider", "SetupController"]
