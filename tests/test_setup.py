from __future__ import annotations

import asyncio

import pytest

from hearth.config import AppConfig
from hearth.exceptions import AlreadySetupError, RegistrationError
from hearth.models import AppStatus
from hearth.secrets import InMemorySecretStore, SecretDocument
from hearth.serialization import json_decode
from hearth.setup import SetupController
from hearth.transport import TransportError
from tests.support import FakeRegistrar, failing_registrar, make_registration


def _controller(
    store: InMemorySecretStore,
    registrar: FakeRegistrar,
    *,
    host: str = "0.0.0.0",
    scheme: str = "http",
    port: int = 8080,
) -> SetupController:
    return SetupController(
        secrets=store,
        registrar=registrar,
        settings=AppConfig(host=host, scheme=scheme, port=port, version="0.0.0"),
    )


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [AppStatus.READY, AppStatus.RESOURCE_ADMIN])
@pytest.mark.parametrize("authz", [True, False])
async def test_setup_rejected_once_out_of_setup(status: AppStatus, authz: bool) -> None:
    registration = make_registration() if status is AppStatus.RESOURCE_ADMIN else None
    before = SecretDocument(authz=True, app_status=status, app_registration=registration)
    store = InMemorySecretStore(before)
    registrar = FakeRegistrar()

    with pytest.raises(AlreadySetupError) as excinfo:
        await _controller(store, registrar).setup(authz)

    assert excinfo.value.code == "app_service_error-already_setup"
    assert store.load() == before
    assert store.commits == 0
    assert registrar.calls == []


@pytest.mark.asyncio
async def test_setup_without_authz_opens_the_app() -> None:
    store = InMemorySecretStore()
    registrar = FakeRegistrar()

    response = await _controller(store, registrar).setup(False)

    assert response.status is AppStatus.READY
    assert store.get_app_status() is AppStatus.READY
    assert store.get_authz() is False
    assert store.get_app_registration() is None
    assert registrar.calls == []


@pytest.mark.asyncio
async def test_setup_with_authz_registers_and_persists_client() -> None:
    store = InMemorySecretStore(SecretDocument(app_status=AppStatus.SETUP))
    registration = make_registration("hearth-client")
    registrar = FakeRegistrar(registration)

    response = await _controller(store, registrar).setup(True)

    assert response.status is AppStatus.RESOURCE_ADMIN
    assert store.get_app_status() is AppStatus.RESOURCE_ADMIN
    assert store.get_authz() is True
    assert store.get_app_registration() == registration
    assert store.commits == 1
    assert registrar.calls == [
        (
            "http://localhost:8080/app/login/callback",
            "http://127.0.0.1:8080/app/login/callback",
            "http://0.0.0.0:8080/app/login/callback",
        )
    ]


@pytest.mark.asyncio
async def test_setup_uses_configured_public_host() -> None:
    store = InMemorySecretStore()
    registrar = FakeRegistrar()

    await _controller(store, registrar, host="example.com", scheme="https", port=443).setup(True)

    assert registrar.calls == [("https://example.com:443/app/login/callback",)]


@pytest.mark.asyncio
async def test_failed_registration_leaves_store_untouched() -> None:
    store = InMemorySecretStore()
    registrar = failing_registrar()

    with pytest.raises(RegistrationError) as excinfo:
        await _controller(store, registrar).setup(True)

    assert isinstance(excinfo.value.__cause__, TransportError)
    assert store.commits == 0
    assert store.get_app_status() is AppStatus.SETUP
    assert store.get_authz() is False
    assert store.get_app_registration() is None


@pytest.mark.asyncio
async def test_setup_can_be_retried_after_failed_registration() -> None:
    store = InMemorySecretStore()

    with pytest.raises(RegistrationError):
        await _controller(store, failing_registrar()).setup(True)
    response = await _controller(store, FakeRegistrar()).setup(True)

    assert response.status is AppStatus.RESOURCE_ADMIN


@pytest.mark.asyncio
async def test_concurrent_setup_registers_a_single_client() -> None:
    store = InMemorySecretStore()
    registrar = FakeRegistrar(delay=0.01)
    controller = _controller(store, registrar)

    results = await asyncio.gather(
        controller.setup(True),
        controller.setup(True),
        controller.setup(False),
        return_exceptions=True,
    )

    successes = [result for result in results if not isinstance(result, BaseException)]
    failures = [result for result in results if isinstance(result, BaseException)]
    assert len(successes) == 1
    assert all(isinstance(failure, AlreadySetupError) for failure in failures)
    assert len(registrar.calls) == 1
    assert store.get_app_status() is AppStatus.RESOURCE_ADMIN


@pytest.mark.asyncio
async def test_app_info_defaults_to_setup_on_fresh_store() -> None:
    info = await _controller(InMemorySecretStore(), FakeRegistrar()).app_info()

    assert info.version == "0.0.0"
    assert info.status is AppStatus.SETUP
    assert info.authz is False


@pytest.mark.asyncio
async def test_app_info_reports_persisted_mode() -> None:
    store = InMemorySecretStore()
    controller = _controller(store, FakeRegistrar())
    await controller.setup(True)

    info = await controller.app_info()

    assert (info.authz, info.status) == (True, AppStatus.RESOURCE_ADMIN)


def test_already_setup_renders_stable_error_body() -> None:
    body = json_decode(AlreadySetupError().to_response_body())
    assert body == {
        "error": {
            "message": "app is already setup",
            "type": "invalid_request_error",
            "code": "app_service_error-already_setup",
        }
    }
