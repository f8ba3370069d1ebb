"""Test support utilities for setup and chat-template tests."""

from __future__ import annotations

import asyncio
from typing import Sequence

from hearth.chat_template import ChatTemplate
from hearth.exceptions import RegistrationError
from hearth.hub import HubFile, HubService, Repo
from hearth.models import AppRegistration
from hearth.transport import HttpRequest, HttpResponse, TransportError


def make_registration(client_id: str = "client_id") -> AppRegistration:
    return AppRegistration(
        public_key="public_key",
        kid="kid",
        issuer="issuer",
        client_id=client_id,
        client_secret="client_secret",
    )


class FakeRegistrar:
    def __init__(self, result: AppRegistration | BaseException | None = None, *, delay: float = 0.0) -> None:
        self._result = result if result is not None else make_registration()
        self._delay = delay
        self.calls: list[tuple[str, ...]] = []

    async def register_client(self, redirect_uris: Sequence[str]) -> AppRegistration:
        self.calls.append(tuple(redirect_uris))
        if self._delay:
            await asyncio.sleep(self._delay)
        if isinstance(self._result, BaseException):
            raise self._result
        return self._result


def failing_registrar() -> FakeRegistrar:
    cause = TransportError("connection refused")
    error = RegistrationError("error connecting to identity provider: connection refused")
    error.__cause__ = cause
    return FakeRegistrar(error)


class FakeTransport:
    """Queue canned responses and record every outbound request."""

    def __init__(self, *responses: HttpResponse | BaseException) -> None:
        self._responses = list(responses)
        self.requests: list[HttpRequest] = []

    async def __call__(self, request: HttpRequest) -> HttpResponse:
        self.requests.append(request)
        response = self._responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response


class RecordingHub(HubService):
    """Hub service over a temporary cache that records the calls made against it."""

    def __init__(self, hf_cache, **kwargs) -> None:
        super().__init__(hf_cache, **kwargs)
        self.calls: list[tuple[str, str, str, str | None]] = []
        self.template_calls: list[str] = []

    def find_local_file(self, repo: Repo, filename: str, snapshot: str | None = None) -> HubFile:
        self.calls.append(("find_local_file", repo.path, filename, snapshot))
        return super().find_local_file(repo, filename, snapshot)

    async def download(self, repo: Repo, filename: str, snapshot: str | None = None) -> HubFile:
        self.calls.append(("download", repo.path, filename, snapshot))
        return await super().download(repo, filename, snapshot)

    def model_chat_template(self, alias: str) -> ChatTemplate:
        self.template_calls.append(alias)
        return super().model_chat_template(alias)


def write_cached_file(root, repo: Repo, filename: str, data: bytes, *, commit: str = "abc123") -> None:
    base = root / repo.cache_dirname
    target = base / "snapshots" / commit / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(data)
    refs = base / "refs"
    refs.mkdir(parents=True, exist_ok=True)
    (refs / "main").write_text(commit, encoding="utf-8")


__all__ = [
    "FakeRegistrar",
    "FakeTransport",
    "RecordingHub",
    "failing_registrar",
    "make_registration",
    "write_cached_file",
]
