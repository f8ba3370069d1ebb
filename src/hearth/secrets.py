"""Durable storage for the authorization flag, application status and client registration."""

from __future__ import annotations

import asyncio
import base64
import fcntl
import hashlib
import logging
import os
import tempfile
from contextlib import AbstractAsyncContextManager, asynccontextmanager, nullcontext
from pathlib import Path
from typing import AsyncIterator, Protocol

from cryptography.fernet import Fernet, InvalidToken
from msgspec import DecodeError, Struct, ValidationError, structs

from .exceptions import SecretStoreError
from .models import AppRegistration, AppStatus
from .serialization import json_decode_as, json_encode

logger = logging.getLogger(__name__)


class SecretDocument(Struct, frozen=True, omit_defaults=True):
    """Everything the store persists, written as one unit."""

    authz: bool | None = None
    app_status: AppStatus | None = None
    app_registration: AppRegistration | None = None


class SecretAccessor(Protocol):
    """Read and write access to the persisted setup state."""

    def get_authz(self) -> bool: ...

    def set_authz(self, value: bool) -> None: ...

    def get_app_status(self) -> AppStatus: ...

    def set_app_status(self, status: AppStatus) -> None: ...

    def get_app_registration(self) -> AppRegistration | None: ...

    def set_app_registration(self, registration: AppRegistration) -> None: ...


class SecretStore(SecretAccessor, Protocol):
    """Secret accessor that can also serialize multi-write updates.

    ``transaction()`` holds a store-scoped lock for the duration of the block,
    so only one writer sequence is in flight at a time. Writes inside it are
    staged and committed together when the block exits without an error.
    """

    def transaction(self) -> AbstractAsyncContextManager[SecretTransaction]: ...


class SecretTransaction:
    """Staged view over a :class:`SecretDocument`."""

    def __init__(self, document: SecretDocument) -> None:
        self._document = document
        self.writes: list[str] = []

    @property
    def document(self) -> SecretDocument:
        return self._document

    @property
    def dirty(self) -> bool:
        return bool(self.writes)

    def get_authz(self) -> bool:
        return bool(self._document.authz)

    def set_authz(self, value: bool) -> None:
        self._stage("authz", value)

    def get_app_status(self) -> AppStatus:
        return self._document.app_status or AppStatus.SETUP

    def set_app_status(self, status: AppStatus) -> None:
        self._stage("app_status", status)

    def get_app_registration(self) -> AppRegistration | None:
        return self._document.app_registration

    def set_app_registration(self, registration: AppRegistration) -> None:
        self._stage("app_registration", registration)

    def _stage(self, name: str, value: object) -> None:
        self._document = structs.replace(self._document, **{name: value})
        self.writes.append(name)


class DocumentSecretStore:
    """Base store persisting a whole :class:`SecretDocument` per commit.

    Single accessor calls commit immediately. Callers that need several writes
    to land together, or a read-check-write sequence, use :meth:`transaction`.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()

    def load(self) -> SecretDocument:
        raise NotImplementedError

    def commit(self, document: SecretDocument) -> None:
        raise NotImplementedError

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[SecretTransaction]:
        async with self._lock, self._exclusive():
            txn = SecretTransaction(self.load())
            yield txn
            if txn.dirty:
                self.commit(txn.document)
                logger.debug("Committed secret store writes: %s", ", ".join(txn.writes))

    def _exclusive(self) -> AbstractAsyncContextManager[None]:
        """Lock shared with other store objects backed by the same data."""
        return nullcontext()

    def get_authz(self) -> bool:
        return SecretTransaction(self.load()).get_authz()

    def set_authz(self, value: bool) -> None:
        self._write("authz", value)

    def get_app_status(self) -> AppStatus:
        return SecretTransaction(self.load()).get_app_status()

    def set_app_status(self, status: AppStatus) -> None:
        self._write("app_status", status)

    def get_app_registration(self) -> AppRegistration | None:
        return self.load().app_registration

    def set_app_registration(self, registration: AppRegistration) -> None:
        self._write("app_registration", registration)

    def _write(self, name: str, value: object) -> None:
        self.commit(structs.replace(self.load(), **{name: value}))


class InMemorySecretStore(DocumentSecretStore):
    """Process-local store used for tests and ephemeral runs."""

    def __init__(self, document: SecretDocument | None = None) -> None:
        super().__init__()
        self._document = document or SecretDocument()
        self.commits = 0

    def load(self) -> SecretDocument:
        return self._document

    def commit(self, document: SecretDocument) -> None:
        self._document = document
        self.commits += 1


class SecretCipher:
    """Encrypt and decrypt the secret document with a key derived from arbitrary material."""

    def __init__(self, *, key_material: bytes) -> None:
        if not key_material:
            raise ValueError("Secret cipher requires non-empty key material")
        digest = hashlib.sha256(key_material).digest()
        self._fernet = Fernet(base64.urlsafe_b64encode(digest))

    @classmethod
    def from_secret(cls, secret: str | bytes) -> "SecretCipher":
        material = secret.encode("utf-8") if isinstance(secret, str) else bytes(secret)
        return cls(key_material=material)

    def encrypt(self, plaintext: bytes) -> bytes:
        return self._fernet.encrypt(plaintext)

    def decrypt(self, ciphertext: bytes) -> bytes:
        try:
            return self._fernet.decrypt(ciphertext)
        except InvalidToken as exc:
            raise SecretStoreError("unable to decrypt secret store; wrong encryption key?") from exc


class EncryptedFileSecretStore(DocumentSecretStore):
    """Fernet-encrypted JSON document on disk, replaced atomically on each commit.

    Transactions also hold ``flock`` on a sibling ``.lock`` file, so separate
    store objects and separate processes using the same path take turns and
    each one reloads the document only after the previous writer committed.
    """

    def __init__(self, path: str | os.PathLike[str], *, key: str | bytes) -> None:
        super().__init__()
        self.path = Path(path)
        self._cipher = SecretCipher.from_secret(key)

    @property
    def lock_path(self) -> Path:
        return self.path.with_name(f"{self.path.name}.lock")

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.lock_path, os.O_RDWR | os.O_CREAT, 0o600)
        except OSError as exc:
            raise SecretStoreError(f"unable to open lock file {self.lock_path}") from exc
        try:
            # flock blocks; waiting on a worker thread keeps other tasks running
            await asyncio.to_thread(fcntl.flock, fd, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)

    def load(self) -> SecretDocument:
        try:
            ciphertext = self.path.read_bytes()
        except FileNotFoundError:
            return SecretDocument()
        except OSError as exc:
            raise SecretStoreError(f"unable to read secret store at {self.path}") from exc
        plaintext = self._cipher.decrypt(ciphertext)
        try:
            return json_decode_as(plaintext, SecretDocument)
        except (DecodeError, ValidationError) as exc:
            raise SecretStoreError(f"secret store at {self.path} is corrupted") from exc

    def commit(self, document: SecretDocument) -> None:
        payload = self._cipher.encrypt(json_encode(document))
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{self.path.name}.", dir=self.path.parent)
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(payload)
                    handle.flush()
                    os.fsync(handle.fileno())
                os.chmod(tmp_name, 0o600)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise SecretStoreError(f"unable to write secret store at {self.path}") from exc


__all__ = [
    "DocumentSecretStore",
    "EncryptedFileSecretStore",
    "InMemorySecretStore",
    "SecretAccessor",
    "SecretCipher",
    "SecretDocument",
    "SecretStore",
    "SecretTransaction",
]
