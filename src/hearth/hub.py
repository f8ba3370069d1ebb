"""Model repository artifacts, read from a local Hugging Face-style cache or downloaded into it."""

from __future__ import annotations

import logging
import os
import re
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Final, Mapping, Protocol

import msgspec

from .config import AppConfig
from .exceptions import DownloadError, NotFoundError, UnknownAliasError
from .transport import HttpRequest, TransportCallable, TransportError, default_transport, send

if TYPE_CHECKING:
    from .chat_template import ChatTemplate

logger = logging.getLogger(__name__)

_SEGMENT: Final[str] = r"[A-Za-z0-9][A-Za-z0-9_.-]*"

REPO_PATTERN: Final[str] = rf"^{_SEGMENT}/{_SEGMENT}$"
REVISION_PATTERN: Final[str] = rf"^{_SEGMENT}$"
COMMIT_PATTERN: Final[str] = r"^[0-9a-f]{7,64}$"
DEFAULT_REVISION: Final[str] = "main"

_REPO_RE: Final[re.Pattern[str]] = re.compile(REPO_PATTERN)
_REVISION_RE: Final[re.Pattern[str]] = re.compile(REVISION_PATTERN)
_COMMIT_RE: Final[re.Pattern[str]] = re.compile(COMMIT_PATTERN)


class Repo(msgspec.Struct, frozen=True):
    """A model repository, ``owner/name``.

    Both parts become a cache directory name, so each must be a single path
    segment. This is checked on construction and when decoding.
    """

    owner: str
    name: str

    def __post_init__(self) -> None:
        for part in (self.owner, self.name):
            if not _REVISION_RE.fullmatch(part):
                raise ValueError(f"invalid repo '{self.owner}/{self.name}', expected 'owner/name'")

    @classmethod
    def parse(cls, value: str) -> "Repo":
        if not _REPO_RE.match(value):
            raise ValueError(f"invalid repo '{value}', expected 'owner/name'")
        owner, name = value.split("/", 1)
        return cls(owner=owner, name=name)

    @property
    def path(self) -> str:
        return f"{self.owner}/{self.name}"

    @property
    def cache_dirname(self) -> str:
        return f"models--{self.owner}--{self.name}"

    def __str__(self) -> str:
        return self.path


class HubFile(msgspec.Struct, frozen=True):
    """A file materialized in the local cache."""

    hf_cache: str
    repo: Repo
    filename: str
    snapshot: str
    size: int | None = None

    def path(self) -> Path:
        return Path(self.hf_cache) / self.repo.cache_dirname / "snapshots" / self.snapshot / self.filename


class ArtifactLocator(Protocol):
    """Resolve repository files from the local cache or the network."""

    def find_local_file(self, repo: Repo, filename: str, snapshot: str | None = None) -> HubFile: ...

    async def download(self, repo: Repo, filename: str, snapshot: str | None = None) -> HubFile: ...

    def model_chat_template(self, alias: str) -> "ChatTemplate": ...


class HubService:
    """Cache-first access to model repository files.

    Files live at ``{hf_cache}/models--{owner}--{name}/snapshots/{commit}/{filename}``
    and ``refs/{revision}`` maps a revision name to the commit it resolved to.
    Embedded chat templates are kept in an in-process registry keyed by alias.
    """

    def __init__(
        self,
        hf_cache: str | os.PathLike[str],
        *,
        endpoint: str = "https://huggingface.co",
        transport: TransportCallable | None = None,
        timeout: float = 10.0,
        token: str | None = None,
        embedded_templates: Mapping[str, "ChatTemplate"] | None = None,
    ) -> None:
        self.hf_cache = Path(hf_cache)
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._transport = transport or default_transport
        self._token = token
        self._embedded: dict[str, "ChatTemplate"] = dict(embedded_templates or {})

    @classmethod
    def from_config(cls, config: AppConfig, *, transport: TransportCallable | None = None) -> "HubService":
        return cls(
            config.hf_home,
            endpoint=config.hub_endpoint,
            transport=transport,
            timeout=config.http_timeout,
            token=os.environ.get("HF_TOKEN"),
        )

    def find_local_file(self, repo: Repo, filename: str, snapshot: str | None = None) -> HubFile:
        revision = snapshot or DEFAULT_REVISION
        if not _is_revision(revision) or not _is_filename(filename):
            raise NotFoundError(repo.path, filename, snapshot)
        commit = self._resolve_commit(repo, revision)
        if commit is None:
            raise NotFoundError(repo.path, filename, snapshot)
        hub_file = HubFile(hf_cache=str(self.hf_cache), repo=repo, filename=filename, snapshot=commit)
        path = hub_file.path()
        if not path.is_file():
            raise NotFoundError(repo.path, filename, snapshot)
        return msgspec.structs.replace(hub_file, size=path.stat().st_size)

    def local_file_exists(self, repo: Repo, filename: str, snapshot: str | None = None) -> bool:
        try:
            self.find_local_file(repo, filename, snapshot)
        except NotFoundError:
            return False
        return True

    async def download(self, repo: Repo, filename: str, snapshot: str | None = None) -> HubFile:
        revision = snapshot or DEFAULT_REVISION
        if not _is_revision(revision):
            raise DownloadError(f"invalid revision '{revision}' for '{repo.path}'")
        if not _is_filename(filename):
            raise DownloadError(f"invalid filename '{filename}' for '{repo.path}'")
        url = f"{self.endpoint}/{repo.path}/resolve/{revision}/{filename}"
        headers = {"User-Agent": "hearth"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        logger.info("Downloading %s from %s", filename, repo.path)
        try:
            response = await send(self._transport, HttpRequest(method="GET", url=url, headers=headers, timeout=self.timeout))
        except TransportError as exc:
            raise DownloadError(f"failed to download '{filename}' from '{repo.path}': {exc}") from exc
        if not response.ok:
            raise DownloadError(f"failed to download '{filename}' from '{repo.path}': status {response.status}")

        commit = response.header("X-Repo-Commit")
        if commit is None:
            commit = revision
        elif not _COMMIT_RE.fullmatch(commit):
            raise DownloadError(f"hub returned an invalid commit {commit!r} for '{repo.path}'")
        hub_file = HubFile(
            hf_cache=str(self.hf_cache), repo=repo, filename=filename, snapshot=commit, size=len(response.body)
        )
        try:
            _atomic_write(hub_file.path(), response.body)
            _atomic_write(self._ref_path(repo, revision), commit.encode("utf-8"))
        except OSError as exc:
            raise DownloadError(f"failed to store '{filename}' for '{repo.path}' in {self.hf_cache}") from exc
        return hub_file

    def register_chat_template(self, alias: str, template: "ChatTemplate") -> None:
        template.validate()
        self._embedded[alias] = template

    def model_chat_template(self, alias: str) -> "ChatTemplate":
        try:
            return self._embedded[alias]
        except KeyError:
            raise UnknownAliasError(alias) from None

    def _ref_path(self, repo: Repo, revision: str) -> Path:
        if not _is_revision(revision):
            raise ValueError(f"invalid revision '{revision}'")
        return self.hf_cache / repo.cache_dirname / "refs" / revision

    def _resolve_commit(self, repo: Repo, revision: str) -> str | None:
        ref = self._ref_path(repo, revision)
        if ref.is_file():
            commit = ref.read_text(encoding="utf-8").strip()
            if not _is_revision(commit):
                logger.warning("Ignoring malformed ref %s", ref)
                return None
            return commit
        # a pinned commit hash has no ref file
        if (self.hf_cache / repo.cache_dirname / "snapshots" / revision).is_dir():
            return revision
        return None


def _is_revision(value: str) -> bool:
    return _REVISION_RE.fullmatch(value) is not None


def _is_filename(value: str) -> bool:
    """Relative path inside a snapshot, possibly nested, never leaving it."""
    if not value or value.startswith("/") or "\\" in value:
        return False
    return all(part not in ("", ".", "..") for part in value.split("/"))


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


__all__ = [
    "COMMIT_PATTERN",
    "DEFAULT_REVISION",
    "REPO_PATTERN",
    "REVISION_PATTERN",
    "ArtifactLocator",
    "HubFile",
    "HubService",
    "Repo",
]
