"""Chat-template sources and their resolution against the model hub."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Final, Union

import msgspec
from msgspec import DecodeError, Struct

from .exceptions import ChatTemplateValidationError, NotFoundError, ParseError
from .hub import DEFAULT_REVISION, ArtifactLocator, HubFile, Repo
from .serialization import json_decode

logger = logging.getLogger(__name__)

TOKENIZER_CONFIG_JSON: Final[str] = "tokenizer_config.json"
DEFAULT_TEMPLATE_NAME: Final[str] = "default"


class ChatTemplateId(str, Enum):
    """Well-known template families, each published by a canonical repository."""

    LLAMA3 = "llama3"
    LLAMA2 = "llama2"
    PHI3 = "phi3"
    GEMMA = "gemma"
    DEEPSEEK = "deepseek"
    COMMAND_R = "command-r"
    OPENCHAT = "openchat"
    TINYLLAMA = "tinyllama"

    @property
    def repo(self) -> Repo:
        return Repo.parse(_CANONICAL_REPOS[self])


_CANONICAL_REPOS: Final[dict[ChatTemplateId, str]] = {
    ChatTemplateId.LLAMA3: "meta-llama/Meta-Llama-3-8B-Instruct",
    ChatTemplateId.LLAMA2: "meta-llama/Llama-2-13b-chat-hf",
    ChatTemplateId.PHI3: "microsoft/Phi-3-mini-4k-instruct",
    ChatTemplateId.GEMMA: "google/gemma-7b-it",
    ChatTemplateId.DEEPSEEK: "deepseek-ai/deepseek-llm-67b-chat",
    ChatTemplateId.COMMAND_R: "CohereForAI/c4ai-command-r-plus",
    ChatTemplateId.OPENCHAT: "openchat/openchat-3.6-8b-20240522",
    ChatTemplateId.TINYLLAMA: "TinyLlama/TinyLlama-1.1B-Chat-v1.0",
}


class ById(Struct, frozen=True, tag="id", tag_field="type"):
    """Template taken from the canonical repository of a known family."""

    id: ChatTemplateId

    def repository(self) -> Repo | None:
        return self.id.repo


class ByRepo(Struct, frozen=True, tag="repo", tag_field="type"):
    """Template taken from the tokenizer configuration of an arbitrary repository."""

    repo: Repo

    def repository(self) -> Repo | None:
        return self.repo


class Embedded(Struct, frozen=True, tag="embedded", tag_field="type"):
    """Template bundled with the model alias itself."""

    def repository(self) -> Repo | None:
        return None


ChatTemplateSource = Union[ById, ByRepo, Embedded]


def parse_chat_template_source(value: str) -> ChatTemplateSource:
    """Parse ``embedded``, a :class:`ChatTemplateId` value, or ``owner/name``."""

    if value == "embedded":
        return Embedded()
    try:
        return ById(id=ChatTemplateId(value))
    except ValueError:
        pass
    return ByRepo(repo=Repo.parse(value))


class NamedTemplate(Struct, frozen=True):
    name: str
    template: str


class ChatTemplate(Struct, frozen=True, omit_defaults=True):
    """Chat template with the special tokens it renders around messages.

    ``chat_template`` is either one Jinja source or a list of named variants,
    mirroring the two shapes ``tokenizer_config.json`` uses.
    """

    chat_template: str | tuple[NamedTemplate, ...]
    bos_token: str | None = None
    eos_token: str | None = None

    @classmethod
    def from_bytes(cls, data: bytes, *, source: str | None = None) -> "ChatTemplate":
        """Parse a tokenizer configuration.

        Non-JSON input or a non-object document raises :class:`ParseError`.
        Fields of the wrong shape are collected and raised together as
        :class:`ChatTemplateValidationError`.
        """

        where = source or TOKENIZER_CONFIG_JSON
        try:
            document = json_decode(data)
        except DecodeError as exc:
            raise ParseError(f"{where} is not valid JSON") from exc
        if not isinstance(document, dict):
            raise ParseError(f"{where} must contain a JSON object")

        violations: list[str] = []
        chat_template = _parse_template(document.get("chat_template"), violations)
        bos_token = _parse_token(document, "bos_token", violations)
        eos_token = _parse_token(document, "eos_token", violations)
        if violations or chat_template is None:
            raise ChatTemplateValidationError(violations, source=where)
        return cls(chat_template=chat_template, bos_token=bos_token, eos_token=eos_token)

    @classmethod
    def from_file(cls, hub_file: HubFile) -> "ChatTemplate":
        path = hub_file.path()
        try:
            data = path.read_bytes()
        except OSError as exc:
            raise NotFoundError(hub_file.repo.path, hub_file.filename, hub_file.snapshot) from exc
        return cls.from_bytes(data, source=str(path))

    def violations(self) -> list[str]:
        found: list[str] = []
        if isinstance(self.chat_template, str):
            if not self.chat_template.strip():
                found.append("chat_template")
        elif not self.chat_template:
            found.append("chat_template")
        else:
            seen: set[str] = set()
            for index, named in enumerate(self.chat_template):
                if not named.name.strip() or named.name in seen:
                    found.append(f"chat_template[{index}].name")
                seen.add(named.name)
                if not named.template.strip():
                    found.append(f"chat_template[{index}].template")
        for field_name in ("bos_token", "eos_token"):
            value = getattr(self, field_name)
            if value is not None and not value:
                found.append(field_name)
        return found

    def validate(self) -> None:
        found = self.violations()
        if found:
            raise ChatTemplateValidationError(found)

    def template_for(self, name: str | None = None) -> str:
        """Return the Jinja source for ``name``, or the default variant."""

        if isinstance(self.chat_template, str):
            if name not in (None, DEFAULT_TEMPLATE_NAME):
                raise KeyError(name)
            return self.chat_template
        wanted = name or DEFAULT_TEMPLATE_NAME
        for named in self.chat_template:
            if named.name == wanted:
                return named.template
        if name is None:
            return self.chat_template[0].template
        raise KeyError(name)


def _parse_template(raw: Any, violations: list[str]) -> str | tuple[NamedTemplate, ...] | None:
    if isinstance(raw, str):
        return raw
    if not isinstance(raw, list):
        violations.append("chat_template")
        return None
    templates: list[NamedTemplate] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            violations.append(f"chat_template[{index}]")
            continue
        name, template = item.get("name"), item.get("template")
        if not isinstance(name, str):
            violations.append(f"chat_template[{index}].name")
        if not isinstance(template, str):
            violations.append(f"chat_template[{index}].template")
        if isinstance(name, str) and isinstance(template, str):
            templates.append(NamedTemplate(name=name, template=template))
    return tuple(templates)


def _parse_token(document: dict[str, Any], key: str, violations: list[str]) -> str | None:
    raw = document.get(key)
    if raw is None or isinstance(raw, str):
        return raw
    # AddedToken form: {"__type": "AddedToken", "content": "<s>", ...}
    if isinstance(raw, dict) and isinstance(raw.get("content"), str):
        return raw["content"]
    violations.append(key)
    return None


class Alias(Struct, frozen=True):
    """A named model configuration pointing at a repository file and a template source."""

    alias: str
    repo: Repo
    filename: str
    snapshot: str = DEFAULT_REVISION
    chat_template: ChatTemplateSource = msgspec.field(default_factory=Embedded)


class ChatTemplateResolver:
    """Turn a :data:`ChatTemplateSource` into a validated :class:`ChatTemplate`.

    :meth:`resolve` only reads the local cache; :meth:`ensure_available` is the
    path that fills it. Neither keeps state between calls.
    """

    def __init__(self, hub: ArtifactLocator) -> None:
        self.hub = hub

    def resolve(self, source: ChatTemplateSource, alias: str) -> ChatTemplate:
        repo = source.repository()
        if repo is None:
            return self.hub.model_chat_template(alias)
        hub_file = self.hub.find_local_file(repo, TOKENIZER_CONFIG_JSON, None)
        template = ChatTemplate.from_file(hub_file)
        template.validate()
        logger.debug("Resolved chat template for %s from %s", alias, repo)
        return template

    def resolve_alias(self, alias: Alias) -> ChatTemplate:
        return self.resolve(alias.chat_template, alias.alias)

    async def ensure_available(self, source: ChatTemplateSource) -> HubFile | None:
        repo = source.repository()
        if repo is None:
            return None
        return await self.hub.download(repo, TOKENIZER_CONFIG_JSON, None)


__all__ = [
    "DEFAULT_TEMPLATE_NAME",
    "TOKENIZER_CONFIG_JSON",
    "Alias",
    "ById",
    "ByRepo",
    "ChatTemplate",
    "ChatTemplateId",
    "ChatTemplateResolver",
    "ChatTemplateSource",
    "Embedded",
    "NamedTemplate",
    "parse_chat_template_source",
]
