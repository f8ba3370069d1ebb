"""Error taxonomy for the bootstrap core."""

from __future__ import annotations

from typing import ClassVar, Iterable

from .serialization import json_encode


class HearthError(RuntimeError):
    """Base error type.

    Every subclass exposes a stable ``code`` and ``error_type`` so a transport
    layer can render it without inspecting the message.
    """

    code: ClassVar[str] = "hearth_error"
    error_type: ClassVar[str] = "internal_server_error"
    status: ClassVar[int] = 500

    def to_response_body(self) -> bytes:
        return json_encode({"error": {"message": str(self), "type": self.error_type, "code": self.code}})


class AlreadySetupError(HearthError):
    """Raised when setup runs against an application that left the ``setup`` state."""

    code = "app_service_error-already_setup"
    error_type = "invalid_request_error"
    status = 400

    def __init__(self) -> None:
        super().__init__("app is already setup")


class RegistrationError(HearthError):
    """Raised when the identity provider rejects or fails a client registration."""

    code = "auth_service_error"


class SecretStoreError(HearthError):
    """Raised when the secret store cannot be read or written."""

    code = "secret_store_error"


class ChatTemplateError(HearthError):
    """Base error for chat-template resolution."""

    code = "chat_template_error"


class ChatTemplateValidationError(ChatTemplateError):
    """Raised when a chat template fails structural validation."""

    code = "chat_template_validation_error"
    error_type = "invalid_request_error"
    status = 400

    def __init__(self, fields: Iterable[str], *, source: str | None = None) -> None:
        self.fields: tuple[str, ...] = tuple(dict.fromkeys(fields))
        self.source = source
        where = f" in {source}" if source else ""
        super().__init__(f"invalid chat template{where}: {', '.join(self.fields)}")


class ParseError(ChatTemplateError):
    """Raised when a tokenizer configuration is not a JSON object."""

    code = "chat_template_parse_error"
    error_type = "invalid_request_error"
    status = 400


class NotFoundError(ChatTemplateError):
    """Raised when an artifact is absent from the local cache."""

    code = "hub_file_not_found"
    error_type = "not_found_error"
    status = 404

    def __init__(self, repo: str, filename: str, snapshot: str | None = None) -> None:
        self.repo = repo
        self.filename = filename
        self.snapshot = snapshot
        revision = snapshot or "main"
        super().__init__(f"file '{filename}' not found in local cache for repo '{repo}' at '{revision}'")


class DownloadError(ChatTemplateError):
    """Raised when fetching an artifact fails on the network or on disk."""

    code = "hub_download_error"


class UnknownAliasError(ChatTemplateError):
    """Raised when no embedded chat template is registered for an alias."""

    code = "unknown_alias"
    error_type = "not_found_error"
    status = 404

    def __init__(self, alias: str) -> None:
        self.alias = alias
        super().__init__(f"no embedded chat template registered for alias '{alias}'")


__all__ = [
    "AlreadySetupError",
    "ChatTemplateError",
    "ChatTemplateValidationError",
    "DownloadError",
    "HearthError",
    "NotFoundError",
    "ParseError",
    "RegistrationError",
    "SecretStoreError",
    "UnknownAliasError",
]
