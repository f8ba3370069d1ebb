"""Hearth application bootstrap and chat-template resolution."""

from .auth import AuthRegistrar, HttpAuthRegistrar
from .chat_template import (
    TOKENIZER_CONFIG_JSON,
    Alias,
    ById,
    ByRepo,
    ChatTemplate,
    ChatTemplateId,
    ChatTemplateResolver,
    ChatTemplateSource,
    Embedded,
    NamedTemplate,
    parse_chat_template_source,
)
from .config import AppConfig
from .exceptions import (
    AlreadySetupError,
    ChatTemplateError,
    ChatTemplateValidationError,
    DownloadError,
    HearthError,
    NotFoundError,
    ParseError,
    RegistrationError,
    SecretStoreError,
    UnknownAliasError,
)
from .hub import ArtifactLocator, HubFile, HubService, Repo
from .models import AppInfo, AppRegistration, AppStatus, SetupResponse
from .redirects import LOGIN_CALLBACK_PATH, LOOPBACK_HOSTS, build_redirect_uris
from .secrets import EncryptedFileSecretStore, InMemorySecretStore, SecretStore
from .setup import SettingsProvider, SetupController

__all__ = [
    "LOGIN_CALLBACK_PATH",
    "LOOPBACK_HOSTS",
    "TOKENIZER_CONFIG_JSON",
    "Alias",
    "AlreadySetupError",
    "AppConfig",
    "AppInfo",
    "AppRegistration",
    "AppStatus",
    "ArtifactLocator",
    "AuthRegistrar",
    "ById",
    "ByRepo",
    "ChatTemplate",
    "ChatTemplateError",
    "ChatTemplateId",
    "ChatTemplateResolver",
    "ChatTemplateSource",
    "ChatTemplateValidationError",
    "DownloadError",
    "Embedded",
    "EncryptedFileSecretStore",
    "HearthError",
    "HttpAuthRegistrar",
    "HubFile",
    "HubService",
    "InMemorySecretStore",
    "NamedTemplate",
    "NotFoundError",
    "ParseError",
    "RegistrationError",
    "Repo",
    "SecretStore",
    "SecretStoreError",
    "SettingsProvider",
    "SetupController",
    "SetupResponse",
    "UnknownAliasError",
    "build_redirect_uris",
    "parse_chat_template_source",
]
