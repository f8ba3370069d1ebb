"""Command line utilities for Hearth."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Sequence

from .auth import AuthRegistrar, HttpAuthRegistrar
from .chat_template import ChatTemplateResolver, ChatTemplateSource, parse_chat_template_source
from .config import AppConfig
from .exceptions import HearthError
from .hub import HubService
from .secrets import EncryptedFileSecretStore, SecretStore
from .serialization import json_encode
from .setup import SetupController

PROJECT_NAME = "hearth"


@dataclass(slots=True)
class CLIEnvironment:
    """All dependencies required to execute CLI operations."""

    config: AppConfig
    secrets: SecretStore
    registrar: AuthRegistrar
    hub: HubService


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    try:
        return args.func(args)
    except HearthError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=PROJECT_NAME, description="Hearth management commands")
    parser.add_argument("--log-level", default="warning", choices=["debug", "info", "warning", "error"])
    sub = parser.add_subparsers(dest="command", required=True)

    info = sub.add_parser("info", help="Show version, authorization mode and status")
    info.set_defaults(func=_cmd_info)

    setup = sub.add_parser("setup", help="Set the application up once")
    mode = setup.add_mutually_exclusive_group(required=True)
    mode.add_argument("--authz", dest="authz", action="store_true", help="Register an OAuth client")
    mode.add_argument("--no-authz", dest="authz", action="store_false", help="Open access without login")
    setup.set_defaults(func=_cmd_setup)

    templates = sub.add_parser("chat-template", help="Chat-template utilities")
    template_sub = templates.add_subparsers(dest="template_command", required=True)

    resolve = template_sub.add_parser("resolve", help="Resolve a template from the local cache")
    resolve.add_argument("source", help="'embedded', a template id such as 'llama3', or 'owner/name'")
    resolve.add_argument("--alias", default="default", help="Model alias for embedded templates")
    resolve.set_defaults(func=_cmd_resolve)

    pull = template_sub.add_parser("pull", help="Download the tokenizer configuration into the cache")
    pull.add_argument("source", help="A template id such as 'llama3', or 'owner/name'")
    pull.set_defaults(func=_cmd_pull)
    return parser


def _cmd_info(args: argparse.Namespace) -> int:
    env = _load_environment()
    info = asyncio.run(_controller(env).app_info())
    print(json_encode(info).decode("utf-8"))
    return 0


def _cmd_setup(args: argparse.Namespace) -> int:
    env = _load_environment()
    response = asyncio.run(_controller(env).setup(args.authz))
    print(json_encode(response).decode("utf-8"))
    return 0


def _cmd_resolve(args: argparse.Namespace) -> int:
    env = _load_environment()
    source = _parse_source(args.source)
    template = ChatTemplateResolver(env.hub).resolve(source, args.alias)
    print(json_encode(template).decode("utf-8"))
    return 0


def _cmd_pull(args: argparse.Namespace) -> int:
    env = _load_environment()
    source = _parse_source(args.source)
    hub_file = asyncio.run(ChatTemplateResolver(env.hub).ensure_available(source))
    if hub_file is None:
        print("embedded template, nothing to download")
    else:
        print(f"wrote {hub_file.path()}")
    return 0


def _parse_source(value: str) -> ChatTemplateSource:
    try:
        return parse_chat_template_source(value)
    except ValueError as exc:
        raise SystemExit(str(exc)) from exc


def _controller(env: CLIEnvironment) -> SetupController:
    return SetupController(secrets=env.secrets, registrar=env.registrar, settings=env.config)


def _load_environment() -> CLIEnvironment:
    config = AppConfig.from_env()
    if not config.encryption_key:
        raise SystemExit("HEARTH_ENCRYPTION_KEY must be set to open the secret store")
    return CLIEnvironment(
        config=config,
        secrets=EncryptedFileSecretStore(config.secrets_path, key=config.encryption_key),
        registrar=HttpAuthRegistrar(config),
        hub=HubService.from_config(config),
    )


__all__ = ["CLIEnvironment", "main"]
