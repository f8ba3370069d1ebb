from __future__ import annotations

import pathlib

import pytest

import hearth.cli as cli
from hearth.chat_template import TOKENIZER_CONFIG_JSON, ByRepo, ChatTemplate, Embedded
from hearth.config import AppConfig
from hearth.hub import HubService, Repo
from hearth.models import AppStatus
from hearth.secrets import InMemorySecretStore
from hearth.serialization import json_decode, json_encode
from tests.support import FakeRegistrar, write_cached_file


@pytest.fixture
def environment(monkeypatch: pytest.MonkeyPatch, tmp_path: pathlib.Path) -> cli.CLIEnvironment:
    config = AppConfig(version="9.9.9", hf_home=str(tmp_path))
    env = cli.CLIEnvironment(
        config=config,
        secrets=InMemorySecretStore(),
        registrar=FakeRegistrar(),
        hub=HubService(tmp_path),
    )
    monkeypatch.setattr(cli, "_load_environment", lambda: env)
    return env


def test_info_reports_fresh_state(environment: cli.CLIEnvironment, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["info"]) == 0
    assert json_decode(capsys.readouterr().out.encode()) == {"version": "9.9.9", "authz": False, "status": "setup"}


def test_setup_twice_fails_the_second_time(
    environment: cli.CLIEnvironment, capsys: pytest.CaptureFixture[str]
) -> None:
    assert cli.main(["setup", "--no-authz"]) == 0
    assert json_decode(capsys.readouterr().out.encode()) == {"status": "ready"}

    assert cli.main(["setup", "--authz"]) == 1
    assert "app is already setup" in capsys.readouterr().err
    assert environment.secrets.get_app_status() is AppStatus.READY


def test_setup_requires_a_mode(environment: cli.CLIEnvironment) -> None:
    with pytest.raises(SystemExit):
        cli.main(["setup"])


def test_resolve_prints_template(
    environment: cli.CLIEnvironment, tmp_path: pathlib.Path, capsys: pytest.CaptureFixture[str]
) -> None:
    repo = Repo.parse("acme/chat-model")
    write_cached_file(tmp_path, repo, TOKENIZER_CONFIG_JSON, json_encode({"chat_template": "{{ x }}"}))

    assert cli.main(["chat-template", "resolve", "acme/chat-model"]) == 0
    assert json_decode(capsys.readouterr().out.encode()) == {"chat_template": "{{ x }}"}


def test_resolve_embedded_unknown_alias_fails(
    environment: cli.CLIEnvironment, capsys: pytest.CaptureFixture[str]
) -> None:
    environment.hub.register_chat_template("known", ChatTemplate(chat_template="{{ x }}"))

    assert cli.main(["chat-template", "resolve", "embedded", "--alias", "unknown"]) == 1
    assert "unknown" in capsys.readouterr().err


def test_pull_embedded_is_a_no_op(environment: cli.CLIEnvironment, capsys: pytest.CaptureFixture[str]) -> None:
    assert cli.main(["chat-template", "pull", "embedded"]) == 0
    assert "nothing to download" in capsys.readouterr().out


def test_load_environment_requires_encryption_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("HEARTH_ENCRYPTION_KEY", raising=False)

    with pytest.raises(SystemExit):
        cli._load_environment()


def test_parse_source_returns_tagged_source() -> None:
    assert cli._parse_source("acme/chat-model") == ByRepo(repo=Repo.parse("acme/chat-model"))
    assert cli._parse_source("embedded") == Embedded()


def test_malformed_source_exits(environment: cli.CLIEnvironment) -> None:
    with pytest.raises(SystemExit, match="invalid repo"):
        cli.main(["chat-template", "resolve", "acme/../chat-model"])
