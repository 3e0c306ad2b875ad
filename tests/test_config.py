"""Tests for configuration management."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from codex_remote_bridge.application.modes import PermissionMode
from codex_remote_bridge.infrastructure import config as config_module
from codex_remote_bridge.infrastructure.config import Config, get_config
from codex_remote_bridge.infrastructure.version import ElicitationResponseStyle

_ENV_VARS = (
    "CODEX_PACKAGE_SPEC",
    "CODEX_ELICITATION_STYLE",
    "VERSION_PROBE_TIMEOUT",
    "DEFAULT_PERMISSION_MODE",
    "PERMISSION_PENDING_WARNING_SECONDS",
    "LOG_LEVEL",
    "LOG_DIR",
    "LOG_BACKUP_COUNT",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """テストに影響する環境変数を削除する."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def test_config_default_values() -> None:
    """デフォルト値が正しく設定されることを確認する."""
    config = Config(_env_file=None)

    assert config.codex_package_spec is None
    assert config.codex_elicitation_style is None
    assert config.version_probe_timeout == 10.0
    assert config.default_permission_mode == PermissionMode.DEFAULT
    assert config.permission_pending_warning_seconds == 30.0
    assert config.log_level == "INFO"
    assert config.log_dir == "logs"
    assert config.log_backup_count == 7
    assert config.build_runner().command == "codex"


def test_config_package_spec(monkeypatch: pytest.MonkeyPatch) -> None:
    """パッケージ指定があれば npx 経由で起動する."""
    monkeypatch.setenv("CODEX_PACKAGE_SPEC", "@openai/codex@0.77.0")

    config = Config(_env_file=None)

    assert config.codex_package_spec == "@openai/codex@0.77.0"
    runner = config.build_runner()
    assert runner.command == "npx"
    assert runner.args == ("-y", "@openai/codex@0.77.0")


def test_config_empty_package_spec(monkeypatch: pytest.MonkeyPatch) -> None:
    """空のパッケージ指定は未設定として扱う."""
    monkeypatch.setenv("CODEX_PACKAGE_SPEC", "")

    assert Config(_env_file=None).codex_package_spec is None


def test_config_invalid_package_spec(monkeypatch: pytest.MonkeyPatch) -> None:
    """不正なパッケージ指定は検証エラー."""
    monkeypatch.setenv("CODEX_PACKAGE_SPEC", "codex@latest")

    with pytest.raises(ValidationError, match="Invalid Codex package spec"):
        Config(_env_file=None)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("decision", ElicitationResponseStyle.DECISION),
        (" BOTH ", ElicitationResponseStyle.BOTH),
        ("content", None),
        ("", None),
    ],
)
def test_config_elicitation_style(
    monkeypatch: pytest.MonkeyPatch,
    value: str,
    expected: ElicitationResponseStyle | None,
) -> None:
    """応答形式の上書きは大文字小文字を無視し、不明な値は無視する."""
    monkeypatch.setenv("CODEX_ELICITATION_STYLE", value)

    assert Config(_env_file=None).codex_elicitation_style == expected


def test_config_permission_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    """権限モードを環境変数で指定できる."""
    monkeypatch.setenv("DEFAULT_PERMISSION_MODE", "read-only")

    assert Config(_env_file=None).default_permission_mode == PermissionMode.READ_ONLY


def test_config_invalid_permission_mode(monkeypatch: pytest.MonkeyPatch) -> None:
    """未知の権限モードは検証エラー."""
    monkeypatch.setenv("DEFAULT_PERMISSION_MODE", "bypassPermissions")

    with pytest.raises(ValidationError):
        Config(_env_file=None)


@pytest.mark.parametrize(
    "name", ["PERMISSION_PENDING_WARNING_SECONDS", "VERSION_PROBE_TIMEOUT"]
)
def test_config_non_positive_seconds(monkeypatch: pytest.MonkeyPatch, name: str) -> None:
    """秒数は正の値のみ受け付ける."""
    monkeypatch.setenv(name, "0")

    with pytest.raises(ValidationError):
        Config(_env_file=None)


def test_get_config_returns_singleton(monkeypatch: pytest.MonkeyPatch) -> None:
    """get_config は同じインスタンスを返す."""
    monkeypatch.setattr(config_module, "_config", None)

    first = get_config()
    second = get_config()

    assert first is second
