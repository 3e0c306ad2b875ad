"""Configuration management."""

from __future__ import annotations

import logging

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from codex_remote_bridge.application.modes import PermissionMode
from codex_remote_bridge.infrastructure.runner import (
    CodexRunner,
    build_codex_runner,
    parse_codex_package_spec,
)
from codex_remote_bridge.infrastructure.version import ElicitationResponseStyle

logger = logging.getLogger(__name__)


class Config(BaseSettings):
    """アプリケーション設定."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Codex設定
    codex_package_spec: str | None = Field(
        default=None,
        description="npx 経由で起動する Codex パッケージ（例: @openai/codex@latest）",
    )
    codex_elicitation_style: ElicitationResponseStyle | None = Field(
        default=None,
        description="elicitation 応答形式の上書き（decision / both）",
    )
    version_probe_timeout: float = Field(
        default=10.0,
        gt=0,
        description="`codex --version` の実行タイムアウト（秒）",
    )

    # パーミッション設定
    default_permission_mode: PermissionMode = Field(
        default=PermissionMode.DEFAULT,
        description="起動時の権限モード",
    )
    permission_pending_warning_seconds: float = Field(
        default=30.0,
        gt=0,
        description="パーミッション応答待ちの警告を出すまでの秒数",
    )

    # ログ設定
    log_level: str = Field(default="INFO", description="ログレベル")
    log_dir: str = Field(default="logs", description="ログ出力ディレクトリ")
    log_backup_count: int = Field(
        default=7, ge=0, description="ログローテーションの保持日数"
    )

    @field_validator("codex_package_spec", mode="before")
    @classmethod
    def validate_codex_package_spec(cls, v: str | None) -> str | None:
        """パッケージ指定が @openai/codex@<version|tag> 形式かを検証する."""
        if v is None or v == "":
            return None
        spec = parse_codex_package_spec(v)
        if spec is None:
            msg = f"Invalid Codex package spec: {v!r} (expected @openai/codex@<version|tag>)"
            raise ValueError(msg)
        return spec

    @field_validator("codex_elicitation_style", mode="before")
    @classmethod
    def parse_codex_elicitation_style(
        cls, v: str | ElicitationResponseStyle | None
    ) -> ElicitationResponseStyle | None:
        """上書き値を大文字小文字無視で解釈する（不正な値は無視）."""
        if v is None or isinstance(v, ElicitationResponseStyle):
            return v
        normalized = v.strip().lower()
        if not normalized:
            return None
        try:
            return ElicitationResponseStyle(normalized)
        except ValueError:
            logger.warning("Ignoring unknown elicitation style override: %s", v)
            return None

    def build_runner(self) -> CodexRunner:
        """設定に応じた Codex の起動方法を返す."""
        return build_codex_runner(self.codex_package_spec)


# グローバル設定インスタンス（シングルトン）
_config: Config | None = None


def get_config() -> Config:
    """
    グローバル設定インスタンスを取得する.

    Returns:
        設定インスタンス
    """
    global _config
    if _config is None:
        _config = Config()
    return _config
