"""Codex runner resolution (direct binary or npx-wrapped package)."""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

# MCP サーバーを起動するサブコマンド（旧 "mcp" サブコマンドは使用しない）
CODEX_MCP_SUBCOMMAND = "mcp-server"

CODEX_BINARY = "codex"
PACKAGE_RUNNER = "npx"

_CODEX_PACKAGE_SPEC_PATTERN = re.compile(r"@openai/codex@.+")


@dataclass(frozen=True)
class CodexRunner:
    """Codex の起動方法."""

    command: str
    args: tuple[str, ...]
    label: str


@dataclass(frozen=True)
class McpCommand:
    """MCP サーバー起動コマンド."""

    command: str
    args: tuple[str, ...]


def parse_codex_package_spec(value: str | None) -> str | None:
    """
    `@openai/codex@<version|tag>` 形式のパッケージ指定を認識する.

    Args:
        value: 判定対象の文字列

    Returns:
        パッケージ指定の場合はそのまま、それ以外は None
    """
    if not value:
        return None
    return value if _CODEX_PACKAGE_SPEC_PATTERN.fullmatch(value) else None


def build_codex_runner(spec: str | None = None) -> CodexRunner:
    """パッケージ指定があれば npx 経由、なければ codex バイナリを直接使う."""
    if spec:
        return CodexRunner(command=PACKAGE_RUNNER, args=("-y", spec), label=spec)
    return CodexRunner(command=CODEX_BINARY, args=(), label=CODEX_BINARY)


def build_mcp_command(runner: CodexRunner) -> McpCommand:
    """runner の引数に MCP サブコマンドを付与する."""
    return McpCommand(command=runner.command, args=(*runner.args, CODEX_MCP_SUBCOMMAND))


def build_version_command(runner: CodexRunner) -> tuple[str, ...]:
    """バージョン確認用のコマンドライン."""
    return (runner.command, *runner.args, "--version")


def consume_codex_package_spec(
    args: Sequence[str],
) -> tuple[str | None, list[str]]:
    """
    先頭の引数がパッケージ指定であれば取り出す.

    Args:
        args: コマンドライン引数

    Returns:
        (パッケージ指定または None, 残りの引数)
    """
    if not args:
        return None, list(args)

    spec = parse_codex_package_spec(args[0])
    if spec is None:
        return None, list(args)
    return spec, list(args[1:])
