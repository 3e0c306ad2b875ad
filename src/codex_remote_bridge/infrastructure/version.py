"""Codex version parsing and elicitation response-style negotiation."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum


class ElicitationResponseStyle(str, Enum):
    """Codex が期待する elicitation 応答の形式."""

    DECISION = "decision"
    BOTH = "both"


@dataclass(frozen=True)
class VersionInfo:
    """`codex --version` の解析結果."""

    raw: str | None
    parsed: bool
    major: int = 0
    minor: int = 0
    patch: int = 0
    prerelease_tag: str | None = None
    prerelease_num: int | None = None


@dataclass(frozen=True)
class VersionTarget:
    """比較対象のバージョン."""

    major: int
    minor: int
    patch: int
    prerelease_tag: str | None = None
    prerelease_num: int | None = None


# このバージョン以下は decision のみの応答を期待する
ELICITATION_DECISION_MAX_VERSION = VersionTarget(major=0, minor=77, patch=0)

# 製品名付き（例: "codex-cli 0.77.0", "codex v0.78.0-alpha.2"）
_PRODUCT_VERSION_PATTERN = re.compile(
    r"(?:codex(?:-cli)?)\s+v?(\d+)\.(\d+)\.(\d+)(?:-([a-z]+)\.(\d+))?",
    re.IGNORECASE,
)
# 製品名なしのフォールバック
_BARE_VERSION_PATTERN = re.compile(r"\b(\d+)\.(\d+)\.(\d+)(?:-([a-z]+)\.(\d+))?\b")


def parse_version(raw: str | None) -> VersionInfo:
    """
    バージョン文字列を解析する.

    解析できない場合もエラーにはせず、parsed=False のゼロ埋めを返す。

    Args:
        raw: `codex --version` の出力（None 可）

    Returns:
        解析結果
    """
    if not raw:
        return VersionInfo(raw=raw, parsed=False)

    match = _PRODUCT_VERSION_PATTERN.search(raw) or _BARE_VERSION_PATTERN.search(raw)
    if match is None:
        return VersionInfo(raw=raw, parsed=False)

    major, minor, patch, tag, num = match.groups()
    return VersionInfo(
        raw=raw,
        parsed=True,
        major=int(major),
        minor=int(minor),
        patch=int(patch),
        prerelease_tag=tag,
        prerelease_num=int(num) if num else None,
    )


def compare_versions(info: VersionInfo | VersionTarget, target: VersionTarget) -> int:
    """
    バージョンを比較する.

    (major, minor, patch) が等しい場合はプレリリースタグで比較する。
    タグなしはタグ付きより新しい扱い。タグが異なる場合は文字列順、
    同じタグの場合は末尾の番号順。

    Returns:
        info が古ければ負、等しければ 0、新しければ正
    """
    for left, right in (
        (info.major, target.major),
        (info.minor, target.minor),
        (info.patch, target.patch),
    ):
        if left != right:
            return left - right

    info_tag = info.prerelease_tag
    target_tag = target.prerelease_tag
    if not info_tag and not target_tag:
        return 0
    if not info_tag:
        return 1
    if not target_tag:
        return -1
    if info_tag != target_tag:
        return -1 if info_tag < target_tag else 1

    return (info.prerelease_num or 0) - (target.prerelease_num or 0)


def is_version_at_most(info: VersionInfo, target: VersionTarget) -> bool:
    """解析済みかつ target 以下の場合 True."""
    if not info.parsed:
        return False
    return compare_versions(info, target) <= 0


def select_response_style(
    info: VersionInfo, override: str | None = None
) -> ElicitationResponseStyle:
    """
    elicitation 応答の形式を決定する.

    明示的な上書き（"decision" / "both"）が最優先。バージョン不明の場合は
    互換性の高い both を選ぶ。

    Args:
        info: Codex のバージョン情報
        override: 設定による上書き値

    Returns:
        応答形式
    """
    if override in {style.value for style in ElicitationResponseStyle}:
        return ElicitationResponseStyle(override)

    if not info.parsed:
        return ElicitationResponseStyle.BOTH
    if is_version_at_most(info, ELICITATION_DECISION_MAX_VERSION):
        return ElicitationResponseStyle.DECISION
    return ElicitationResponseStyle.BOTH


@dataclass(frozen=True)
class VersionNegotiator:
    """インストール済み Codex のバージョンに基づくプロトコル判定."""

    info: VersionInfo

    @classmethod
    def from_raw(cls, raw: str | None) -> VersionNegotiator:
        """バージョン文字列から生成する."""
        return cls(info=parse_version(raw))

    def response_style(self, override: str | None = None) -> ElicitationResponseStyle:
        """elicitation 応答の形式."""
        return select_response_style(self.info, override)

    def is_at_most(self, target: VersionTarget) -> bool:
        """target 以下のバージョンかどうか."""
        return is_version_at_most(self.info, target)
