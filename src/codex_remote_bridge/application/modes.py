"""Permission modes and their Codex session settings."""

from __future__ import annotations

from enum import Enum


class PermissionMode(str, Enum):
    """リモートから指定される権限モード."""

    DEFAULT = "default"
    READ_ONLY = "read-only"
    SAFE_YOLO = "safe-yolo"
    YOLO = "yolo"


# 権限モード → Codex の approval-policy
_APPROVAL_POLICIES: dict[PermissionMode, str] = {
    PermissionMode.DEFAULT: "untrusted",
    PermissionMode.READ_ONLY: "never",
    PermissionMode.SAFE_YOLO: "on-failure",
    PermissionMode.YOLO: "never",
}

# 権限モード → Codex の sandbox
_SANDBOX_MODES: dict[PermissionMode, str] = {
    PermissionMode.DEFAULT: "workspace-write",
    PermissionMode.READ_ONLY: "read-only",
    PermissionMode.SAFE_YOLO: "workspace-write",
    PermissionMode.YOLO: "danger-full-access",
}


def map_permission_mode_to_approval_policy(mode: PermissionMode | str) -> str:
    """
    権限モードを Codex セッションの approval-policy に変換する.

    Args:
        mode: 権限モード（文字列も可）

    Returns:
        approval-policy 文字列

    Raises:
        ValueError: 未知の権限モードの場合
    """
    return _APPROVAL_POLICIES[PermissionMode(mode)]


def map_permission_mode_to_sandbox(mode: PermissionMode | str) -> str:
    """権限モードを Codex セッションの sandbox 設定に変換する."""
    return _SANDBOX_MODES[PermissionMode(mode)]
