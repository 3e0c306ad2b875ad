"""Tests for permission mode mapping."""

from __future__ import annotations

import pytest

from codex_remote_bridge.application.modes import (
    PermissionMode,
    map_permission_mode_to_approval_policy,
    map_permission_mode_to_sandbox,
)


@pytest.mark.parametrize(
    ("mode", "approval_policy", "sandbox"),
    [
        (PermissionMode.DEFAULT, "untrusted", "workspace-write"),
        (PermissionMode.READ_ONLY, "never", "read-only"),
        (PermissionMode.SAFE_YOLO, "on-failure", "workspace-write"),
        (PermissionMode.YOLO, "never", "danger-full-access"),
    ],
)
def test_mode_mapping(mode: PermissionMode, approval_policy: str, sandbox: str) -> None:
    """権限モードごとの approval-policy と sandbox を確認する."""
    assert map_permission_mode_to_approval_policy(mode) == approval_policy
    assert map_permission_mode_to_sandbox(mode) == sandbox


def test_mode_accepts_string() -> None:
    """文字列の権限モードも受け付ける."""
    assert map_permission_mode_to_sandbox("yolo") == "danger-full-access"


def test_unknown_mode_raises() -> None:
    """未知の権限モードは ValueError."""
    with pytest.raises(ValueError):
        map_permission_mode_to_approval_policy("bypassPermissions")
