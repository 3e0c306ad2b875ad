"""Tests for elicitation response encoding."""

from __future__ import annotations

import pytest

from codex_remote_bridge.application.models import (
    ExecPolicyAmendment,
    PermissionDecision,
    PermissionResult,
)
from codex_remote_bridge.infrastructure.elicitation import (
    build_elicitation_response,
    encode_permission_result,
    map_decision_to_action,
    map_permission_result_to_decision,
)
from codex_remote_bridge.infrastructure.version import ElicitationResponseStyle


class TestBuildElicitationResponse:
    """build_elicitation_response のテスト."""

    def test_decision_style_has_no_content(self) -> None:
        """decision 形式は content を含まない."""
        assert build_elicitation_response("decision", "accept", "approved") == {
            "action": "accept",
            "decision": "approved",
        }

    def test_both_style_adds_empty_content(self) -> None:
        """both 形式は空の content を含む."""
        assert build_elicitation_response(
            ElicitationResponseStyle.BOTH, "decline", "denied"
        ) == {"action": "decline", "decision": "denied", "content": {}}


class TestMapDecisionToAction:
    """map_decision_to_action のテスト."""

    @pytest.mark.parametrize(
        ("decision", "action"),
        [
            ("approved", "accept"),
            ("approved_for_session", "accept"),
            ("denied", "decline"),
            ("abort", "cancel"),
            ("something_else", "decline"),
            (
                {"approved_execpolicy_amendment": {"proposed_execpolicy_amendment": ["ls"]}},
                "accept",
            ),
            ({"unexpected": {}}, "decline"),
        ],
    )
    def test_mapping(self, decision: str | dict, action: str) -> None:
        """判定ごとのアクションを確認する."""
        assert map_decision_to_action(decision) == action


class TestEncodePermissionResult:
    """パーミッション結果の変換のテスト."""

    def test_amendment(self) -> None:
        """コマンド列付きの amendment は入れ子の辞書になる."""
        result = PermissionResult(
            decision=PermissionDecision.APPROVED_EXECPOLICY_AMENDMENT,
            exec_policy_amendment=ExecPolicyAmendment(command=["yarn", "dev"]),
        )

        assert encode_permission_result("decision", result) == {
            "action": "accept",
            "decision": {
                "approved_execpolicy_amendment": {
                    "proposed_execpolicy_amendment": ["yarn", "dev"]
                }
            },
        }

    def test_amendment_without_command_degrades_to_approved(self) -> None:
        """コマンド列がない amendment は approved になる."""
        result = PermissionResult(decision=PermissionDecision.APPROVED_EXECPOLICY_AMENDMENT)
        assert map_permission_result_to_decision(result) == "approved"

    @pytest.mark.parametrize(
        ("decision", "expected"),
        [
            (PermissionDecision.APPROVED, {"action": "accept", "decision": "approved", "content": {}}),
            (
                PermissionDecision.APPROVED_FOR_SESSION,
                {"action": "accept", "decision": "approved_for_session", "content": {}},
            ),
            (PermissionDecision.DENIED, {"action": "decline", "decision": "denied", "content": {}}),
            (PermissionDecision.ABORT, {"action": "cancel", "decision": "abort", "content": {}}),
        ],
    )
    def test_plain_decisions_both_style(
        self, decision: PermissionDecision, expected: dict
    ) -> None:
        """both 形式での各判定の応答を確認する."""
        assert encode_permission_result("both", PermissionResult(decision=decision)) == expected
