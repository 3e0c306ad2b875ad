"""Codex elicitation response encoding."""

from __future__ import annotations

from typing import Any, Literal

from codex_remote_bridge.application.models import PermissionDecision, PermissionResult
from codex_remote_bridge.infrastructure.version import ElicitationResponseStyle

ElicitationAction = Literal["accept", "decline", "cancel"]

# Codex の ReviewDecision: 文字列、または amendment を表す辞書
#   {"approved_execpolicy_amendment": {"proposed_execpolicy_amendment": [...]}}
ReviewDecision = str | dict[str, dict[str, list[str]]]

_AMENDMENT_KEY = PermissionDecision.APPROVED_EXECPOLICY_AMENDMENT.value
_PROPOSED_AMENDMENT_KEY = "proposed_execpolicy_amendment"

_ACCEPT_DECISIONS = frozenset(
    {PermissionDecision.APPROVED.value, PermissionDecision.APPROVED_FOR_SESSION.value}
)


def build_elicitation_response(
    style: ElicitationResponseStyle | str,
    action: ElicitationAction,
    decision: ReviewDecision,
) -> dict[str, Any]:
    """
    elicitation 応答を組み立てる.

    decision 形式は action と decision のみ、both 形式は空の content も付与する。

    Args:
        style: 応答形式
        action: elicitation のアクション
        decision: Codex に返す判定

    Returns:
        応答の辞書
    """
    if ElicitationResponseStyle(style) == ElicitationResponseStyle.DECISION:
        return {"action": action, "decision": decision}
    return {"action": action, "decision": decision, "content": {}}


def is_exec_policy_amendment_decision(decision: ReviewDecision) -> bool:
    """判定が amendment 形式かどうか."""
    return isinstance(decision, dict) and _AMENDMENT_KEY in decision


def map_decision_to_action(decision: ReviewDecision) -> ElicitationAction:
    """判定を elicitation のアクションに変換する."""
    if is_exec_policy_amendment_decision(decision):
        return "accept"
    if isinstance(decision, str) and decision in _ACCEPT_DECISIONS:
        return "accept"
    if decision == PermissionDecision.ABORT.value:
        return "cancel"
    return "decline"


def map_permission_result_to_decision(result: PermissionResult) -> ReviewDecision:
    """
    パーミッション結果を Codex の判定に変換する.

    amendment はコマンド列が空でない場合のみ amendment 形式になり、
    それ以外は通常の approved に落ちる。

    Args:
        result: パーミッション結果

    Returns:
        Codex に返す判定
    """
    if result.decision == PermissionDecision.APPROVED_EXECPOLICY_AMENDMENT:
        amendment = result.exec_policy_amendment
        if amendment is not None and amendment.command:
            return {_AMENDMENT_KEY: {_PROPOSED_AMENDMENT_KEY: list(amendment.command)}}
        return PermissionDecision.APPROVED.value
    return result.decision.value


def encode_permission_result(
    style: ElicitationResponseStyle | str, result: PermissionResult
) -> dict[str, Any]:
    """パーミッション結果を指定形式の elicitation 応答に変換する."""
    decision = map_permission_result_to_decision(result)
    return build_elicitation_response(style, map_decision_to_action(decision), decision)
