"""Data models for cross-layer communication."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PermissionDecision(str, Enum):
    """パーミッション判定の種別."""

    APPROVED = "approved"
    APPROVED_FOR_SESSION = "approved_for_session"
    APPROVED_EXECPOLICY_AMENDMENT = "approved_execpolicy_amendment"
    DENIED = "denied"
    ABORT = "abort"


class RequestStatus(str, Enum):
    """完了済みリクエストの状態."""

    APPROVED = "approved"
    DENIED = "denied"
    CANCELED = "canceled"


class ExecPolicyAmendment(BaseModel):
    """許可コマンドポリシーへの追加提案."""

    command: list[str] = Field(default_factory=list)


class PermissionResult(BaseModel):
    """パーミッション要求の結果（Bridge → エージェント側）."""

    decision: PermissionDecision
    exec_policy_amendment: ExecPolicyAmendment | None = None


class PermissionResponse(BaseModel):
    """リモートからのパーミッション応答（セッションチャネル → Bridge）."""

    model_config = ConfigDict(populate_by_name=True)

    id: str | int
    approved: bool
    decision: PermissionDecision | None = None
    exec_policy_amendment: ExecPolicyAmendment | None = Field(
        default=None, alias="execPolicyAmendment"
    )

    def to_result(self) -> PermissionResult:
        """
        応答内容から最終的なパーミッション結果を決定する.

        承認 + amendment 指定 + 空でないコマンド列の場合のみ amendment になる。
        それ以外の承認は approved_for_session / approved に落ちる。
        拒否は明示的な denied 以外すべて abort として扱う。

        Returns:
            パーミッション結果
        """
        if self.approved:
            amendment = self.exec_policy_amendment
            if (
                self.decision == PermissionDecision.APPROVED_EXECPOLICY_AMENDMENT
                and amendment is not None
                and amendment.command
            ):
                return PermissionResult(
                    decision=PermissionDecision.APPROVED_EXECPOLICY_AMENDMENT,
                    exec_policy_amendment=amendment,
                )
            if self.decision == PermissionDecision.APPROVED_FOR_SESSION:
                return PermissionResult(decision=PermissionDecision.APPROVED_FOR_SESSION)
            return PermissionResult(decision=PermissionDecision.APPROVED)

        if self.decision == PermissionDecision.DENIED:
            return PermissionResult(decision=PermissionDecision.DENIED)
        return PermissionResult(decision=PermissionDecision.ABORT)


class AgentStateRequest(BaseModel):
    """エージェント状態に記録される処理中のリクエスト."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    tool: str
    arguments: Any = None
    created_at: int = Field(alias="createdAt")


class CompletedRequest(AgentStateRequest):
    """エージェント状態に記録される完了済みのリクエスト."""

    completed_at: int = Field(alias="completedAt")
    status: RequestStatus
    decision: PermissionDecision | None = None
    reason: str | None = None


class AgentState(BaseModel):
    """
    リモートと共有されるエージェント状態.

    キーは常に正規化済みの文字列ID。各メソッドは自身を変更せず、
    新しい状態を返す純粋な変換として実装する。
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    requests: dict[str, AgentStateRequest] = Field(default_factory=dict)
    completed_requests: dict[str, CompletedRequest] = Field(
        default_factory=dict, alias="completedRequests"
    )

    def with_pending_request(
        self, request_id: str, tool: str, arguments: Any, created_at: int
    ) -> AgentState:
        """処理中のリクエストを追加した状態を返す."""
        request = AgentStateRequest(tool=tool, arguments=arguments, created_at=created_at)
        return self.model_copy(
            update={"requests": {**self.requests, request_id: request}}
        )

    def with_completed_request(
        self,
        request_id: str,
        status: RequestStatus,
        decision: PermissionDecision,
        completed_at: int,
    ) -> AgentState:
        """
        処理中のリクエストを完了済みに移した状態を返す.

        処理中に該当IDがない場合は何も変更しない。

        Args:
            request_id: 正規化済みリクエストID
            status: 完了状態
            decision: 最終的な判定
            completed_at: 完了時刻（エポックミリ秒）

        Returns:
            新しい状態
        """
        request = self.requests.get(request_id)
        if request is None:
            return self

        remaining = {k: v for k, v in self.requests.items() if k != request_id}
        completed = CompletedRequest(
            **request.model_dump(by_alias=False),
            completed_at=completed_at,
            status=status,
            decision=decision,
        )
        return self.model_copy(
            update={
                "requests": remaining,
                "completed_requests": {**self.completed_requests, request_id: completed},
            }
        )

    def with_auto_approved_request(
        self,
        request_id: str,
        tool: str,
        arguments: Any,
        decision: PermissionDecision,
        now: int,
    ) -> AgentState:
        """自動承認されたリクエストを完了済みとして直接記録した状態を返す."""
        completed = CompletedRequest(
            tool=tool,
            arguments=arguments,
            created_at=now,
            completed_at=now,
            status=RequestStatus.APPROVED,
            decision=decision,
        )
        return self.model_copy(
            update={
                "completed_requests": {**self.completed_requests, request_id: completed}
            }
        )

    def with_canceled_request(
        self, request_id: str, reason: str, completed_at: int
    ) -> AgentState:
        """処理中のリクエスト1件をキャンセル済みに移した状態を返す（該当なしは変更なし）."""
        request = self.requests.get(request_id)
        if request is None:
            return self

        remaining = {k: v for k, v in self.requests.items() if k != request_id}
        return self.model_copy(
            update={
                "requests": remaining,
                "completed_requests": {
                    **self.completed_requests,
                    request_id: _canceled(request, reason, completed_at),
                },
            }
        )

    def with_all_requests_canceled(self, reason: str, completed_at: int) -> AgentState:
        """処理中のリクエストをすべてキャンセル済みに移した状態を返す."""
        completed = dict(self.completed_requests)
        for request_id, request in self.requests.items():
            completed[request_id] = _canceled(request, reason, completed_at)
        return self.model_copy(update={"requests": {}, "completed_requests": completed})


def _canceled(
    request: AgentStateRequest, reason: str, completed_at: int
) -> CompletedRequest:
    return CompletedRequest(
        **request.model_dump(by_alias=False),
        completed_at=completed_at,
        status=RequestStatus.CANCELED,
        reason=reason,
    )
