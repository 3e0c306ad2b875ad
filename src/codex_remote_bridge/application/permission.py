"""Permission request bridge between Codex and the remote operator."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError

from codex_remote_bridge.application.models import (
    AgentState,
    PermissionDecision,
    PermissionResponse,
    PermissionResult,
    RequestStatus,
)
from codex_remote_bridge.application.modes import PermissionMode
from codex_remote_bridge.infrastructure.logging import get_logger

if TYPE_CHECKING:
    from codex_remote_bridge.infrastructure.config import Config

logger = get_logger(__name__)

# 応答待ちが長引いた場合に警告を出すまでの秒数
PENDING_WARNING_SECONDS = 30.0

# セッションチャネル上でパーミッション応答を受け取るRPCメソッド名
PERMISSION_RPC_METHOD = "permission"

RESET_REASON = "Session reset"
CANCELLED_REASON = "Request cancelled"

# コールバック型定義
AgentStateTransform = Callable[[AgentState], AgentState]
PermissionResponseHandler = Callable[[PermissionResponse | Mapping[str, Any]], None]

# 常に自動承認するツール名（部分一致、大文字小文字無視）
# タイトル変更や思考ログなど、ユーザー操作を待つべきでない内部ツール
_ALWAYS_AUTO_APPROVE_NAMES: tuple[str, ...] = (
    "change_title",
    "happy__change_title",
    "GeminiReasoning",
    "CodexReasoning",
    "think",
    "save_memory",
)

# 常に自動承認するリクエストID（部分一致、大文字小文字無視）
_ALWAYS_AUTO_APPROVE_IDS: tuple[str, ...] = ("change_title", "save_memory")

# read-only モード時に承認を要求する Write 系ツール名（部分一致）
_WRITE_TOOL_MARKERS: tuple[str, ...] = (
    "write",
    "edit",
    "create",
    "delete",
    "patch",
    "fs-edit",
)


class SessionClient(Protocol):
    """リモートとのセッションチャネル（外部コラボレーター）."""

    def register_rpc_handler(
        self, method: str, handler: PermissionResponseHandler
    ) -> None:
        """RPCハンドラーを登録する."""
        ...

    def update_agent_state(self, transform: AgentStateTransform) -> None:
        """エージェント状態に純粋な変換をアトミックに適用する."""
        ...


class PermissionRequestError(Exception):
    """パーミッション要求が判定に至らなかった場合の例外."""

    def __init__(self, request_id: str, message: str) -> None:
        """
        Initialize PermissionRequestError.

        Args:
            request_id: 正規化済みリクエストID
            message: エラーメッセージ
        """
        super().__init__(message)
        self.request_id = request_id


class PermissionResetError(PermissionRequestError):
    """セッションのリセットにより要求がキャンセルされた場合の例外."""

    def __init__(self, request_id: str) -> None:
        """
        Initialize PermissionResetError.

        Args:
            request_id: キャンセルされたリクエストID
        """
        super().__init__(request_id, RESET_REASON)


def normalize_request_id(request_id: str | int) -> str:
    """
    リクエストIDを文字列に正規化する.

    JSONオブジェクトのキーは常に文字列のため、数値IDも10進文字列に揃えて
    相関テーブルとエージェント状態の両方で同じキーになるようにする。
    """
    return request_id if isinstance(request_id, str) else str(request_id)


def _is_write_tool(tool_name: str) -> bool:
    """ツール名が Write 系（ファイル変更など）かどうかを判定する."""
    lowered = tool_name.lower()
    return any(marker in lowered for marker in _WRITE_TOOL_MARKERS)


def should_auto_approve(
    mode: PermissionMode, tool_name: str, request_id: str
) -> bool:
    """
    ツール呼び出しを自動承認するかどうかを判定する.

    Args:
        mode: 現在の権限モード
        tool_name: ツール名
        request_id: 正規化済みリクエストID

    Returns:
        自動承認する場合 True
    """
    lowered_name = tool_name.lower()
    if any(name.lower() in lowered_name for name in _ALWAYS_AUTO_APPROVE_NAMES):
        return True

    lowered_id = request_id.lower()
    if any(marker in lowered_id for marker in _ALWAYS_AUTO_APPROVE_IDS):
        return True

    if mode in {PermissionMode.YOLO, PermissionMode.SAFE_YOLO}:
        return True
    if mode == PermissionMode.READ_ONLY:
        return not _is_write_tool(tool_name)
    return False


@dataclass(frozen=True)
class PermissionPolicy:
    """自動承認ポリシー（権限モードのみを保持する不変値）."""

    mode: PermissionMode = PermissionMode.DEFAULT

    def with_mode(self, mode: PermissionMode | str) -> PermissionPolicy:
        """権限モードを変更したポリシーを返す."""
        return replace(self, mode=PermissionMode(mode))

    def should_auto_approve(self, tool_name: str, request_id: str) -> bool:
        """ツール呼び出しを自動承認するかどうかを判定する."""
        return should_auto_approve(self.mode, tool_name, request_id)

    def auto_approve_decision(self) -> PermissionDecision:
        """自動承認時の判定を返す（yolo のみセッション全体を承認する）."""
        if self.mode == PermissionMode.YOLO:
            return PermissionDecision.APPROVED_FOR_SESSION
        return PermissionDecision.APPROVED


@dataclass
class PendingRequest:
    """リモートの判定を待っているパーミッション要求."""

    tool_name: str
    tool_input: Any
    future: asyncio.Future[PermissionResult]
    created_at: int
    warning_timer: asyncio.TimerHandle | None = None


def _now_ms() -> int:
    return int(time.time() * 1000)


class PermissionBridge:
    """
    パーミッション要求の相関テーブル.

    Codex からの承認要求を正規化IDで保持し、セッションチャネル経由で届く
    リモートの判定と突き合わせて解決する。
    """

    def __init__(
        self,
        session: SessionClient,
        *,
        permission_mode: PermissionMode | str = PermissionMode.DEFAULT,
        pending_warning_seconds: float = PENDING_WARNING_SECONDS,
    ) -> None:
        """
        Initialize PermissionBridge.

        Args:
            session: リモートとのセッションチャネル
            permission_mode: 初期の権限モード
            pending_warning_seconds: 応答待ち警告を出すまでの秒数
        """
        self._session = session
        self._policy = PermissionPolicy(mode=PermissionMode(permission_mode))
        self._pending_warning_seconds = pending_warning_seconds
        # 相関テーブル（正規化ID -> PendingRequest）
        self._pending: dict[str, PendingRequest] = {}
        self._resetting = False
        self._register_rpc_handler()

    @classmethod
    def from_config(cls, session: SessionClient, config: Config) -> PermissionBridge:
        """
        設定値から PermissionBridge を作成する.

        Args:
            session: リモートとのセッションチャネル
            config: アプリケーション設定

        Returns:
            PermissionBridge インスタンス
        """
        return cls(
            session,
            permission_mode=config.default_permission_mode,
            pending_warning_seconds=config.permission_pending_warning_seconds,
        )

    @property
    def permission_mode(self) -> PermissionMode:
        """現在の権限モード."""
        return self._policy.mode

    @property
    def pending_request_ids(self) -> list[str]:
        """判定待ちのリクエストID一覧."""
        return list(self._pending)

    def update_session(self, session: SessionClient) -> None:
        """
        セッションチャネルを差し替える.

        オフライン復帰などでセッションが入れ替わった場合に呼び出す。
        古いセッションへの参照が残らないよう、RPCハンドラーも再登録する。

        Args:
            session: 新しいセッションチャネル
        """
        self._session = session
        self._register_rpc_handler()
        logger.debug("Session reference updated")

    def set_permission_mode(self, mode: PermissionMode | str) -> None:
        """
        権限モードを変更する.

        Args:
            mode: 新しい権限モード

        Raises:
            ValueError: 未知の権限モードの場合
        """
        policy = self._policy.with_mode(mode)
        if policy == self._policy:
            return
        self._policy = policy
        logger.info("Permission mode changed", mode=policy.mode.value)

    async def request_approval(
        self, request_id: str | int, tool_name: str, tool_input: Any
    ) -> PermissionResult:
        """
        ツール呼び出しの承認を要求し、判定を待つ.

        自動承認ポリシーに該当する場合は相関テーブルに登録せず即座に返す。

        Args:
            request_id: リクエストID（数値の場合は文字列に正規化される）
            tool_name: ツール名（例: "CodexBash"）
            tool_input: ツール入力

        Returns:
            パーミッション結果

        Raises:
            PermissionResetError: 判定前にリセットされた場合
            PermissionRequestError: 同じIDの新しい要求で置き換えられた場合
        """
        normalized_id = normalize_request_id(request_id)

        if self._policy.should_auto_approve(tool_name, normalized_id):
            return self._auto_approve(normalized_id, tool_name, tool_input)

        loop = asyncio.get_running_loop()
        pending = PendingRequest(
            tool_name=tool_name,
            tool_input=tool_input,
            future=loop.create_future(),
            created_at=_now_ms(),
        )
        self._register_pending(normalized_id, pending)

        created_at = pending.created_at
        self._session.update_agent_state(
            lambda state: state.with_pending_request(
                normalized_id, tool_name, tool_input, created_at
            )
        )

        logger.info(
            "Permission request pending",
            tool=tool_name,
            request_id=normalized_id,
            mode=self._policy.mode.value,
        )
        try:
            return await pending.future
        except asyncio.CancelledError:
            self._cancel_pending(normalized_id, pending)
            raise

    def handle_permission_response(
        self, payload: PermissionResponse | Mapping[str, Any]
    ) -> None:
        """
        リモートからのパーミッション応答を処理する.

        該当する判定待ちがない場合（解決済み・不明なID）や、
        応答の形式が不正な場合は何もしない。

        Args:
            payload: パーミッション応答（camelCase の辞書も可）
        """
        if isinstance(payload, PermissionResponse):
            response = payload
        else:
            try:
                response = PermissionResponse.model_validate(payload)
            except ValidationError as e:
                logger.warning(
                    "Ignoring malformed permission response",
                    errors=e.errors(include_url=False),
                )
                return
        request_id = normalize_request_id(response.id)

        pending = self._unregister_pending(request_id)
        if pending is None:
            logger.debug(
                "Permission request not found or already resolved",
                request_id=request_id,
            )
            return

        result = response.to_result()
        if not pending.future.done():
            pending.future.set_result(result)

        status = RequestStatus.APPROVED if response.approved else RequestStatus.DENIED
        completed_at = _now_ms()
        self._session.update_agent_state(
            lambda state: state.with_completed_request(
                request_id, status, result.decision, completed_at
            )
        )

        logger.info(
            "Permission decision",
            tool=pending.tool_name,
            request_id=request_id,
            decision=result.decision.value,
        )

    def reset(self) -> None:
        """
        新しいセッションに向けて状態をリセットする.

        判定待ちの要求をすべて PermissionResetError で失敗させ、
        エージェント状態上の処理中リクエストを canceled に移す。
        何度呼び出しても安全で、リセット中の再入呼び出しは無視する。
        """
        if self._resetting:
            logger.debug("Reset already in progress, skipping")
            return
        self._resetting = True

        try:
            # 先にテーブルを空にしておき、リセット中の新規登録と混ざらないようにする
            snapshot = list(self._pending.items())
            self._pending.clear()

            for request_id, pending in snapshot:
                self._cancel_warning(pending)
                try:
                    if not pending.future.done():
                        pending.future.set_exception(PermissionResetError(request_id))
                except Exception:
                    logger.exception(
                        "Error rejecting pending request", request_id=request_id
                    )

            completed_at = _now_ms()
            self._session.update_agent_state(
                lambda state: state.with_all_requests_canceled(
                    RESET_REASON, completed_at
                )
            )

            logger.debug("Permission bridge reset", canceled=len(snapshot))
        finally:
            self._resetting = False

    def _register_rpc_handler(self) -> None:
        self._session.register_rpc_handler(
            PERMISSION_RPC_METHOD, self.handle_permission_response
        )

    def _auto_approve(
        self, request_id: str, tool_name: str, tool_input: Any
    ) -> PermissionResult:
        """パーミッション要求を自動承認し、完了済みとして記録する."""
        decision = self._policy.auto_approve_decision()
        now = _now_ms()
        self._session.update_agent_state(
            lambda state: state.with_auto_approved_request(
                request_id, tool_name, tool_input, decision, now
            )
        )
        logger.info(
            "Permission auto-approved",
            tool=tool_name,
            request_id=request_id,
            mode=self._policy.mode.value,
            decision=decision.value,
        )
        return PermissionResult(decision=decision)

    def _register_pending(self, request_id: str, pending: PendingRequest) -> None:
        """判定待ちを登録し、応答待ち警告タイマーを開始する."""
        previous = self._unregister_pending(request_id)
        if previous is not None and not previous.future.done():
            logger.warning(
                "Permission request superseded by a new request with the same id",
                request_id=request_id,
                tool=previous.tool_name,
            )
            previous.future.set_exception(
                PermissionRequestError(request_id, "Superseded by a newer request")
            )

        loop = asyncio.get_running_loop()
        pending.warning_timer = loop.call_later(
            self._pending_warning_seconds,
            self._warn_if_still_pending,
            request_id,
            pending,
        )
        self._pending[request_id] = pending

    def _cancel_pending(self, request_id: str, pending: PendingRequest) -> None:
        """待機側がキャンセルされた要求を取り除き、キャンセル済みとして記録する."""
        # 応答・リセット・置き換えで既に取り除かれている場合は何もしない
        if self._pending.get(request_id) is not pending:
            return
        self._unregister_pending(request_id)

        completed_at = _now_ms()
        self._session.update_agent_state(
            lambda state: state.with_canceled_request(
                request_id, CANCELLED_REASON, completed_at
            )
        )
        logger.info(
            "Permission request cancelled by caller",
            tool=pending.tool_name,
            request_id=request_id,
        )

    def _unregister_pending(self, request_id: str) -> PendingRequest | None:
        """判定待ちを取り除き、警告タイマーを停止する."""
        pending = self._pending.pop(request_id, None)
        if pending is not None:
            self._cancel_warning(pending)
        return pending

    def _warn_if_still_pending(self, request_id: str, pending: PendingRequest) -> None:
        # 警告のみ。要求自体はキャンセルしない
        if self._pending.get(request_id) is pending:
            logger.warning(
                "Permission still pending",
                tool=pending.tool_name,
                request_id=request_id,
                waited_seconds=self._pending_warning_seconds,
            )

    @staticmethod
    def _cancel_warning(pending: PendingRequest) -> None:
        if pending.warning_timer is not None:
            pending.warning_timer.cancel()
            pending.warning_timer = None
