"""Codex MCP Client - `codex mcp-server` wrapper with remote permission approval."""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Mapping
from contextlib import AsyncExitStack
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from mcp import ClientSession, StdioServerParameters
from mcp import types as mcp_types
from mcp.client.stdio import stdio_client

from codex_remote_bridge.application.modes import (
    PermissionMode,
    map_permission_mode_to_approval_policy,
    map_permission_mode_to_sandbox,
)
from codex_remote_bridge.application.permission import PermissionRequestError
from codex_remote_bridge.infrastructure.elicitation import (
    build_elicitation_response,
    encode_permission_result,
)
from codex_remote_bridge.infrastructure.logging import get_logger
from codex_remote_bridge.infrastructure.runner import (
    CodexRunner,
    build_codex_runner,
    build_mcp_command,
    build_version_command,
)
from codex_remote_bridge.infrastructure.version import (
    ElicitationResponseStyle,
    VersionInfo,
    VersionNegotiator,
)

if TYPE_CHECKING:
    from codex_remote_bridge.application.permission import PermissionBridge
    from codex_remote_bridge.infrastructure.config import Config

logger = get_logger(__name__)

# ツール呼び出しのタイムアウト: 14日
TOOL_CALL_TIMEOUT = timedelta(days=14)

CODEX_START_TOOL = "codex"
CODEX_REPLY_TOOL = "codex-reply"

EXEC_TOOL_NAME = "CodexBash"
PATCH_TOOL_NAME = "CodexPatch"

_PATCH_APPROVAL = "patch-approval"


def build_codex_session_config(
    prompt: str,
    permission_mode: PermissionMode | str = PermissionMode.DEFAULT,
    cwd: str | None = None,
    model: str | None = None,
) -> dict[str, Any]:
    """
    `codex` ツールに渡すセッション設定を組み立てる.

    Args:
        prompt: 最初のプロンプト
        permission_mode: 権限モード（approval-policy と sandbox に変換される）
        cwd: 作業ディレクトリ
        model: モデル名

    Returns:
        ツール引数の辞書
    """
    config: dict[str, Any] = {
        "prompt": prompt,
        "approval-policy": map_permission_mode_to_approval_policy(permission_mode),
        "sandbox": map_permission_mode_to_sandbox(permission_mode),
    }
    if cwd is not None:
        config["cwd"] = cwd
    if model is not None:
        config["model"] = model
    return config


def _extract_string(params: Mapping[str, Any], key: str) -> str | None:
    value = params.get(key)
    return value if isinstance(value, str) and value else None


def _build_exec_tool_input(params: Mapping[str, Any]) -> dict[str, Any]:
    """exec-approval の elicitation パラメータからツール入力を組み立てる."""
    raw_command = params.get("codex_command")
    command = (
        [part for part in raw_command if isinstance(part, str)]
        if isinstance(raw_command, list)
        else []
    )
    tool_input: dict[str, Any] = {"command": command}
    cwd = _extract_string(params, "codex_cwd")
    if cwd is not None:
        tool_input["cwd"] = cwd
    parsed_cmd = params.get("codex_parsed_cmd")
    if isinstance(parsed_cmd, list):
        tool_input["parsed_cmd"] = parsed_cmd
    reason = _extract_string(params, "codex_reason")
    if reason is not None:
        tool_input["reason"] = reason
    return tool_input


def _build_patch_tool_input(params: Mapping[str, Any]) -> dict[str, Any]:
    """patch-approval の elicitation パラメータからツール入力を組み立てる."""
    tool_input: dict[str, Any] = {"message": params.get("message", "")}
    reason = _extract_string(params, "codex_reason")
    if reason is not None:
        tool_input["reason"] = reason
    grant_root = _extract_string(params, "codex_grant_root")
    if grant_root is not None:
        tool_input["grantRoot"] = grant_root
    changes = params.get("codex_changes")
    if isinstance(changes, dict):
        tool_input["changes"] = changes
    return tool_input


class CodexMcpClient:
    """Codex MCP Client - Codex MCP サーバーとの通信を管理するクラス."""

    def __init__(
        self,
        runner: CodexRunner | None = None,
        permission_bridge: PermissionBridge | None = None,
        elicitation_style: ElicitationResponseStyle | str | None = None,
        version_probe_timeout: float = 10.0,
    ) -> None:
        """
        Codex MCP Client を初期化する.

        Args:
            runner: Codex の起動方法（省略時は codex バイナリ）
            permission_bridge: 承認要求の委譲先
            elicitation_style: 応答形式の上書き（decision / both）
            version_probe_timeout: `--version` 実行のタイムアウト（秒）
        """
        self.runner = runner or build_codex_runner()
        self._permission_bridge = permission_bridge
        self._elicitation_style_override = (
            elicitation_style.value
            if isinstance(elicitation_style, ElicitationResponseStyle)
            else elicitation_style
        )
        self._version_probe_timeout = version_probe_timeout

        self._negotiator: VersionNegotiator | None = None
        self._response_style: ElicitationResponseStyle | None = None
        self._exit_stack: AsyncExitStack | None = None
        self._session: ClientSession | None = None
        self._session_id: str | None = None
        self._conversation_id: str | None = None

    @classmethod
    def from_config(
        cls, config: Config, permission_bridge: PermissionBridge | None = None
    ) -> CodexMcpClient:
        """
        設定値から CodexMcpClient を作成する.

        Args:
            config: アプリケーション設定（CODEX_ELICITATION_STYLE などを含む）
            permission_bridge: 承認要求の委譲先

        Returns:
            CodexMcpClient インスタンス
        """
        return cls(
            runner=config.build_runner(),
            permission_bridge=permission_bridge,
            elicitation_style=config.codex_elicitation_style,
            version_probe_timeout=config.version_probe_timeout,
        )

    @property
    def negotiator(self) -> VersionNegotiator | None:
        """検出済みバージョンに基づくネゴシエーター（未検出の場合は None）."""
        return self._negotiator

    @property
    def connected(self) -> bool:
        """MCP サーバーに接続済みかどうか."""
        return self._session is not None

    @property
    def session_id(self) -> str | None:
        """現在の Codex セッションID."""
        return self._session_id

    def set_permission_bridge(self, bridge: PermissionBridge | None) -> None:
        """承認要求の委譲先を設定する."""
        self._permission_bridge = bridge

    async def detect_version(self) -> VersionInfo:
        """
        インストール済み Codex のバージョンを取得する（結果はキャッシュされる）.

        実行に失敗した場合は未解析のバージョン情報を返す。

        Returns:
            バージョン情報
        """
        negotiator = await self._ensure_negotiator()
        return negotiator.info

    async def response_style(self) -> ElicitationResponseStyle:
        """elicitation 応答形式（初回のみバージョンを確認する）."""
        if self._response_style is None:
            negotiator = await self._ensure_negotiator()
            self._response_style = negotiator.response_style(
                self._elicitation_style_override
            )
            logger.debug(
                "Elicitation response style selected",
                style=self._response_style.value,
            )
        return self._response_style

    async def _ensure_negotiator(self) -> VersionNegotiator:
        if self._negotiator is None:
            raw = await self._run_version_probe()
            self._negotiator = VersionNegotiator.from_raw(raw)
            logger.info(
                "Detected Codex version",
                runner=self.runner.label,
                raw=raw,
                parsed=self._negotiator.info.parsed,
            )
        return self._negotiator

    async def connect(self) -> None:
        """
        Codex MCP サーバーを起動して接続する.

        Raises:
            Exception: サーバーの起動または初期化に失敗した場合
        """
        if self._session is not None:
            return

        # 接続前に応答形式を確定させておく
        await self.response_style()

        mcp_command = build_mcp_command(self.runner)
        server_params = StdioServerParameters(
            command=mcp_command.command,
            args=list(mcp_command.args),
            env=dict(os.environ),
        )
        logger.info(
            "Connecting to Codex MCP server",
            command=mcp_command.command,
            args=list(mcp_command.args),
        )

        stack = AsyncExitStack()
        try:
            read, write = await stack.enter_async_context(stdio_client(server_params))
            session = await stack.enter_async_context(
                ClientSession(
                    read,
                    write,
                    elicitation_callback=self._elicitation_callback,
                )
            )
            await session.initialize()
        except Exception:
            logger.exception("Failed to connect to Codex MCP server")
            await stack.aclose()
            raise

        self._exit_stack = stack
        self._session = session
        logger.info("Connected to Codex")

    async def start_session(
        self, config: Mapping[str, Any]
    ) -> mcp_types.CallToolResult:
        """
        新しい Codex セッションを開始する.

        Args:
            config: `codex` ツールの引数（build_codex_session_config 参照）

        Returns:
            ツール呼び出し結果
        """
        session = await self._ensure_connected()
        logger.info("Starting Codex session", config=dict(config))

        result = await session.call_tool(
            CODEX_START_TOOL,
            arguments=dict(config),
            read_timeout_seconds=TOOL_CALL_TIMEOUT,
        )
        self._extract_identifiers(result)
        return result

    async def continue_session(self, prompt: str) -> mcp_types.CallToolResult:
        """
        既存の Codex セッションにプロンプトを送信する.

        Args:
            prompt: ユーザーのメッセージ内容

        Returns:
            ツール呼び出し結果

        Raises:
            RuntimeError: セッションが開始されていない場合
        """
        session = await self._ensure_connected()

        if self._session_id is None:
            msg = "No active session. Call start_session() first."
            raise RuntimeError(msg)

        if self._conversation_id is None:
            # conversation ID を返さない Codex ではセッションIDを流用する
            self._conversation_id = self._session_id
            logger.debug(
                "conversationId missing, defaulting to sessionId",
                conversation_id=self._conversation_id,
            )

        arguments = {
            "sessionId": self._session_id,
            "conversationId": self._conversation_id,
            "prompt": prompt,
        }
        logger.info(
            "Continuing Codex session",
            session_id=self._session_id,
            prompt_preview=prompt[:50],
        )

        result = await session.call_tool(
            CODEX_REPLY_TOOL,
            arguments=arguments,
            read_timeout_seconds=TOOL_CALL_TIMEOUT,
        )
        self._extract_identifiers(result)
        return result

    def has_active_session(self) -> bool:
        """Codex セッションが存在するかどうか."""
        return self._session_id is not None

    def clear_session(self) -> None:
        """セッション識別子を破棄する（次回は新規セッションになる）."""
        previous = self._session_id
        self._session_id = None
        self._conversation_id = None
        logger.debug("Session cleared", previous_session_id=previous)

    async def disconnect(self) -> None:
        """
        MCP サーバーとの接続を閉じる.

        再接続後に再開できるよう、セッション識別子は保持する。
        """
        if self._exit_stack is None:
            return

        logger.info("Disconnecting from Codex MCP server")
        stack = self._exit_stack
        self._exit_stack = None
        self._session = None
        try:
            await stack.aclose()
        except Exception:
            logger.exception("Error during MCP connection cleanup")

        logger.info("Disconnected", session_id=self._session_id)

    async def force_close_session(self) -> None:
        """接続を閉じ、セッション識別子も破棄する（終了時用）."""
        try:
            await self.disconnect()
        finally:
            self.clear_session()

    async def handle_elicitation(
        self, params: Mapping[str, Any], request_id: str | int | None = None
    ) -> dict[str, Any]:
        """
        Codex からの承認要求（elicitation）を処理する.

        Args:
            params: elicitation パラメータ（codex_* 拡張フィールドを含む）
            request_id: MCP リクエストID（他のIDがない場合に使用）

        Returns:
            Codex に返す応答の辞書
        """
        style = await self.response_style()

        permission_id = next(
            (
                str(candidate)
                for candidate in (
                    params.get("codex_call_id"),
                    params.get("codex_mcp_tool_call_id"),
                    params.get("codex_event_id"),
                    request_id,
                )
                if candidate is not None
            ),
            str(uuid.uuid4()),
        )
        is_patch = params.get("codex_elicitation") == _PATCH_APPROVAL
        tool_name = PATCH_TOOL_NAME if is_patch else EXEC_TOOL_NAME
        tool_input = (
            _build_patch_tool_input(params) if is_patch else _build_exec_tool_input(params)
        )

        logger.info(
            "Received elicitation request",
            permission_id=permission_id,
            tool=tool_name,
        )

        if self._permission_bridge is None:
            logger.warning("No permission bridge set, denying by default")
            return build_elicitation_response(style, "decline", "denied")

        try:
            result = await self._permission_bridge.request_approval(
                permission_id, tool_name, tool_input
            )
        except PermissionRequestError as e:
            logger.info(
                "Permission request ended without a decision",
                permission_id=permission_id,
                reason=str(e),
            )
            return build_elicitation_response(style, "decline", "denied")

        response = encode_permission_result(style, result)
        logger.debug("Permission result encoded", response=response)
        return response

    async def _elicitation_callback(
        self, context: Any, params: mcp_types.ElicitRequestParams
    ) -> mcp_types.ElicitResult | mcp_types.ErrorData:
        """MCP ClientSession から呼ばれる elicitation コールバック."""
        request_id = getattr(context, "request_id", None)
        try:
            response = await self.handle_elicitation(params.model_dump(), request_id)
        except Exception:
            logger.exception("Error handling elicitation request")
            style = await self.response_style()
            response = build_elicitation_response(style, "decline", "denied")
        # decision は ElicitResult の追加フィールド（extra）として送信される
        return mcp_types.ElicitResult(**response)

    async def _ensure_connected(self) -> ClientSession:
        if self._session is None:
            await self.connect()
        if self._session is None:
            msg = "Codex MCP client is not connected"
            raise RuntimeError(msg)
        return self._session

    async def _run_version_probe(self) -> str | None:
        """`<runner> --version` を実行し、標準出力を返す."""
        command = build_version_command(self.runner)
        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError:
            logger.warning(
                "Codex CLI not found or not executable", command=list(command)
            )
            return None

        try:
            stdout, _ = await asyncio.wait_for(
                process.communicate(), timeout=self._version_probe_timeout
            )
        except asyncio.TimeoutError:
            logger.warning(
                "Codex version probe timed out",
                command=list(command),
                timeout=self._version_probe_timeout,
            )
            if process.returncode is None:
                process.kill()
                await process.wait()
            return None

        return stdout.decode("utf-8", errors="replace").strip() or None

    def _extract_identifiers(self, result: mcp_types.CallToolResult) -> None:
        """ツール呼び出し結果からセッションID・会話IDを取り出す."""
        data = result.model_dump(by_alias=True)
        meta = data.get("_meta") or {}

        session_id = meta.get("sessionId") or data.get("sessionId")
        if session_id:
            self._session_id = session_id
        conversation_id = meta.get("conversationId") or data.get("conversationId")
        if conversation_id:
            self._conversation_id = conversation_id

        for item in data.get("content") or []:
            if not isinstance(item, dict):
                continue
            if self._session_id is None and item.get("sessionId"):
                self._session_id = item["sessionId"]
            if self._conversation_id is None and item.get("conversationId"):
                self._conversation_id = item["conversationId"]

        logger.debug(
            "Session identifiers",
            session_id=self._session_id,
            conversation_id=self._conversation_id,
        )
