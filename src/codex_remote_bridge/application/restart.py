"""Forced session restart after an abort."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Generic, TypeVar

from codex_remote_bridge.infrastructure.logging import get_logger

logger = get_logger(__name__)

MessageT = TypeVar("MessageT")

# keep-alive を止める際の送信元タグ
KEEP_ALIVE_SOURCE = "remote"

ABORT_RESTART_STATUS = "Aborted. Restarting session for the next message..."


@dataclass(frozen=True)
class RestartState:
    """制御ループが保持する、再起動に関わる状態."""

    was_created: bool
    current_mode_hash: str | None
    thinking: bool


@dataclass(frozen=True)
class RestartCallbacks:
    """再起動時に呼び出す副作用（制御ループ側で用意する）."""

    clear_session: Callable[[], None]
    reset_permissions: Callable[[], None]
    abort_reasoning: Callable[[], None]
    reset_diff: Callable[[], None]
    keep_alive: Callable[[bool, str], None]
    add_status: Callable[[str], None]


@dataclass(frozen=True)
class AbortRestartResult(Generic[MessageT]):
    """再起動後に制御ループが取り込む状態."""

    pending: MessageT
    state: RestartState


def needs_abort_restart(aborted: bool, was_created: bool) -> bool:
    """中断が発生し、かつ既存セッションがある場合のみ再起動が必要."""
    return aborted and was_created


def apply_abort_restart(
    message: MessageT,
    state: RestartState,
    callbacks: RestartCallbacks,
) -> AbortRestartResult[MessageT]:
    """
    中断後のセッションを破棄し、次のメッセージを新しいセッションで処理させる.

    中断後のセッションは再利用しない。副作用はすべて、この順序で1回ずつ呼び出す。

    Args:
        message: 次に処理するユーザーメッセージ
        state: 現在の状態
        callbacks: 副作用のコールバック

    Returns:
        再キューされたメッセージと初期化された状態
    """
    logger.info(
        "Restarting session after abort",
        was_created=state.was_created,
        mode_hash=state.current_mode_hash,
        thinking=state.thinking,
    )

    callbacks.clear_session()
    callbacks.reset_permissions()
    callbacks.abort_reasoning()
    callbacks.reset_diff()
    callbacks.keep_alive(False, KEEP_ALIVE_SOURCE)
    callbacks.add_status(ABORT_RESTART_STATUS)

    return AbortRestartResult(
        pending=message,
        state=RestartState(was_created=False, current_mode_hash=None, thinking=False),
    )
