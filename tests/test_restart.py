"""Tests for the forced session restart after an abort."""

from __future__ import annotations

from unittest.mock import MagicMock, call

import pytest

from codex_remote_bridge.application.restart import (
    ABORT_RESTART_STATUS,
    RestartCallbacks,
    RestartState,
    apply_abort_restart,
    needs_abort_restart,
)


@pytest.fixture
def recorder() -> MagicMock:
    """呼び出し順序を記録するモック."""
    return MagicMock()


@pytest.fixture
def callbacks(recorder: MagicMock) -> RestartCallbacks:
    """呼び出しを recorder に記録するコールバック群."""
    return RestartCallbacks(
        clear_session=recorder.clear_session,
        reset_permissions=recorder.reset_permissions,
        abort_reasoning=recorder.abort_reasoning,
        reset_diff=recorder.reset_diff,
        keep_alive=recorder.keep_alive,
        add_status=recorder.add_status,
    )


@pytest.mark.parametrize(
    ("aborted", "was_created", "expected"),
    [(True, True, True), (True, False, False), (False, True, False), (False, False, False)],
)
def test_needs_abort_restart(aborted: bool, was_created: bool, expected: bool) -> None:
    """中断かつセッション作成済みの場合のみ再起動する."""
    assert needs_abort_restart(aborted, was_created) is expected


class TestApplyAbortRestart:
    """apply_abort_restart のテスト."""

    def test_side_effects_in_order(
        self, recorder: MagicMock, callbacks: RestartCallbacks
    ) -> None:
        """副作用がこの順序で1回ずつ呼ばれる."""
        state = RestartState(was_created=True, current_mode_hash="abc", thinking=True)

        apply_abort_restart({"text": "next"}, state, callbacks)

        assert recorder.mock_calls == [
            call.clear_session(),
            call.reset_permissions(),
            call.abort_reasoning(),
            call.reset_diff(),
            call.keep_alive(False, "remote"),
            call.add_status(ABORT_RESTART_STATUS),
        ]

    def test_returns_message_and_fresh_state(self, callbacks: RestartCallbacks) -> None:
        """メッセージを再キューし、状態を初期化する."""
        message = {"text": "next"}
        state = RestartState(was_created=True, current_mode_hash="abc", thinking=True)

        result = apply_abort_restart(message, state, callbacks)

        assert result.pending is message
        assert result.state == RestartState(
            was_created=False, current_mode_hash=None, thinking=False
        )
        # 元の状態は変更されない
        assert state.was_created is True
