"""Application layer."""

from codex_remote_bridge.application.models import (
    AgentState,
    ExecPolicyAmendment,
    PermissionDecision,
    PermissionResponse,
    PermissionResult,
    RequestStatus,
)
from codex_remote_bridge.application.modes import PermissionMode
from codex_remote_bridge.application.permission import (
    PermissionBridge,
    PermissionRequestError,
    PermissionResetError,
    SessionClient,
)
from codex_remote_bridge.application.restart import (
    RestartCallbacks,
    RestartState,
    apply_abort_restart,
)

__all__ = [
    "AgentState",
    "ExecPolicyAmendment",
    "PermissionBridge",
    "PermissionDecision",
    "PermissionMode",
    "PermissionRequestError",
    "PermissionResetError",
    "PermissionResponse",
    "PermissionResult",
    "RequestStatus",
    "RestartCallbacks",
    "RestartState",
    "SessionClient",
    "apply_abort_restart",
]
