"""
支付核验任务 - 显式状态机

状态流转：
    PENDING → VERIFYING → SUCCEEDED | DEFINITIVELY_FAILED | RETRYING
    RETRYING → VERIFYING（退避后重试）| GAVE_UP（次数耗尽）
    PENDING/RETRYING → CANCELLED（两次尝试之间人工取消）
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

from domain.common.exceptions import InvalidStateTransition


class VerificationState(str, Enum):
    PENDING = "pending"
    VERIFYING = "verifying"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    DEFINITIVELY_FAILED = "definitively_failed"
    GAVE_UP = "gave_up"
    CANCELLED = "cancelled"


TERMINAL_STATES = frozenset(
    {
        VerificationState.SUCCEEDED,
        VerificationState.DEFINITIVELY_FAILED,
        VerificationState.GAVE_UP,
        VerificationState.CANCELLED,
    }
)

_ALLOWED = {
    VerificationState.PENDING: {VerificationState.VERIFYING, VerificationState.CANCELLED},
    VerificationState.VERIFYING: {
        VerificationState.SUCCEEDED,
        VerificationState.DEFINITIVELY_FAILED,
        VerificationState.RETRYING,
    },
    VerificationState.RETRYING: {
        VerificationState.VERIFYING,
        VerificationState.GAVE_UP,
        VerificationState.CANCELLED,
    },
}


@dataclass(frozen=True)
class AttemptRecord:
    attempt: int
    state: VerificationState
    status: Optional[str]
    at: datetime


@dataclass
class VerificationJob:
    """
    核验任务聚合 - 仅由 VerificationWorker 修改

    业务规则：
    1. 尝试计数（而非墙钟时间）限制总重试次数
    2. 终态不可再迁移
    """

    transaction_ref: str
    webhook_data: dict = field(default_factory=dict)
    client_ip: Optional[str] = None
    context: dict = field(default_factory=dict)
    state: VerificationState = VerificationState.PENDING
    attempts: int = 0
    last_status: Optional[str] = None
    history: list[AttemptRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, target: VerificationState) -> None:
        if target not in _ALLOWED.get(self.state, set()):
            raise InvalidStateTransition(self.state.value, target.value)
        self.state = target
        self.updated_at = datetime.now(timezone.utc)
        self.history.append(AttemptRecord(self.attempts, target, self.last_status, self.updated_at))

    def begin_attempt(self) -> int:
        self._transition(VerificationState.VERIFYING)
        self.attempts += 1
        return self.attempts

    def mark_succeeded(self, status: str) -> None:
        self.last_status = status
        self._transition(VerificationState.SUCCEEDED)

    def mark_failed(self, status: str) -> None:
        self.last_status = status
        self._transition(VerificationState.DEFINITIVELY_FAILED)

    def mark_retrying(self, status: Optional[str]) -> None:
        self.last_status = status
        self._transition(VerificationState.RETRYING)

    def mark_gave_up(self, status: Optional[str]) -> None:
        self.last_status = status
        self._transition(VerificationState.GAVE_UP)

    def cancel(self) -> None:
        self._transition(VerificationState.CANCELLED)


def backoff_delay(schedule: Sequence[float], attempt: int) -> float:
    """Delay before re-entering VERIFYING after ``attempt`` (1-based); reuses the last entry."""
    if not schedule:
        return 0.0
    index = min(max(attempt, 1), len(schedule)) - 1
    return float(schedule[index])
