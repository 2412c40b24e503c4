from __future__ import annotations

from dataclasses import dataclass

from app.db.enums import RequestStatusEnum

PENDING = RequestStatusEnum.pending
ASSIGNED = RequestStatusEnum.assigned
PROCESSING = RequestStatusEnum.processing
COMPLETED = RequestStatusEnum.completed
REJECTED = RequestStatusEnum.rejected
CANCELLED = RequestStatusEnum.cancelled
FAILED = RequestStatusEnum.failed

TERMINAL_STATUSES = frozenset({COMPLETED, REJECTED, CANCELLED, FAILED})
ACTIVE_STATUSES = frozenset({PENDING, ASSIGNED, PROCESSING})

# Statuses in which a request carries an owning admin.
OWNED_STATUSES = frozenset({ASSIGNED, PROCESSING, COMPLETED, REJECTED})


@dataclass(frozen=True)
class Transition:
    action: str
    sources: frozenset[RequestStatusEnum]
    target: RequestStatusEnum
    # Caller must be the admin currently owning the request.
    owner_only: bool = False


TRANSITIONS: dict[str, Transition] = {
    "assign": Transition("assign", frozenset({PENDING}), ASSIGNED),
    "start": Transition("start", frozenset({ASSIGNED}), PROCESSING, owner_only=True),
    "complete": Transition("complete", frozenset({PROCESSING}), COMPLETED, owner_only=True),
    "reject": Transition("reject", frozenset({ASSIGNED, PROCESSING}), REJECTED, owner_only=True),
    "fail": Transition("fail", frozenset({ASSIGNED, PROCESSING}), FAILED, owner_only=True),
    "cancel": Transition("cancel", ACTIVE_STATUSES, CANCELLED),
}


def get_transition(action: str) -> Transition:
    try:
        return TRANSITIONS[action]
    except KeyError as exc:
        raise ValueError(f"Unknown request transition '{action}'") from exc


def is_terminal(status: RequestStatusEnum) -> bool:
    return status in TERMINAL_STATUSES


def keeps_owner(status: RequestStatusEnum) -> bool:
    return status in OWNED_STATUSES
