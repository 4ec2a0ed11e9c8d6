from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class CaseKind(str, Enum):
    TICKET = "ticket"
    APPLICATION = "application"


class CaseStatus(str, Enum):
    CREATED = "created"
    OPENED = "opened"
    ADMIN_ONLY = "adminOnly"
    CLOSING = "closing"
    CLOSED = "closed"


# Legal (from, to) moves per case kind. ``closing`` is the persisted in-flight
# marker for the archival pipeline; rolling back returns to the prior status.
_COMMON_TRANSITIONS: dict[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.CREATED: frozenset({CaseStatus.OPENED}),
    CaseStatus.OPENED: frozenset({CaseStatus.CLOSING}),
    CaseStatus.CLOSING: frozenset({CaseStatus.CLOSED, CaseStatus.OPENED}),
    CaseStatus.CLOSED: frozenset(),
}

TRANSITIONS: dict[CaseKind, dict[CaseStatus, frozenset[CaseStatus]]] = {
    CaseKind.TICKET: {
        **_COMMON_TRANSITIONS,
        CaseStatus.OPENED: frozenset({CaseStatus.ADMIN_ONLY, CaseStatus.CLOSING}),
        CaseStatus.ADMIN_ONLY: frozenset({CaseStatus.CLOSING}),
        CaseStatus.CLOSING: frozenset(
            {CaseStatus.CLOSED, CaseStatus.OPENED, CaseStatus.ADMIN_ONLY}
        ),
    },
    CaseKind.APPLICATION: dict(_COMMON_TRANSITIONS),
}


def can_transition(kind: CaseKind, current: CaseStatus, target: CaseStatus) -> bool:
    return target in TRANSITIONS[kind].get(current, frozenset())


@dataclass(slots=True)
class CaseRecord:
    id: str
    case_number: int
    guild_id: int
    kind: CaseKind
    created_by: int
    type_id: str | None
    status: CaseStatus
    channel_id: int | None = None
    message_id: int | None = None
    pre_close_status: CaseStatus | None = None
    created_at: str | None = None
    updated_at: str | None = None
    closed_at: str | None = None


@dataclass(slots=True)
class ArchiveRecord:
    id: str
    guild_id: int
    kind: CaseKind
    created_by: int
    thread_id: int
    forum_id: int
    type_id: str | None = None
    tag_ids: list[int] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(slots=True)
class ArchiveForumConfig:
    guild_id: int
    kind: CaseKind
    forum_id: int


@dataclass(slots=True)
class TypeDescriptor:
    type_id: str
    display_name: str
    emoji: str | None = None


@dataclass(slots=True)
class CustomCaseType:
    guild_id: int
    type_id: str
    display_name: str
    emoji: str | None = None
    is_active: bool = True
    sort_order: int = 0


@dataclass(slots=True)
class ForumTagMapping:
    guild_id: int
    forum_id: int
    type_id: str
    remote_tag_id: int
    display_name: str
    emoji: str | None = None
