from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from database.models import CaseKind


class ThreadMissingError(LookupError):
    """The archive thread was deleted on the remote side."""

    def __init__(self, thread_id: int) -> None:
        super().__init__(f"Thread {thread_id} does not exist")
        self.thread_id = thread_id


@dataclass(slots=True)
class CapturedAttachment:
    filename: str
    url: str
    content_type: str = ""


@dataclass(slots=True)
class CapturedMessage:
    id: int
    author: str
    content: str
    attachments: list[CapturedAttachment] = field(default_factory=list)


@dataclass(slots=True)
class RemoteForumTag:
    """A forum tag as seen by the core. ``id`` is ``None`` for a tag not created yet."""

    id: int | None
    name: str
    emoji_name: str | None = None
    emoji_id: int | None = None
    animated: bool = False


@dataclass(slots=True)
class CaseChannelHandle:
    channel_id: int
    message_id: int


class CaseRemote(Protocol):
    async def fetch_messages(self, channel_id: int, limit: int, before: int | None) -> list[CapturedMessage]:
        """Return up to ``limit`` messages older than ``before``, newest first."""
        ...

    async def create_forum_thread(self, forum_id: int, name: str, files: Sequence[Path]) -> int:
        ...

    async def post_files(self, thread_id: int, files: Sequence[Path]) -> None:
        """Raise ``ThreadMissingError`` when the thread no longer exists."""
        ...

    async def list_forum_tags(self, forum_id: int) -> list[RemoteForumTag]:
        ...

    async def add_forum_tags(self, forum_id: int, tags: Sequence[RemoteForumTag]) -> None:
        """Append new tags to whatever the forum currently has."""
        ...

    async def apply_thread_tags(self, forum_id: int, thread_id: int, tag_ids: Sequence[int]) -> None:
        ...

    async def revoke_role_view(self, channel_id: int, role_id: int) -> None:
        ...

    async def strip_controls(self, channel_id: int, message_id: int, kind: CaseKind) -> None:
        ...

    async def delete_channel(self, channel_id: int, reason: str) -> None:
        ...

    async def fetch_username(self, user_id: int) -> str:
        ...

    async def create_case_channel(
        self,
        guild_id: int,
        kind: CaseKind,
        name: str,
        owner_id: int,
        staff_role_ids: Sequence[int],
    ) -> CaseChannelHandle:
        ...
