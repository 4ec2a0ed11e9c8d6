from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import aiohttp
import pytest
import pytest_asyncio

from core.config import AppConfig, ArchiveConfig, DiscordConfig
from database.base import Database
from database.migrations.runner import run_migrations
from database.models import CaseKind
from database.repositories import (
    ArchiveConfigRepository,
    ArchiveRepository,
    CaseRepository,
    CaseTypeRepository,
    ForumTagRepository,
    GuildRepository,
    StaffRoleRepository,
)
from services.archive_service import ArchiveService
from services.attachment_service import AttachmentService
from services.case_service import CaseService, CaseServiceDeps
from services.remote import (
    CapturedAttachment,
    CapturedMessage,
    CaseChannelHandle,
    RemoteForumTag,
    ThreadMissingError,
)
from services.tag_service import TagService
from services.transcript_service import TranscriptService
from services.type_resolver import TypeResolver

MIGRATIONS_DIR = Path(__file__).resolve().parents[1] / "database" / "migrations"


def make_message(
    message_id: int, author: str, content: str, attachments: Sequence[CapturedAttachment] = ()
) -> CapturedMessage:
    return CapturedMessage(id=message_id, author=author, content=content, attachments=list(attachments))


def image(filename: str, url: str | None = None, content_type: str = "image/png") -> CapturedAttachment:
    return CapturedAttachment(filename=filename, url=url or f"https://cdn.test/{filename}", content_type=content_type)


class FakeRemote:
    """In-memory stand-in for the Discord side of the case pipeline."""

    def __init__(self) -> None:
        self.history: dict[int, list[CapturedMessage]] = {}
        self.fetch_calls: list[tuple[int, int, int | None]] = []
        self.forum_tags: dict[int, list[RemoteForumTag]] = {}
        self.add_tag_calls: list[int] = []
        self.threads: dict[int, dict[str, Any]] = {}
        self.usernames: dict[int, str] = {}
        self.created_channels: list[dict[str, Any]] = []
        self.deleted_channels: list[int] = []
        self.revoked: list[tuple[int, int]] = []
        self.stripped: list[tuple[int, int]] = []
        self.failing: set[str] = set()
        self.thread_barrier: asyncio.Barrier | None = None
        self._next_id = 10_000

    def _new_id(self) -> int:
        self._next_id += 1
        return self._next_id

    def _maybe_fail(self, name: str) -> None:
        if name in self.failing:
            raise RuntimeError(f"{name} failed")

    @staticmethod
    def _snapshot(files: Sequence[Path]) -> dict[str, bytes]:
        return {path.name: path.read_bytes() for path in files}

    async def fetch_messages(self, channel_id: int, limit: int, before: int | None) -> list[CapturedMessage]:
        self._maybe_fail("fetch_messages")
        self.fetch_calls.append((channel_id, limit, before))
        newest_first = sorted(self.history.get(channel_id, []), key=lambda m: m.id, reverse=True)
        if before is not None:
            newest_first = [m for m in newest_first if m.id < before]
        return newest_first[:limit]

    async def create_forum_thread(self, forum_id: int, name: str, files: Sequence[Path]) -> int:
        if self.thread_barrier is not None:
            await self.thread_barrier.wait()
        self._maybe_fail("create_forum_thread")
        thread_id = self._new_id()
        self.threads[thread_id] = {
            "forum_id": forum_id,
            "name": name,
            "posts": [self._snapshot(files)],
            "applied": [],
        }
        return thread_id

    async def post_files(self, thread_id: int, files: Sequence[Path]) -> None:
        self._maybe_fail("post_files")
        if thread_id not in self.threads:
            raise ThreadMissingError(thread_id)
        self.threads[thread_id]["posts"].append(self._snapshot(files))

    async def list_forum_tags(self, forum_id: int) -> list[RemoteForumTag]:
        self._maybe_fail("list_forum_tags")
        return [
            RemoteForumTag(id=t.id, name=t.name, emoji_name=t.emoji_name, emoji_id=t.emoji_id)
            for t in self.forum_tags.get(forum_id, [])
        ]

    async def add_forum_tags(self, forum_id: int, tags: Sequence[RemoteForumTag]) -> None:
        self._maybe_fail("add_forum_tags")
        self.add_tag_calls.append(forum_id)
        stored = self.forum_tags.setdefault(forum_id, [])
        for tag in tags:
            if any(existing.name.casefold() == tag.name.casefold() for existing in stored):
                continue
            stored.append(
                RemoteForumTag(id=self._new_id(), name=tag.name, emoji_name=tag.emoji_name, emoji_id=tag.emoji_id)
            )

    async def apply_thread_tags(self, forum_id: int, thread_id: int, tag_ids: Sequence[int]) -> None:
        self._maybe_fail("apply_thread_tags")
        self.threads[thread_id]["applied"].append(list(tag_ids))

    async def revoke_role_view(self, channel_id: int, role_id: int) -> None:
        self.revoked.append((channel_id, role_id))

    async def strip_controls(self, channel_id: int, message_id: int, kind: CaseKind) -> None:
        self.stripped.append((channel_id, message_id))

    async def delete_channel(self, channel_id: int, reason: str) -> None:
        self._maybe_fail("delete_channel")
        self.deleted_channels.append(channel_id)

    async def fetch_username(self, user_id: int) -> str:
        return self.usernames.get(user_id, f"user{user_id}")

    async def create_case_channel(
        self,
        guild_id: int,
        kind: CaseKind,
        name: str,
        owner_id: int,
        staff_role_ids: Sequence[int],
    ) -> CaseChannelHandle:
        self._maybe_fail("create_case_channel")
        handle = CaseChannelHandle(channel_id=self._new_id(), message_id=self._new_id())
        self.created_channels.append(
            {"guild_id": guild_id, "kind": kind, "name": name, "owner_id": owner_id, "handle": handle}
        )
        return handle


class StubAttachmentService(AttachmentService):
    """Serves downloads from a url -> bytes map; unknown urls fail like a 404."""

    def __init__(self, config: ArchiveConfig, payloads: dict[str, bytes] | None = None) -> None:
        super().__init__(config)
        self.payloads = payloads if payloads is not None else {}

    async def _download(self, session: aiohttp.ClientSession, attachment: CapturedAttachment) -> bytes:
        payload = self.payloads.get(attachment.url)
        if payload is None:
            raise aiohttp.ClientError(f"404 for {attachment.url}")
        return payload


@dataclass
class CaseHarness:
    db: Database
    remote: FakeRemote
    config: AppConfig
    case_service: CaseService
    attachments: StubAttachmentService
    transcripts: TranscriptService
    case_repo: CaseRepository
    archive_repo: ArchiveRepository
    archive_config_repo: ArchiveConfigRepository
    forum_tag_repo: ForumTagRepository
    case_type_repo: CaseTypeRepository
    staff_role_repo: StaffRoleRepository
    temp_dir: Path


@pytest.fixture
def archive_config(tmp_path: Path) -> ArchiveConfig:
    return ArchiveConfig(temp_directory=str(tmp_path / "temp"), tag_refresh_delay_seconds=0)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()


@pytest_asyncio.fixture
async def db(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(url=f"sqlite:///{tmp_path / 'cases.db'}")
    await database.connect()
    await run_migrations(database, MIGRATIONS_DIR)
    yield database
    await database.close()


@pytest_asyncio.fixture
async def harness(db: Database, remote: FakeRemote, archive_config: ArchiveConfig) -> CaseHarness:
    config = AppConfig(discord=DiscordConfig(token="x"), archive=archive_config)
    case_repo = CaseRepository(db)
    archive_repo = ArchiveRepository(db)
    archive_config_repo = ArchiveConfigRepository(db)
    forum_tag_repo = ForumTagRepository(db)
    case_type_repo = CaseTypeRepository(db)
    staff_role_repo = StaffRoleRepository(db)

    transcripts = TranscriptService(archive_config, remote)
    attachments = StubAttachmentService(archive_config)
    tags = TagService(archive_config, remote, forum_tag_repo)
    deps = CaseServiceDeps(
        guild_repo=GuildRepository(db),
        case_repo=case_repo,
        archive_config_repo=archive_config_repo,
        staff_role_repo=staff_role_repo,
        type_resolver=TypeResolver(case_type_repo),
        transcripts=transcripts,
        attachments=attachments,
        archives=ArchiveService(archive_config, remote, archive_repo, tags),
        remote=remote,
    )
    return CaseHarness(
        db=db,
        remote=remote,
        config=config,
        case_service=CaseService(config, deps),
        attachments=attachments,
        transcripts=transcripts,
        case_repo=case_repo,
        archive_repo=archive_repo,
        archive_config_repo=archive_config_repo,
        forum_tag_repo=forum_tag_repo,
        case_type_repo=case_type_repo,
        staff_role_repo=staff_role_repo,
        temp_dir=Path(archive_config.temp_directory),
    )
