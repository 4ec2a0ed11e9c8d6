from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from conftest import FakeRemote
from core.config import ArchiveConfig
from core.errors import ArchiveWriteError
from database.base import Database
from database.models import CaseKind, TypeDescriptor
from database.repositories import ArchiveRepository, ForumTagRepository
from services.archive_service import ArchiveService, merge_tag_ids
from services.remote import RemoteForumTag
from services.tag_service import TagService

GUILD_ID = 1
FORUM_ID = 500
USER_ID = 42


def _service(db: Database, remote: FakeRemote, config: ArchiveConfig) -> ArchiveService:
    return ArchiveService(config, remote, ArchiveRepository(db), TagService(config, remote, ForumTagRepository(db)))


def _transcript(tmp_path: Path, name: str = "1.txt", body: str = "log") -> Path:
    path = tmp_path / name
    path.write_text(body, encoding="utf-8")
    return path


def _descriptor(index: int) -> TypeDescriptor:
    return TypeDescriptor(type_id=f"type_{index}", display_name=f"Type {index}")


def test_merge_tag_ids_is_an_ordered_union() -> None:
    assert merge_tag_ids([3, 1], 2) == [3, 1, 2]
    assert merge_tag_ids([3, 1], 3) == [3, 1]
    assert merge_tag_ids([], 5) == [5]


@pytest.mark.asyncio
async def test_first_close_creates_thread_named_after_user(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    remote.usernames[USER_ID] = "alice"
    service = _service(db, remote, archive_config)

    record = await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], None)

    thread = remote.threads[record.thread_id]
    assert thread["name"] == "alice"
    assert thread["posts"] == [{"1.txt": b"log"}]
    assert record.tag_ids == []


@pytest.mark.asyncio
async def test_later_closes_post_into_same_thread(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    service = _service(db, remote, archive_config)
    first = await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path, "1.txt")], None)
    second = await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path, "2.txt")], None)

    assert first.thread_id == second.thread_id
    assert len(remote.threads) == 1
    assert [list(post) for post in remote.threads[first.thread_id]["posts"]] == [["1.txt"], ["2.txt"]]


@pytest.mark.asyncio
async def test_kinds_get_separate_threads(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    service = _service(db, remote, archive_config)
    ticket = await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], None)
    application = await service.archive(GUILD_ID, CaseKind.APPLICATION, USER_ID, 600, [_transcript(tmp_path)], None)

    assert ticket.thread_id != application.thread_id
    assert remote.threads[application.thread_id]["forum_id"] == 600


@pytest.mark.asyncio
async def test_same_type_is_tagged_once(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    service = _service(db, remote, archive_config)
    descriptor = _descriptor(1)

    first = await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], descriptor)
    second = await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], descriptor)

    assert first.tag_ids == second.tag_ids
    assert len(second.tag_ids) == 1
    assert len(remote.threads[first.thread_id]["applied"]) == 1


@pytest.mark.asyncio
async def test_applied_tags_capped_but_union_persisted(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    service = _service(db, remote, archive_config)
    record = None
    for index in range(6):
        record = await service.archive(
            GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], _descriptor(index)
        )

    assert record is not None
    stored = await ArchiveRepository(db).find_one(GUILD_ID, CaseKind.TICKET, USER_ID)
    assert stored is not None and len(stored.tag_ids) == 6
    last_applied = remote.threads[record.thread_id]["applied"][-1]
    assert last_applied == stored.tag_ids[-5:]


@pytest.mark.asyncio
async def test_tag_limit_does_not_fail_archive(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path, caplog: pytest.LogCaptureFixture
) -> None:
    remote.forum_tags[FORUM_ID] = [RemoteForumTag(id=i, name=f"tag {i}") for i in range(1, 21)]
    service = _service(db, remote, archive_config)

    record = await service.archive(
        GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], _descriptor(99)
    )

    assert record.tag_ids == []
    assert len(remote.threads[record.thread_id]["posts"]) == 1
    assert any("out of tag slots" in message for message in caplog.messages)


@pytest.mark.asyncio
async def test_tag_apply_failure_is_logged_not_raised(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    remote.failing.add("apply_thread_tags")
    service = _service(db, remote, archive_config)

    record = await service.archive(
        GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], _descriptor(1)
    )

    stored = await ArchiveRepository(db).find_one(GUILD_ID, CaseKind.TICKET, USER_ID)
    assert stored is not None and stored.tag_ids == []
    assert record.thread_id in remote.threads


@pytest.mark.asyncio
async def test_post_failure_raises_archive_write_error(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    service = _service(db, remote, archive_config)
    await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], None)
    remote.failing.add("post_files")

    with pytest.raises(ArchiveWriteError):
        await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], None)


@pytest.mark.asyncio
async def test_concurrent_first_archives_keep_one_record(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    remote.thread_barrier = asyncio.Barrier(2)
    service = _service(db, remote, archive_config)

    first, second = await asyncio.gather(
        service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path, "a.txt")], None),
        service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path, "b.txt")], None),
    )

    assert first.id == second.id
    assert await ArchiveRepository(db).count_for_owner(GUILD_ID, CaseKind.TICKET, USER_ID) == 1
    winner_posts = remote.threads[first.thread_id]["posts"]
    assert sorted(name for post in winner_posts for name in post) == ["a.txt", "b.txt"]


@pytest.mark.asyncio
async def test_concurrent_tagging_keeps_union(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    service = _service(db, remote, archive_config)
    await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], _descriptor(0))

    await asyncio.gather(
        service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], _descriptor(1)),
        service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], _descriptor(2)),
    )

    stored = await ArchiveRepository(db).find_one(GUILD_ID, CaseKind.TICKET, USER_ID)
    assert stored is not None
    assert len(stored.tag_ids) == 3
    assert sorted(stored.tag_ids) == sorted(tag.id for tag in remote.forum_tags[FORUM_ID])


@pytest.mark.asyncio
async def test_missing_thread_is_replaced(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    service = _service(db, remote, archive_config)
    first = await service.archive(
        GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], _descriptor(1)
    )
    old_thread_id = first.thread_id
    del remote.threads[old_thread_id]

    second = await service.archive(
        GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path, "2.txt")], _descriptor(1)
    )

    assert second.thread_id != old_thread_id
    assert remote.threads[second.thread_id]["posts"] == [{"2.txt": b"log"}]
    assert remote.threads[second.thread_id]["applied"] == [second.tag_ids]
    stored = await ArchiveRepository(db).find_one(GUILD_ID, CaseKind.TICKET, USER_ID)
    assert stored is not None and stored.thread_id == second.thread_id


@pytest.mark.asyncio
async def test_new_archive_forum_gets_new_thread(
    db: Database, remote: FakeRemote, archive_config: ArchiveConfig, tmp_path: Path
) -> None:
    service = _service(db, remote, archive_config)
    first = await service.archive(
        GUILD_ID, CaseKind.TICKET, USER_ID, FORUM_ID, [_transcript(tmp_path)], _descriptor(1)
    )
    old_thread_id = first.thread_id

    moved = await service.archive(GUILD_ID, CaseKind.TICKET, USER_ID, 501, [_transcript(tmp_path)], _descriptor(1))

    assert moved.forum_id == 501
    assert remote.threads[moved.thread_id]["forum_id"] == 501
    assert len(remote.threads[old_thread_id]["posts"]) == 1
    assert moved.tag_ids == [remote.forum_tags[501][0].id]
