from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from uuid import uuid4

from core.config import ArchiveConfig
from core.errors import ArchiveWriteError, TagLimitReachedError
from database.models import ArchiveRecord, CaseKind, TypeDescriptor
from database.repositories import ArchiveRepository
from services.remote import CaseRemote, ThreadMissingError
from services.tag_service import TagService

LOGGER = logging.getLogger(__name__)

MAX_TAG_MERGE_ATTEMPTS = 5


def merge_tag_ids(current: Sequence[int], tag_id: int) -> list[int]:
    merged = list(dict.fromkeys(current))
    if tag_id not in merged:
        merged.append(tag_id)
    return merged


class ArchiveService:
    """Keeps one forum thread per (guild, kind, user) and files every close into it."""

    def __init__(
        self,
        config: ArchiveConfig,
        remote: CaseRemote,
        archives: ArchiveRepository,
        tags: TagService,
    ) -> None:
        self.config = config
        self.remote = remote
        self.archives = archives
        self.tags = tags

    async def archive(
        self,
        guild_id: int,
        kind: CaseKind,
        created_by: int,
        forum_id: int,
        files: Sequence[Path],
        descriptor: TypeDescriptor | None,
    ) -> ArchiveRecord:
        record = await self.archives.find_one(guild_id, kind, created_by)
        if record is None:
            record = await self._create_thread(guild_id, kind, created_by, forum_id, files)
        elif record.forum_id != forum_id:
            LOGGER.info(
                "Archive forum for %s changed from %s, moving user %s to a new thread",
                kind.value,
                record.forum_id,
                created_by,
                extra={"guild_id": guild_id, "forum_id": forum_id, "thread_id": record.thread_id},
            )
            record = await self._move_thread(record, forum_id, files)
        else:
            try:
                await self.remote.post_files(record.thread_id, files)
            except ThreadMissingError:
                LOGGER.warning(
                    "Archive thread %s is gone, opening a new one for user %s",
                    record.thread_id,
                    created_by,
                    extra={"guild_id": guild_id, "forum_id": forum_id, "thread_id": record.thread_id},
                )
                record = await self._move_thread(record, forum_id, files)
            except Exception as exc:
                LOGGER.warning("Could not post to archive thread %s", record.thread_id, exc_info=exc)
                raise ArchiveWriteError() from exc

        if descriptor is not None:
            await self._merge_tag(record, descriptor)
        return record

    async def _open_thread(self, created_by: int, forum_id: int, files: Sequence[Path]) -> int:
        try:
            name = await self.remote.fetch_username(created_by)
            return await self.remote.create_forum_thread(forum_id, name, files)
        except Exception as exc:
            LOGGER.warning(
                "Could not create archive thread in forum %s", forum_id, exc_info=exc, extra={"forum_id": forum_id}
            )
            raise ArchiveWriteError() from exc

    async def _create_thread(
        self,
        guild_id: int,
        kind: CaseKind,
        created_by: int,
        forum_id: int,
        files: Sequence[Path],
    ) -> ArchiveRecord:
        thread_id = await self._open_thread(created_by, forum_id, files)
        candidate = ArchiveRecord(
            id=str(uuid4()),
            guild_id=guild_id,
            kind=kind,
            created_by=created_by,
            thread_id=thread_id,
            forum_id=forum_id,
            tag_ids=[],
        )
        if await self.archives.save(candidate):
            LOGGER.info(
                "Created %s archive thread for user %s",
                kind.value,
                created_by,
                extra={"guild_id": guild_id, "forum_id": forum_id, "thread_id": thread_id},
            )
            return candidate

        # Another close for the same user stored its thread first.
        return await self._defer_to_winner(guild_id, kind, created_by, thread_id, files)

    async def _move_thread(self, record: ArchiveRecord, forum_id: int, files: Sequence[Path]) -> ArchiveRecord:
        thread_id = await self._open_thread(record.created_by, forum_id, files)
        if await self.archives.repoint(record.guild_id, record.id, record.thread_id, thread_id, forum_id):
            LOGGER.info(
                "Archive for user %s moved from thread %s to %s",
                record.created_by,
                record.thread_id,
                thread_id,
                extra={"guild_id": record.guild_id, "forum_id": forum_id, "thread_id": thread_id},
            )
            record.thread_id = thread_id
            record.forum_id = forum_id
            record.tag_ids = []
            record.type_id = None
            return record
        return await self._defer_to_winner(record.guild_id, record.kind, record.created_by, thread_id, files)

    async def _defer_to_winner(
        self,
        guild_id: int,
        kind: CaseKind,
        created_by: int,
        orphan_thread_id: int,
        files: Sequence[Path],
    ) -> ArchiveRecord:
        winner = await self.archives.find_one(guild_id, kind, created_by)
        if winner is None:
            raise ArchiveWriteError()
        LOGGER.warning(
            "Concurrent archive for user %s; keeping thread %s, thread %s is orphaned",
            created_by,
            winner.thread_id,
            orphan_thread_id,
            extra={"guild_id": guild_id, "forum_id": winner.forum_id},
        )
        await self._post(winner.thread_id, files)
        return winner

    async def _post(self, thread_id: int, files: Sequence[Path]) -> None:
        try:
            await self.remote.post_files(thread_id, files)
        except Exception as exc:
            LOGGER.warning("Could not post to archive thread %s", thread_id, exc_info=exc)
            raise ArchiveWriteError() from exc

    async def _merge_tag(self, record: ArchiveRecord, descriptor: TypeDescriptor) -> None:
        log_extra = {"guild_id": record.guild_id, "forum_id": record.forum_id, "thread_id": record.thread_id}
        try:
            tag_id = await self.tags.ensure_tag(record.guild_id, record.forum_id, descriptor)
            current = record
            for _ in range(MAX_TAG_MERGE_ATTEMPTS):
                merged = merge_tag_ids(current.tag_ids, tag_id)
                if merged == current.tag_ids:
                    break
                await self.remote.apply_thread_tags(
                    current.forum_id, current.thread_id, merged[-self.config.max_applied_tags :]
                )
                if await self.archives.update_tags(
                    current.guild_id, current.id, current.tag_ids, merged, descriptor.type_id
                ):
                    current.tag_ids = merged
                    current.type_id = descriptor.type_id
                    break
                # Another close changed the tag set first; merge into its result.
                fresh = await self.archives.find_one(record.guild_id, record.kind, record.created_by)
                if fresh is None or fresh.thread_id != record.thread_id:
                    LOGGER.info("Archive thread %s was replaced while tagging", record.thread_id, extra=log_extra)
                    return
                current = fresh
            else:
                LOGGER.warning(
                    "Gave up merging the %s tag after %s attempts",
                    descriptor.type_id,
                    MAX_TAG_MERGE_ATTEMPTS,
                    extra=log_extra,
                )
                return
            record.tag_ids = current.tag_ids
            record.type_id = current.type_id
        except TagLimitReachedError:
            LOGGER.warning(
                "Forum %s is out of tag slots, archived without the %s tag",
                record.forum_id,
                descriptor.type_id,
                extra=log_extra,
            )
        except Exception:
            LOGGER.warning("Tagging archive thread %s failed", record.thread_id, exc_info=True, extra=log_extra)
