from __future__ import annotations

import asyncio
import logging
import re

from core.config import ArchiveConfig
from core.errors import TagLimitReachedError
from database.models import ForumTagMapping, TypeDescriptor
from database.repositories import ForumTagRepository
from services.remote import CaseRemote, RemoteForumTag

LOGGER = logging.getLogger(__name__)

CUSTOM_EMOJI_RE = re.compile(r"<(a?):(\w+):(\d+)>")
MAX_TAG_NAME_LENGTH = 20


def parse_emoji(value: str | None) -> tuple[str | None, int | None, bool]:
    """Split an emoji string into ``(name, id, animated)``; unicode emoji have no id."""
    if not value:
        return None, None, False
    match = CUSTOM_EMOJI_RE.fullmatch(value.strip())
    if match:
        return match.group(2), int(match.group(3)), bool(match.group(1))
    return value.strip(), None, False


def _find_by_name(tags: list[RemoteForumTag], name: str) -> RemoteForumTag | None:
    wanted = name.casefold()
    for tag in tags:
        if tag.id is not None and tag.name.casefold() == wanted:
            return tag
    return None


class TagService:
    def __init__(self, config: ArchiveConfig, remote: CaseRemote, forum_tags: ForumTagRepository) -> None:
        self.config = config
        self.remote = remote
        self.forum_tags = forum_tags
        self._forum_locks: dict[int, asyncio.Lock] = {}

    async def ensure_tag(self, guild_id: int, forum_id: int, descriptor: TypeDescriptor) -> int:
        """Return the forum tag id for a case type, creating the tag on first use."""
        # Concurrent closes into one forum must not create the same tag twice.
        lock = self._forum_locks.setdefault(forum_id, asyncio.Lock())
        async with lock:
            return await self._ensure_tag(guild_id, forum_id, descriptor)

    async def _ensure_tag(self, guild_id: int, forum_id: int, descriptor: TypeDescriptor) -> int:
        available = await self.remote.list_forum_tags(forum_id)
        mapping = await self.forum_tags.get(guild_id, forum_id, descriptor.type_id)
        if mapping is not None:
            if any(tag.id == mapping.remote_tag_id for tag in available):
                return mapping.remote_tag_id
            LOGGER.info(
                "Forum tag %s for type %s is gone from forum %s, recreating",
                mapping.remote_tag_id,
                descriptor.type_id,
                forum_id,
                extra={"guild_id": guild_id, "forum_id": forum_id},
            )

        name = descriptor.display_name[:MAX_TAG_NAME_LENGTH]
        existing = _find_by_name(available, name)
        if existing is not None and existing.id is not None:
            tag_id = existing.id
        else:
            tag_id = await self._create_tag(forum_id, name, descriptor.emoji, available)

        await self.forum_tags.upsert(
            ForumTagMapping(
                guild_id=guild_id,
                forum_id=forum_id,
                type_id=descriptor.type_id,
                remote_tag_id=tag_id,
                display_name=name,
                emoji=descriptor.emoji,
            )
        )
        return tag_id

    async def _create_tag(
        self, forum_id: int, name: str, emoji: str | None, available: list[RemoteForumTag]
    ) -> int:
        if len(available) >= self.config.max_forum_tags:
            raise TagLimitReachedError()

        emoji_name, emoji_id, animated = parse_emoji(emoji)
        new_tag = RemoteForumTag(id=None, name=name, emoji_name=emoji_name, emoji_id=emoji_id, animated=animated)
        await self.remote.add_forum_tags(forum_id, [new_tag])
        if self.config.tag_refresh_delay_seconds > 0:
            await asyncio.sleep(self.config.tag_refresh_delay_seconds)

        created = _find_by_name(await self.remote.list_forum_tags(forum_id), name)
        if created is None or created.id is None:
            raise LookupError(f"Forum {forum_id} did not report the new tag {name!r}")
        LOGGER.info(
            "Created forum tag %s (%s) in forum %s", name, created.id, forum_id, extra={"forum_id": forum_id}
        )
        return created.id
