from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path
from typing import TYPE_CHECKING, Any

import discord

from database.models import CaseKind
from services.remote import (
    CaseChannelHandle,
    CapturedAttachment,
    CapturedMessage,
    RemoteForumTag,
    ThreadMissingError,
)
from utils.constants import WELCOME_MESSAGE
from utils.embeds import make_embed
from views.case_controls import CaseControlsView

if TYPE_CHECKING:
    from core.bot import CaseBot

LOGGER = logging.getLogger(__name__)


def _to_remote_tag(tag: discord.ForumTag) -> RemoteForumTag:
    emoji = tag.emoji
    return RemoteForumTag(
        id=tag.id,
        name=tag.name,
        emoji_name=emoji.name if emoji else None,
        emoji_id=emoji.id if emoji else None,
        animated=bool(emoji.animated) if emoji else False,
    )


def _to_partial_emoji(tag: RemoteForumTag) -> discord.PartialEmoji | None:
    if not tag.emoji_name:
        return None
    return discord.PartialEmoji(name=tag.emoji_name, id=tag.emoji_id, animated=tag.animated)


class DiscordCaseRemote:
    """``CaseRemote`` implemented over a running discord.py bot."""

    def __init__(self, bot: CaseBot) -> None:
        self.bot = bot

    async def _channel(self, channel_id: int) -> Any:
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(channel_id)
        return channel

    async def _forum(self, forum_id: int) -> discord.ForumChannel:
        # Always refetch so available_tags reflects the latest edit.
        forum = await self.bot.fetch_channel(forum_id)
        if not isinstance(forum, discord.ForumChannel):
            raise TypeError(f"Channel {forum_id} is not a forum channel")
        return forum

    async def fetch_messages(self, channel_id: int, limit: int, before: int | None) -> list[CapturedMessage]:
        channel = await self._channel(channel_id)
        cursor = discord.Object(id=before) if before is not None else None
        messages: list[CapturedMessage] = []
        async for message in channel.history(limit=limit, before=cursor):
            messages.append(
                CapturedMessage(
                    id=message.id,
                    author=str(message.author),
                    content=message.content or "",
                    attachments=[
                        CapturedAttachment(
                            filename=attachment.filename,
                            url=attachment.url,
                            content_type=attachment.content_type or "",
                        )
                        for attachment in message.attachments
                    ],
                )
            )
        return messages

    async def create_forum_thread(self, forum_id: int, name: str, files: Sequence[Path]) -> int:
        forum = await self._forum(forum_id)
        created = await forum.create_thread(name=name[:100], files=[discord.File(path) for path in files])
        return created.thread.id

    async def post_files(self, thread_id: int, files: Sequence[Path]) -> None:
        try:
            thread = await self._channel(thread_id)
            await thread.send(files=[discord.File(path) for path in files])
        except discord.NotFound as exc:
            raise ThreadMissingError(thread_id) from exc

    async def list_forum_tags(self, forum_id: int) -> list[RemoteForumTag]:
        forum = await self._forum(forum_id)
        return [_to_remote_tag(tag) for tag in forum.available_tags]

    async def add_forum_tags(self, forum_id: int, tags: Sequence[RemoteForumTag]) -> None:
        forum = await self._forum(forum_id)
        updated = list(forum.available_tags)
        present = {tag.name.casefold() for tag in updated}
        for tag in tags:
            if tag.name.casefold() in present:
                continue
            updated.append(discord.ForumTag(name=tag.name, emoji=_to_partial_emoji(tag), moderated=False))
            present.add(tag.name.casefold())
        await forum.edit(available_tags=updated)

    async def apply_thread_tags(self, forum_id: int, thread_id: int, tag_ids: Sequence[int]) -> None:
        forum = await self._forum(forum_id)
        thread = await self._channel(thread_id)
        applied: list[discord.ForumTag] = []
        for tag_id in tag_ids:
            tag = forum.get_tag(tag_id)
            if tag is not None:
                applied.append(tag)
        await thread.edit(applied_tags=applied)

    async def revoke_role_view(self, channel_id: int, role_id: int) -> None:
        channel = await self._channel(channel_id)
        role = channel.guild.get_role(role_id)
        if role is None:
            LOGGER.warning("Staff role %s no longer exists in guild %s", role_id, channel.guild.id)
            return
        await channel.set_permissions(role, view_channel=False, reason="Ticket restricted to admins")

    async def strip_controls(self, channel_id: int, message_id: int, kind: CaseKind) -> None:
        channel = await self._channel(channel_id)
        message = await channel.fetch_message(message_id)
        await message.edit(view=CaseControlsView(self.bot, allow_admin_only=False))

    async def delete_channel(self, channel_id: int, reason: str) -> None:
        channel = await self._channel(channel_id)
        await channel.delete(reason=reason)

    async def fetch_username(self, user_id: int) -> str:
        user = self.bot.get_user(user_id)
        if user is None:
            user = await self.bot.fetch_user(user_id)
        return user.name

    async def create_case_channel(
        self,
        guild_id: int,
        kind: CaseKind,
        name: str,
        owner_id: int,
        staff_role_ids: Sequence[int],
    ) -> CaseChannelHandle:
        guild = self.bot.get_guild(guild_id) or await self.bot.fetch_guild(guild_id)
        owner = guild.get_member(owner_id) or await guild.fetch_member(owner_id)

        overwrites: dict[discord.abc.Snowflake, discord.PermissionOverwrite] = {
            guild.default_role: discord.PermissionOverwrite(view_channel=False),
            owner: discord.PermissionOverwrite(
                view_channel=True,
                send_messages=True,
                read_message_history=True,
                attach_files=True,
                embed_links=True,
            ),
            guild.me: discord.PermissionOverwrite(
                view_channel=True,
                send_messages=True,
                read_message_history=True,
                manage_channels=True,
                manage_messages=True,
            ),
        }
        for role_id in staff_role_ids:
            role = guild.get_role(role_id)
            if role:
                overwrites[role] = discord.PermissionOverwrite(
                    view_channel=True,
                    send_messages=True,
                    read_message_history=True,
                    attach_files=True,
                    embed_links=True,
                )

        category_id = (
            self.bot.config.cases.ticket_category_id
            if kind is CaseKind.TICKET
            else self.bot.config.cases.application_category_id
        )
        category = guild.get_channel(category_id) if category_id else None
        if category and not isinstance(category, discord.CategoryChannel):
            category = None

        channel = await guild.create_text_channel(
            name=name,
            category=category,
            overwrites=overwrites,
            reason=f"{kind.value.title()} opened by {owner} ({owner.id})",
            topic=f"{kind.value}|opener:{owner.id}",
        )
        noun = "ticket" if kind is CaseKind.TICKET else "application"
        try:
            message = await channel.send(
                content=owner.mention,
                embed=make_embed(
                    title=f"New {noun}",
                    description=WELCOME_MESSAGE.format(name=owner.display_name, noun=noun),
                ),
                view=CaseControlsView(self.bot, allow_admin_only=kind is CaseKind.TICKET),
            )
        except discord.HTTPException:
            await channel.delete(reason="Welcome message could not be sent")
            raise
        return CaseChannelHandle(channel_id=channel.id, message_id=message.id)
