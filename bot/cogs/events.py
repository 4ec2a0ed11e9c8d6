from __future__ import annotations

import logging

import discord
from discord.ext import commands

from core.bot import CaseBot

LOGGER = logging.getLogger(__name__)


class EventsCog(commands.Cog):
    def __init__(self, bot: CaseBot) -> None:
        self.bot = bot

    @commands.Cog.listener()
    async def on_ready(self) -> None:
        for guild in self.bot.guilds:
            await self.bot.guild_repo.ensure_guild(guild.id)

    @commands.Cog.listener()
    async def on_guild_join(self, guild: discord.Guild) -> None:
        await self.bot.guild_repo.ensure_guild(guild.id)
        LOGGER.info("Joined guild %s", guild.id, extra={"guild_id": guild.id})

    @commands.Cog.listener()
    async def on_guild_channel_delete(self, channel: discord.abc.GuildChannel) -> None:
        if not isinstance(channel, discord.ForumChannel):
            return
        cleared = await self.bot.archive_config_repo.clear_forum(channel.guild.id, channel.id)
        if cleared:
            LOGGER.info(
                "Archive forum %s was deleted, cleared %s archive settings",
                channel.id,
                cleared,
                extra={"guild_id": channel.guild.id},
            )


async def setup(bot: CaseBot) -> None:
    await bot.add_cog(EventsCog(bot))
