from __future__ import annotations

import re

import discord
from discord.ext import commands

from core.bot import CaseBot
from core.errors import ValidationError
from core.extensions import reload_extensions
from database.models import CaseKind, CustomCaseType
from utils.embeds import make_embed, success_embed

TYPE_ID_RE = re.compile(r"^[a-z0-9_]{1,32}$")


def _is_admin(member: discord.Member) -> bool:
    return member.guild_permissions.administrator


def _parse_kind(value: str) -> CaseKind:
    try:
        return CaseKind(value.strip().lower())
    except ValueError:
        raise ValidationError("Kind must be `ticket` or `application`.") from None


class AdminCog(commands.Cog):
    def __init__(self, bot: CaseBot) -> None:
        self.bot = bot

    async def _assert_admin(self, ctx: commands.Context[CaseBot]) -> None:
        if not ctx.guild or not isinstance(ctx.author, discord.Member) or not _is_admin(ctx.author):
            raise commands.CheckFailure("Administrator permission required.")

    @commands.hybrid_group(name="admin", with_app_command=True, description="Case archive administration.")
    async def admin(self, ctx: commands.Context[CaseBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Admin Commands",
                    "`/admin archive_forum <kind> <forum>`\n"
                    "`/admin staff_role_add <role>`\n"
                    "`/admin staff_role_remove <role>`\n"
                    "`/admin type_upsert <type_id> <name>`\n"
                    "`/admin type_list`\n"
                    "`/admin reload`",
                ),
                mention_author=False,
            )

    @admin.command(name="archive_forum", description="Set the forum that receives closed cases of a kind.")
    async def archive_forum(self, ctx: commands.Context[CaseBot], kind: str, forum: discord.ForumChannel) -> None:
        await self._assert_admin(ctx)
        case_kind = _parse_kind(kind)
        await self.bot.archive_config_repo.upsert(
            guild_id=ctx.guild.id,  # type: ignore[union-attr]
            kind=case_kind,
            forum_id=forum.id,
            updated_by_id=ctx.author.id,
        )
        await ctx.reply(
            embed=success_embed(f"Closed {case_kind.value}s will be archived in {forum.mention}."),
            mention_author=False,
        )

    @admin.command(name="staff_role_add", description="Add a staff role that can see new cases.")
    async def staff_role_add(self, ctx: commands.Context[CaseBot], role: discord.Role) -> None:
        await self._assert_admin(ctx)
        await self.bot.staff_role_repo.add(ctx.guild.id, role.id)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed(f"{role.mention} added as staff."), mention_author=False)

    @admin.command(name="staff_role_remove", description="Remove a staff role.")
    async def staff_role_remove(self, ctx: commands.Context[CaseBot], role: discord.Role) -> None:
        await self._assert_admin(ctx)
        await self.bot.staff_role_repo.remove(ctx.guild.id, role.id)  # type: ignore[union-attr]
        await ctx.reply(embed=success_embed(f"{role.mention} removed from staff."), mention_author=False)

    @admin.command(name="type_upsert", description="Create or update a custom case type.")
    async def type_upsert(
        self,
        ctx: commands.Context[CaseBot],
        type_id: str,
        display_name: str,
        emoji: str | None = None,
        active: bool = True,
        sort_order: int = 0,
    ) -> None:
        await self._assert_admin(ctx)
        key = type_id.strip().lower()
        if not TYPE_ID_RE.match(key):
            raise ValidationError("Type ids use lowercase letters, digits and underscores (max 32).")
        case_type = CustomCaseType(
            guild_id=ctx.guild.id,  # type: ignore[union-attr]
            type_id=key,
            display_name=display_name.strip()[:100],
            emoji=emoji.strip() if emoji else None,
            is_active=active,
            sort_order=sort_order,
        )
        await self.bot.case_type_repo.upsert(case_type)
        await ctx.reply(embed=success_embed(f"Type `{case_type.type_id}` saved."), mention_author=False)

    @admin.command(name="type_list", description="List custom case types.")
    async def type_list(self, ctx: commands.Context[CaseBot]) -> None:
        await self._assert_admin(ctx)
        types = await self.bot.case_type_repo.list_by_guild(ctx.guild.id)  # type: ignore[union-attr]
        if not types:
            await ctx.reply(embed=success_embed("No custom types configured."), mention_author=False)
            return
        lines = [
            f"`{t.type_id}` | {t.emoji or ''} {t.display_name} | active:{t.is_active}"
            for t in types
        ]
        await ctx.reply(embed=make_embed("Custom Case Types", "\n".join(lines)), mention_author=False)

    @admin.command(name="reload", description="Reload all enabled extensions.")
    async def reload(self, ctx: commands.Context[CaseBot]) -> None:
        await self._assert_admin(ctx)
        failed = await reload_extensions(self.bot, self.bot.config.enabled_extensions)
        if failed:
            raise ValidationError(f"Failed to reload: {', '.join(failed)}")
        await ctx.reply(embed=success_embed("Extensions reloaded."), mention_author=False)


async def setup(bot: CaseBot) -> None:
    await bot.add_cog(AdminCog(bot))
