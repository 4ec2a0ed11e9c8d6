from __future__ import annotations

import logging

import discord
from discord import app_commands
from discord.ext import commands

from core.bot import CaseBot
from core.errors import ValidationError
from database.models import CaseKind, CaseRecord
from services.case_service import CloseOutcome
from utils.embeds import case_embed, error_embed, make_embed, success_embed

LOGGER = logging.getLogger(__name__)


class CasesCog(commands.Cog):
    def __init__(self, bot: CaseBot) -> None:
        self.bot = bot

    async def _current_case(self, ctx: commands.Context[CaseBot]) -> CaseRecord:
        if not ctx.guild:
            raise ValidationError("Guild context is required.")
        return await self.bot.case_service.get_case_for_channel(ctx.guild.id, ctx.channel.id)

    async def _open(self, ctx: commands.Context[CaseBot], kind: CaseKind, type_id: str | None) -> None:
        if not ctx.guild or not isinstance(ctx.author, discord.Member):
            raise ValidationError("Guild context is required.")
        await ctx.defer(ephemeral=True)
        record = await self.bot.case_service.start_case(
            guild_id=ctx.guild.id,
            kind=kind,
            created_by=ctx.author.id,
            username=ctx.author.name,
            type_id=type_id,
        )
        await ctx.reply(
            embed=success_embed(f"{kind.value.title()} created: <#{record.channel_id}>"),
            mention_author=False,
            ephemeral=True,
        )

    async def _type_choices(self, interaction: discord.Interaction, current: str) -> list[app_commands.Choice[str]]:
        if not interaction.guild:
            return []
        types = await self.bot.type_resolver.list_types(interaction.guild.id)
        needle = current.lower()
        return [
            app_commands.Choice(name=f"{t.emoji} {t.display_name}" if t.emoji else t.display_name, value=t.type_id)
            for t in types
            if needle in t.type_id or needle in t.display_name.lower()
        ][:25]

    @commands.hybrid_group(name="ticket", with_app_command=True, description="Ticket command group.")
    async def ticket(self, ctx: commands.Context[CaseBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed(
                    "Ticket Commands",
                    "`/ticket open <type>` to open\n"
                    "`/ticket close` to archive and close\n"
                    "`/ticket adminonly` to hide from staff\n"
                    "`/ticket info` for details",
                ),
                mention_author=False,
            )

    @ticket.command(name="open", description="Open a private support ticket.")
    @app_commands.describe(type_id="What the ticket is about")
    async def ticket_open(self, ctx: commands.Context[CaseBot], type_id: str) -> None:
        await self._open(ctx, CaseKind.TICKET, type_id)

    @ticket_open.autocomplete("type_id")
    async def ticket_open_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        return await self._type_choices(interaction, current)

    @ticket.command(name="close", description="Archive and close the current case.")
    async def ticket_close(self, ctx: commands.Context[CaseBot]) -> None:
        case = await self._current_case(ctx)
        await ctx.defer(ephemeral=True)
        result = await self.bot.case_service.request_close(case.guild_id, case.id, ctx.author.id)
        if result.outcome is CloseOutcome.ALREADY_CLOSED:
            await ctx.reply(embed=error_embed("This case is already being closed."), ephemeral=True)
            return
        if not result.channel_deleted:
            await ctx.reply(
                embed=success_embed("Case archived. The channel could not be removed, delete it manually."),
                ephemeral=True,
            )
            return
        try:
            await ctx.reply(embed=success_embed("Case archived and closed."), ephemeral=True)
        except discord.HTTPException as exc:
            # The reply target usually went away with the channel.
            LOGGER.info("Close confirmation for case %s not delivered: %s", case.id, exc)

    @ticket.command(name="adminonly", description="Hide this ticket from staff roles.")
    async def ticket_admin_only(self, ctx: commands.Context[CaseBot]) -> None:
        case = await self._current_case(ctx)
        await ctx.defer(ephemeral=True)
        await self.bot.case_service.request_admin_only(case.guild_id, case.id, ctx.author.id)
        await ctx.reply(
            embed=success_embed("Staff access removed. Only administrators can see this ticket now."),
            ephemeral=True,
        )

    @ticket.command(name="info", description="Show the case for this channel.")
    async def ticket_info(self, ctx: commands.Context[CaseBot]) -> None:
        case = await self._current_case(ctx)
        await ctx.reply(embed=case_embed(case), mention_author=False)

    @ticket.command(name="types", description="List ticket types available in this server.")
    async def ticket_types(self, ctx: commands.Context[CaseBot]) -> None:
        if not ctx.guild:
            raise ValidationError("Guild context is required.")
        types = await self.bot.type_resolver.list_types(ctx.guild.id)
        lines = [f"{t.emoji or '•'} `{t.type_id}` {t.display_name}" for t in types]
        await ctx.reply(embed=make_embed("Ticket Types", "\n".join(lines)), mention_author=False)

    @commands.hybrid_group(name="application", with_app_command=True, description="Application command group.")
    async def application(self, ctx: commands.Context[CaseBot]) -> None:
        if ctx.invoked_subcommand is None:
            await ctx.reply(
                embed=make_embed("Application Commands", "`/application open [type]` to apply"),
                mention_author=False,
            )

    @application.command(name="open", description="Open a private application channel.")
    @app_commands.describe(type_id="Optional application type")
    async def application_open(self, ctx: commands.Context[CaseBot], type_id: str | None = None) -> None:
        await self._open(ctx, CaseKind.APPLICATION, type_id)

    @application_open.autocomplete("type_id")
    async def application_open_autocomplete(
        self, interaction: discord.Interaction, current: str
    ) -> list[app_commands.Choice[str]]:
        return await self._type_choices(interaction, current)


async def setup(bot: CaseBot) -> None:
    await bot.add_cog(CasesCog(bot))
