from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import discord

from core.errors import BotError, send_error_response
from services.case_service import CloseOutcome
from utils.embeds import error_embed, success_embed

if TYPE_CHECKING:
    from core.bot import CaseBot

LOGGER = logging.getLogger(__name__)


async def _followup(interaction: discord.Interaction, embed: discord.Embed) -> None:
    # The channel may already be gone or the token expired; the close still stands.
    try:
        await interaction.followup.send(embed=embed, ephemeral=True)
    except discord.HTTPException as exc:
        LOGGER.info("Could not send follow-up for interaction %s: %s", interaction.id, exc)


class CaseControlsView(discord.ui.View):
    """Persistent controls under a case welcome message.

    One instance is registered at startup and serves every case message; the
    case is looked up from the channel the button was pressed in.
    """

    def __init__(self, bot: CaseBot, allow_admin_only: bool = True) -> None:
        super().__init__(timeout=None)
        self.bot = bot
        if not allow_admin_only:
            self.remove_item(self.admin_only_button)

    @discord.ui.button(
        label="Close",
        style=discord.ButtonStyle.danger,
        emoji="🔒",
        custom_id="case:close",
    )
    async def close_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        if not interaction.guild or interaction.channel_id is None:
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        case = await self.bot.case_service.get_case_for_channel(interaction.guild.id, interaction.channel_id)
        result = await self.bot.case_service.request_close(interaction.guild.id, case.id, interaction.user.id)
        if result.outcome is CloseOutcome.ALREADY_CLOSED:
            await _followup(interaction, error_embed("This case is already being closed."))
            return
        await _followup(interaction, success_embed("Case archived and closed."))

    @discord.ui.button(
        label="Admin Only",
        style=discord.ButtonStyle.secondary,
        emoji="🛡️",
        custom_id="case:admin_only",
    )
    async def admin_only_button(self, interaction: discord.Interaction, _: discord.ui.Button) -> None:
        if not interaction.guild or interaction.channel_id is None:
            await interaction.response.send_message(embed=error_embed("Guild context is required."), ephemeral=True)
            return
        await interaction.response.defer(ephemeral=True, thinking=True)
        case = await self.bot.case_service.get_case_for_channel(interaction.guild.id, interaction.channel_id)
        await self.bot.case_service.request_admin_only(interaction.guild.id, case.id, interaction.user.id)
        await _followup(interaction, success_embed("Staff access removed. Only administrators can see this ticket now."))

    async def on_error(
        self, interaction: discord.Interaction, error: Exception, item: discord.ui.Item[discord.ui.View]
    ) -> None:
        if isinstance(error, BotError):
            message = error.user_message
        else:
            LOGGER.exception("Case control %s failed", getattr(item, "custom_id", None), exc_info=error)
            message = "Action failed due to an unexpected error."
        try:
            await send_error_response(interaction, message)
        except discord.HTTPException as exc:
            LOGGER.info("Could not report error for interaction %s: %s", interaction.id, exc)
