from __future__ import annotations

from datetime import UTC, datetime

import discord

from database.models import CaseRecord
from utils.constants import CASE_STATUS_LABELS


def make_embed(
    title: str,
    description: str,
    color: discord.Color | None = None,
    footer: str | None = None,
) -> discord.Embed:
    resolved_color = color if color is not None else discord.Color.blurple()
    embed = discord.Embed(
        title=title,
        description=description,
        color=resolved_color,
        timestamp=datetime.now(UTC),
    )
    if footer:
        embed.set_footer(text=footer)
    return embed


def success_embed(message: str) -> discord.Embed:
    return make_embed(title="Success", description=message, color=discord.Color.green())


def error_embed(message: str) -> discord.Embed:
    return make_embed(title="Error", description=message, color=discord.Color.red())


STATUS_COLORS = {
    "created": discord.Color.light_grey(),
    "opened": discord.Color.green(),
    "adminOnly": discord.Color.orange(),
    "closing": discord.Color.gold(),
    "closed": discord.Color.dark_grey(),
}


def case_embed(case: CaseRecord) -> discord.Embed:
    status = case.status.value
    embed = make_embed(
        title=f"{case.kind.value.title()} #{case.case_number}",
        description=f"Opened by <@{case.created_by}>",
        color=STATUS_COLORS.get(status),
        footer=f"Case {case.id}",
    )
    embed.add_field(name="Status", value=CASE_STATUS_LABELS.get(status, status), inline=True)
    embed.add_field(name="Type", value=f"`{case.type_id}`" if case.type_id else "n/a", inline=True)
    return embed
