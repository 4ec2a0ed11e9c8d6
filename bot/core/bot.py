from __future__ import annotations

import logging
from pathlib import Path

import discord
from discord.ext import commands

from core.config import AppConfig
from core.errors import handle_app_command_error, handle_prefix_command_error
from core.extensions import load_extensions
from database.base import Database
from database.migrations.runner import run_migrations
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
from services.discord_remote import DiscordCaseRemote
from services.tag_service import TagService
from services.transcript_service import TranscriptService
from services.type_resolver import TypeResolver
from views.case_controls import CaseControlsView

LOGGER = logging.getLogger(__name__)


class CaseBot(commands.Bot):
    def __init__(self, config: AppConfig) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.members = True
        intents.messages = True
        intents.message_content = True

        super().__init__(
            command_prefix=config.discord.prefix,
            intents=intents,
            application_id=config.discord.application_id,
            allowed_mentions=discord.AllowedMentions(
                everyone=False,
                roles=False,
                users=True,
                replied_user=False,
            ),
            help_command=None,
        )
        self.config = config
        self.root_dir = Path(__file__).resolve().parent.parent
        self.database = Database(
            url=config.database.url,
            timeout_seconds=config.database.timeout_seconds,
            pool_min_size=config.database.pool_min_size,
            pool_max_size=config.database.pool_max_size,
        )

        # Repositories and services are initialized during setup_hook.
        self.guild_repo: GuildRepository
        self.case_repo: CaseRepository
        self.archive_repo: ArchiveRepository
        self.archive_config_repo: ArchiveConfigRepository
        self.forum_tag_repo: ForumTagRepository
        self.case_type_repo: CaseTypeRepository
        self.staff_role_repo: StaffRoleRepository

        self.remote: DiscordCaseRemote
        self.type_resolver: TypeResolver
        self.case_service: CaseService

    async def setup_hook(self) -> None:
        await self.database.connect()
        applied = await run_migrations(self.database, self.root_dir / "database" / "migrations")
        if applied:
            LOGGER.info("Applied %s migrations", len(applied))

        self.guild_repo = GuildRepository(self.database)
        self.case_repo = CaseRepository(self.database)
        self.archive_repo = ArchiveRepository(self.database)
        self.archive_config_repo = ArchiveConfigRepository(self.database)
        self.forum_tag_repo = ForumTagRepository(self.database)
        self.case_type_repo = CaseTypeRepository(self.database)
        self.staff_role_repo = StaffRoleRepository(self.database)

        archive_cfg = self.config.archive
        self.remote = DiscordCaseRemote(self)
        self.type_resolver = TypeResolver(self.case_type_repo)
        tag_service = TagService(archive_cfg, self.remote, self.forum_tag_repo)
        deps = CaseServiceDeps(
            guild_repo=self.guild_repo,
            case_repo=self.case_repo,
            archive_config_repo=self.archive_config_repo,
            staff_role_repo=self.staff_role_repo,
            type_resolver=self.type_resolver,
            transcripts=TranscriptService(archive_cfg, self.remote),
            attachments=AttachmentService(archive_cfg),
            archives=ArchiveService(archive_cfg, self.remote, self.archive_repo, tag_service),
            remote=self.remote,
        )
        self.case_service = CaseService(self.config, deps)

        recovered = await self.case_service.recover_interrupted_closes()
        if recovered:
            LOGGER.warning("Recovered %s interrupted case closes", recovered)

        self.add_view(CaseControlsView(self))
        await load_extensions(self, self.config.enabled_extensions)

        if self.config.discord.sync_commands_on_start:
            synced = await self.tree.sync()
            LOGGER.info("Synced %s application commands", len(synced))

        self.tree.on_error = handle_app_command_error  # type: ignore[assignment]

    async def on_ready(self) -> None:
        LOGGER.info("Bot ready as %s (%s)", self.user, self.user.id if self.user else "n/a")
        activity_type = self.config.discord.activity_type.lower()
        if activity_type == "playing":
            activity = discord.Game(name=self.config.discord.status_text)
        elif activity_type == "listening":
            activity = discord.Activity(
                type=discord.ActivityType.listening, name=self.config.discord.status_text
            )
        else:
            activity = discord.Activity(
                type=discord.ActivityType.watching, name=self.config.discord.status_text
            )
        await self.change_presence(status=discord.Status.online, activity=activity)

    async def on_command_error(self, ctx: commands.Context[commands.Bot], error: commands.CommandError) -> None:
        if ctx.command and ctx.command.has_error_handler():
            return
        await handle_prefix_command_error(ctx, error)

    async def close(self) -> None:
        await super().close()
        await self.database.close()
