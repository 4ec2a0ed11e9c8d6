from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from uuid import uuid4

from core.config import AppConfig
from core.errors import (
    ArchiveConfigMissingError,
    CaseNotFoundError,
    CaseStateError,
    PermissionDeniedError,
    ValidationError,
)
from database.models import (
    ArchiveForumConfig,
    ArchiveRecord,
    CaseKind,
    CaseRecord,
    CaseStatus,
    can_transition,
)
from database.repositories import (
    ArchiveConfigRepository,
    CaseRepository,
    GuildRepository,
    StaffRoleRepository,
)
from services.archive_service import ArchiveService
from services.attachment_service import AttachmentService
from services.remote import CaseRemote
from services.transcript_service import TranscriptService
from services.type_resolver import TypeResolver
from utils.constants import CLOSE_REASON

LOGGER = logging.getLogger(__name__)


class CloseOutcome(str, Enum):
    CLOSED = "closed"
    ALREADY_CLOSED = "already_closed"


@dataclass(slots=True)
class CloseResult:
    outcome: CloseOutcome
    case: CaseRecord
    archive: ArchiveRecord | None = None
    channel_deleted: bool = False


@dataclass(slots=True)
class CaseServiceDeps:
    guild_repo: GuildRepository
    case_repo: CaseRepository
    archive_config_repo: ArchiveConfigRepository
    staff_role_repo: StaffRoleRepository
    type_resolver: TypeResolver
    transcripts: TranscriptService
    attachments: AttachmentService
    archives: ArchiveService
    remote: CaseRemote


class CaseService:
    def __init__(self, config: AppConfig, deps: CaseServiceDeps) -> None:
        self.config = config
        self.deps = deps

    @staticmethod
    def sanitize_channel_fragment(name: str) -> str:
        name = name.strip().lower()
        name = re.sub(r"[^a-z0-9-]+", "-", name)
        name = re.sub(r"-{2,}", "-", name).strip("-")
        return name[:32] or "user"

    def build_channel_name(self, case_number: int, type_key: str, username: str) -> str:
        return (
            f"{case_number}-{self.sanitize_channel_fragment(type_key)}-{self.sanitize_channel_fragment(username)}"
        )[:95]

    async def start_case(
        self,
        guild_id: int,
        kind: CaseKind,
        created_by: int,
        username: str,
        type_id: str | None,
    ) -> CaseRecord:
        type_key = type_id.strip().lower() if type_id else None
        if type_key:
            descriptor = await self.deps.type_resolver.resolve_type(guild_id, type_key)
            if descriptor is None and kind is CaseKind.TICKET:
                raise ValidationError(f"`{type_key}` is not an available ticket type.")
        elif kind is CaseKind.TICKET:
            raise ValidationError("A ticket type is required.")

        case_number = await self.deps.guild_repo.next_case_number(guild_id)
        record = CaseRecord(
            id=str(uuid4()),
            case_number=case_number,
            guild_id=guild_id,
            kind=kind,
            created_by=created_by,
            type_id=type_key,
            status=CaseStatus.CREATED,
        )
        await self.deps.case_repo.create(record)

        channel_name = self.build_channel_name(case_number, type_key or kind.value, username)
        staff_role_ids = await self.deps.staff_role_repo.list_role_ids(guild_id)
        try:
            handle = await self.deps.remote.create_case_channel(
                guild_id=guild_id,
                kind=kind,
                name=channel_name,
                owner_id=created_by,
                staff_role_ids=staff_role_ids,
            )
        except Exception:
            LOGGER.warning(
                "Channel creation failed for %s %s, discarding case",
                kind.value,
                record.id,
                extra={"guild_id": guild_id, "case_id": record.id},
            )
            await self.deps.case_repo.delete(guild_id, record.id)
            raise

        if not await self.deps.case_repo.mark_opened(guild_id, record.id, handle.channel_id, handle.message_id):
            raise CaseStateError()
        LOGGER.info(
            "Opened %s #%s for user %s",
            kind.value,
            case_number,
            created_by,
            extra={"guild_id": guild_id, "case_id": record.id, "channel_id": handle.channel_id},
        )
        return await self._require_case(guild_id, record.id)

    async def get_case_for_channel(self, guild_id: int, channel_id: int) -> CaseRecord:
        case = await self.deps.case_repo.get_by_channel(guild_id, channel_id)
        if not case:
            raise CaseNotFoundError()
        return case

    async def request_close(self, guild_id: int, case_id: str, requester_id: int) -> CloseResult:
        """Archive a case and tear down its channel.

        Runs at most once per case: the ``closing`` status is claimed with a
        compare-and-set before any remote work starts, and a caller that loses
        that race gets ``ALREADY_CLOSED``. On failure the previous status is
        restored and the error propagates. Temp artifacts are always removed.
        """
        case = await self._require_case(guild_id, case_id)
        if case.status in (CaseStatus.CLOSED, CaseStatus.CLOSING):
            return CloseResult(outcome=CloseOutcome.ALREADY_CLOSED, case=case)
        if not can_transition(case.kind, case.status, CaseStatus.CLOSING) or case.channel_id is None:
            raise CaseStateError()

        archive_config = await self.deps.archive_config_repo.get(guild_id, case.kind)
        if archive_config is None:
            LOGGER.info(
                "Close of %s %s refused, no archive forum configured",
                case.kind.value,
                case.id,
                extra={"guild_id": guild_id, "case_id": case.id},
            )
            raise ArchiveConfigMissingError()

        if not await self.deps.case_repo.begin_close(guild_id, case.id, case.status):
            return CloseResult(outcome=CloseOutcome.ALREADY_CLOSED, case=case)

        log_extra = {"guild_id": guild_id, "case_id": case.id, "channel_id": case.channel_id}
        LOGGER.info("Closing %s %s requested by %s", case.kind.value, case.id, requester_id, extra=log_extra)
        try:
            try:
                archive = await self._archive_case(case, archive_config)
            except Exception:
                await self.deps.case_repo.abort_close(guild_id, case.id)
                LOGGER.warning("Close of case %s failed, status restored", case.id, extra=log_extra)
                raise

            try:
                await self.deps.case_repo.finish_close(guild_id, case.id)
            except Exception:
                await self.deps.case_repo.abort_close(guild_id, case.id)
                LOGGER.exception("Case %s archived but not marked closed, status restored", case.id, extra=log_extra)
                raise
            channel_deleted = True
            try:
                await self.deps.remote.delete_channel(case.channel_id, CLOSE_REASON)
            except Exception:
                LOGGER.error(
                    "Case %s archived but channel %s could not be deleted",
                    case.id,
                    case.channel_id,
                    exc_info=True,
                    extra=log_extra,
                )
                channel_deleted = False
        finally:
            self._cleanup_artifacts(case.channel_id)

        closed = await self._require_case(guild_id, case.id)
        return CloseResult(
            outcome=CloseOutcome.CLOSED,
            case=closed,
            archive=archive,
            channel_deleted=channel_deleted,
        )

    async def request_admin_only(self, guild_id: int, case_id: str, requester_id: int) -> CaseRecord:
        case = await self._require_case(guild_id, case_id)
        if case.kind is not CaseKind.TICKET:
            raise CaseStateError("Admin-only mode is only available for tickets.")
        if case.created_by != requester_id:
            raise PermissionDeniedError("Only the ticket creator can restrict it to admins.")
        if case.status is not CaseStatus.OPENED or case.channel_id is None or case.message_id is None:
            raise CaseStateError()

        for role_id in await self.deps.staff_role_repo.list_role_ids(guild_id):
            await self.deps.remote.revoke_role_view(case.channel_id, role_id)
        await self.deps.remote.strip_controls(case.channel_id, case.message_id, case.kind)

        if not await self.deps.case_repo.transition(guild_id, case.id, CaseStatus.OPENED, CaseStatus.ADMIN_ONLY):
            raise CaseStateError()
        LOGGER.info(
            "Ticket %s restricted to admins",
            case.id,
            extra={"guild_id": guild_id, "case_id": case.id, "channel_id": case.channel_id},
        )
        return await self._require_case(guild_id, case.id)

    async def recover_interrupted_closes(self) -> int:
        recovered = 0
        for case in await self.deps.case_repo.list_interrupted_closes():
            if await self.deps.case_repo.abort_close(case.guild_id, case.id):
                recovered += 1
                LOGGER.warning(
                    "Rolled back interrupted close of case %s to %s",
                    case.id,
                    (case.pre_close_status or CaseStatus.OPENED).value,
                    extra={"guild_id": case.guild_id, "case_id": case.id},
                )
            if case.channel_id is not None:
                self._cleanup_artifacts(case.channel_id)
        return recovered

    async def _archive_case(self, case: CaseRecord, archive_config: ArchiveForumConfig) -> ArchiveRecord:
        assert case.channel_id is not None
        transcript = await self.deps.transcripts.capture(case.channel_id)
        bundle = await self.deps.attachments.bundle(case.channel_id, transcript.messages)
        files: list[Path] = [transcript.path]
        if bundle is not None:
            files.append(bundle.path)

        descriptor = None
        if case.type_id:
            descriptor = await self.deps.type_resolver.resolve_type(case.guild_id, case.type_id)
        return await self.deps.archives.archive(
            guild_id=case.guild_id,
            kind=case.kind,
            created_by=case.created_by,
            forum_id=archive_config.forum_id,
            files=files,
            descriptor=descriptor,
        )

    def _cleanup_artifacts(self, channel_id: int) -> None:
        for path in (
            self.deps.transcripts.transcript_path(channel_id),
            self.deps.attachments.bundle_path(channel_id),
        ):
            try:
                path.unlink(missing_ok=True)
            except OSError:
                LOGGER.warning("Could not remove temp artifact %s", path, exc_info=True)

    async def _require_case(self, guild_id: int, case_id: str) -> CaseRecord:
        case = await self.deps.case_repo.get(guild_id, case_id)
        if not case:
            raise CaseNotFoundError()
        return case
