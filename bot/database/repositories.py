from __future__ import annotations

import json
from typing import Any
from uuid import uuid4

from database.base import Database
from database.models import (
    ArchiveForumConfig,
    ArchiveRecord,
    CaseKind,
    CaseRecord,
    CaseStatus,
    CustomCaseType,
    ForumTagMapping,
)


def _json_load(value: str | None, default: Any) -> Any:
    if value is None:
        return default
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return default


def _json_dump(value: Any) -> str:
    return json.dumps(value, ensure_ascii=True, separators=(",", ":"))


def _optional_int(value: Any) -> int | None:
    return int(value) if value is not None else None


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


class GuildRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def ensure_guild(self, guild_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO guild_settings(guild_id)
            VALUES (?)
            ON CONFLICT(guild_id) DO NOTHING;
            """,
            [guild_id],
        )

    async def next_case_number(self, guild_id: int) -> int:
        await self.ensure_guild(guild_id)
        await self.db.execute(
            """
            UPDATE guild_settings
            SET case_counter = case_counter + 1, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ?;
            """,
            [guild_id],
        )
        row = await self.db.fetchone(
            "SELECT case_counter FROM guild_settings WHERE guild_id = ?;",
            [guild_id],
        )
        return int(row["case_counter"]) if row else 1


class CaseRepository:
    """Case rows. Every lookup and status change is scoped by ``guild_id``.

    Status changes are compare-and-set: they only apply when the stored status
    still equals the expected one, and report whether a row was changed.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(self, case: CaseRecord) -> None:
        await self.db.execute(
            """
            INSERT INTO cases(
                id, case_number, guild_id, kind, channel_id, message_id,
                created_by, type_id, status
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?);
            """,
            [
                case.id,
                case.case_number,
                case.guild_id,
                case.kind.value,
                case.channel_id,
                case.message_id,
                case.created_by,
                case.type_id,
                case.status.value,
            ],
        )

    async def get(self, guild_id: int, case_id: str) -> CaseRecord | None:
        row = await self.db.fetchone(
            "SELECT * FROM cases WHERE guild_id = ? AND id = ?;",
            [guild_id, case_id],
        )
        if not row:
            return None
        return self._row_to_case(row)

    async def get_by_channel(self, guild_id: int, channel_id: int) -> CaseRecord | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM cases
            WHERE guild_id = ? AND channel_id = ?
            ORDER BY created_at DESC
            LIMIT 1;
            """,
            [guild_id, channel_id],
        )
        if not row:
            return None
        return self._row_to_case(row)

    async def mark_opened(self, guild_id: int, case_id: str, channel_id: int, message_id: int) -> bool:
        changed = await self.db.execute(
            """
            UPDATE cases
            SET status = ?, channel_id = ?, message_id = ?, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ? AND id = ? AND status = ?;
            """,
            [CaseStatus.OPENED.value, channel_id, message_id, guild_id, case_id, CaseStatus.CREATED.value],
        )
        return changed > 0

    async def transition(
        self, guild_id: int, case_id: str, expected: CaseStatus, target: CaseStatus
    ) -> bool:
        changed = await self.db.execute(
            """
            UPDATE cases
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ? AND id = ? AND status = ?;
            """,
            [target.value, guild_id, case_id, expected.value],
        )
        return changed > 0

    async def begin_close(self, guild_id: int, case_id: str, expected: CaseStatus) -> bool:
        changed = await self.db.execute(
            """
            UPDATE cases
            SET status = ?, pre_close_status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ? AND id = ? AND status = ?;
            """,
            [CaseStatus.CLOSING.value, expected.value, guild_id, case_id, expected.value],
        )
        return changed > 0

    async def abort_close(self, guild_id: int, case_id: str) -> bool:
        changed = await self.db.execute(
            """
            UPDATE cases
            SET status = COALESCE(pre_close_status, ?), pre_close_status = NULL,
                updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ? AND id = ? AND status = ?;
            """,
            [CaseStatus.OPENED.value, guild_id, case_id, CaseStatus.CLOSING.value],
        )
        return changed > 0

    async def finish_close(self, guild_id: int, case_id: str) -> bool:
        changed = await self.db.execute(
            """
            UPDATE cases
            SET status = ?, pre_close_status = NULL, closed_at = CURRENT_TIMESTAMP,
                updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ? AND id = ? AND status = ?;
            """,
            [CaseStatus.CLOSED.value, guild_id, case_id, CaseStatus.CLOSING.value],
        )
        return changed > 0

    async def delete(self, guild_id: int, case_id: str) -> None:
        await self.db.execute(
            "DELETE FROM cases WHERE guild_id = ? AND id = ?;",
            [guild_id, case_id],
        )

    async def list_interrupted_closes(self) -> list[CaseRecord]:
        rows = await self.db.fetchall(
            "SELECT * FROM cases WHERE status = ? ORDER BY updated_at ASC;",
            [CaseStatus.CLOSING.value],
        )
        return [self._row_to_case(row) for row in rows]

    def _row_to_case(self, row: dict[str, Any]) -> CaseRecord:
        pre_close = row.get("pre_close_status")
        return CaseRecord(
            id=row["id"],
            case_number=int(row["case_number"]),
            guild_id=int(row["guild_id"]),
            kind=CaseKind(row["kind"]),
            created_by=int(row["created_by"]),
            type_id=row["type_id"],
            status=CaseStatus(row["status"]),
            channel_id=_optional_int(row["channel_id"]),
            message_id=_optional_int(row["message_id"]),
            pre_close_status=CaseStatus(pre_close) if pre_close else None,
            created_at=_str_or_none(row["created_at"]),
            updated_at=_str_or_none(row["updated_at"]),
            closed_at=_str_or_none(row["closed_at"]),
        )


class ArchiveRepository:
    """Per-(guild, kind, user) archive threads.

    The ``uq_archive_records_owner`` unique index is the authority for the
    one-record-per-owner rule; ``save`` reports whether it won.
    """

    def __init__(self, db: Database) -> None:
        self.db = db

    async def find_one(self, guild_id: int, kind: CaseKind, created_by: int) -> ArchiveRecord | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM archive_records
            WHERE guild_id = ? AND kind = ? AND created_by = ?;
            """,
            [guild_id, kind.value, created_by],
        )
        if not row:
            return None
        return self._row_to_record(row)

    async def save(self, record: ArchiveRecord) -> bool:
        inserted = await self.db.execute(
            """
            INSERT INTO archive_records(id, guild_id, kind, created_by, thread_id, forum_id, type_id, tag_ids_json)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id, kind, created_by) DO NOTHING;
            """,
            [
                record.id or str(uuid4()),
                record.guild_id,
                record.kind.value,
                record.created_by,
                record.thread_id,
                record.forum_id,
                record.type_id,
                _json_dump(list(record.tag_ids)),
            ],
        )
        return inserted > 0

    async def update_tags(
        self,
        guild_id: int,
        record_id: str,
        expected: list[int],
        tag_ids: list[int],
        type_id: str | None,
    ) -> bool:
        """Replace the tag set only if it still equals ``expected``."""
        changed = await self.db.execute(
            """
            UPDATE archive_records
            SET tag_ids_json = ?, type_id = COALESCE(?, type_id), updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ? AND id = ? AND tag_ids_json = ?;
            """,
            [_json_dump(tag_ids), type_id, guild_id, record_id, _json_dump(expected)],
        )
        return changed > 0

    async def repoint(
        self, guild_id: int, record_id: str, expected_thread_id: int, thread_id: int, forum_id: int
    ) -> bool:
        """Move a record to a new thread; tags belong to the old forum and are dropped."""
        changed = await self.db.execute(
            """
            UPDATE archive_records
            SET thread_id = ?, forum_id = ?, type_id = NULL, tag_ids_json = '[]', updated_at = CURRENT_TIMESTAMP
            WHERE guild_id = ? AND id = ? AND thread_id = ?;
            """,
            [thread_id, forum_id, guild_id, record_id, expected_thread_id],
        )
        return changed > 0

    async def count_for_owner(self, guild_id: int, kind: CaseKind, created_by: int) -> int:
        row = await self.db.fetchone(
            """
            SELECT COUNT(*) AS count FROM archive_records
            WHERE guild_id = ? AND kind = ? AND created_by = ?;
            """,
            [guild_id, kind.value, created_by],
        )
        return int(row["count"]) if row else 0

    def _row_to_record(self, row: dict[str, Any]) -> ArchiveRecord:
        return ArchiveRecord(
            id=row["id"],
            guild_id=int(row["guild_id"]),
            kind=CaseKind(row["kind"]),
            created_by=int(row["created_by"]),
            thread_id=int(row["thread_id"]),
            forum_id=int(row["forum_id"]),
            type_id=row["type_id"],
            tag_ids=[int(x) for x in _json_load(row["tag_ids_json"], [])],
            created_at=_str_or_none(row["created_at"]),
            updated_at=_str_or_none(row["updated_at"]),
        )


class ArchiveConfigRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, guild_id: int, kind: CaseKind) -> ArchiveForumConfig | None:
        row = await self.db.fetchone(
            "SELECT * FROM archive_configs WHERE guild_id = ? AND kind = ?;",
            [guild_id, kind.value],
        )
        if not row:
            return None
        return ArchiveForumConfig(
            guild_id=int(row["guild_id"]),
            kind=CaseKind(row["kind"]),
            forum_id=int(row["forum_id"]),
        )

    async def upsert(self, guild_id: int, kind: CaseKind, forum_id: int, updated_by_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO archive_configs(guild_id, kind, forum_id, updated_by_id)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(guild_id, kind) DO UPDATE SET
                forum_id = excluded.forum_id,
                updated_by_id = excluded.updated_by_id,
                updated_at = CURRENT_TIMESTAMP;
            """,
            [guild_id, kind.value, forum_id, updated_by_id],
        )

    async def clear_forum(self, guild_id: int, forum_id: int) -> int:
        return await self.db.execute(
            "DELETE FROM archive_configs WHERE guild_id = ? AND forum_id = ?;",
            [guild_id, forum_id],
        )


class ForumTagRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, guild_id: int, forum_id: int, type_id: str) -> ForumTagMapping | None:
        row = await self.db.fetchone(
            """
            SELECT * FROM forum_tags
            WHERE guild_id = ? AND forum_id = ? AND type_id = ?;
            """,
            [guild_id, forum_id, type_id],
        )
        if not row:
            return None
        return ForumTagMapping(
            guild_id=int(row["guild_id"]),
            forum_id=int(row["forum_id"]),
            type_id=row["type_id"],
            remote_tag_id=int(row["remote_tag_id"]),
            display_name=row["display_name"],
            emoji=row["emoji"],
        )

    async def upsert(self, mapping: ForumTagMapping) -> None:
        await self.db.execute(
            """
            INSERT INTO forum_tags(guild_id, forum_id, type_id, remote_tag_id, display_name, emoji)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(forum_id, type_id) DO UPDATE SET
                remote_tag_id = excluded.remote_tag_id,
                display_name = excluded.display_name,
                emoji = excluded.emoji,
                updated_at = CURRENT_TIMESTAMP;
            """,
            [
                mapping.guild_id,
                mapping.forum_id,
                mapping.type_id,
                mapping.remote_tag_id,
                mapping.display_name,
                mapping.emoji,
            ],
        )


class CaseTypeRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def upsert(self, case_type: CustomCaseType) -> None:
        await self.db.execute(
            """
            INSERT INTO custom_case_types(guild_id, type_id, display_name, emoji, is_active, sort_order)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(guild_id, type_id) DO UPDATE SET
                display_name = excluded.display_name,
                emoji = excluded.emoji,
                is_active = excluded.is_active,
                sort_order = excluded.sort_order,
                updated_at = CURRENT_TIMESTAMP;
            """,
            [
                case_type.guild_id,
                case_type.type_id,
                case_type.display_name,
                case_type.emoji,
                case_type.is_active,
                case_type.sort_order,
            ],
        )

    async def get(self, guild_id: int, type_id: str) -> CustomCaseType | None:
        row = await self.db.fetchone(
            "SELECT * FROM custom_case_types WHERE guild_id = ? AND type_id = ?;",
            [guild_id, type_id],
        )
        if not row:
            return None
        return self._row_to_type(row)

    async def list_by_guild(self, guild_id: int) -> list[CustomCaseType]:
        rows = await self.db.fetchall(
            """
            SELECT * FROM custom_case_types
            WHERE guild_id = ?
            ORDER BY sort_order ASC, type_id ASC;
            """,
            [guild_id],
        )
        return [self._row_to_type(row) for row in rows]

    def _row_to_type(self, row: dict[str, Any]) -> CustomCaseType:
        return CustomCaseType(
            guild_id=int(row["guild_id"]),
            type_id=row["type_id"],
            display_name=row["display_name"],
            emoji=row["emoji"],
            is_active=bool(row["is_active"]),
            sort_order=int(row["sort_order"]),
        )


class StaffRoleRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(self, guild_id: int, role_id: int) -> None:
        await self.db.execute(
            """
            INSERT INTO staff_roles(guild_id, role_id)
            VALUES (?, ?)
            ON CONFLICT(guild_id, role_id) DO NOTHING;
            """,
            [guild_id, role_id],
        )

    async def remove(self, guild_id: int, role_id: int) -> None:
        await self.db.execute(
            "DELETE FROM staff_roles WHERE guild_id = ? AND role_id = ?;",
            [guild_id, role_id],
        )

    async def list_role_ids(self, guild_id: int) -> list[int]:
        rows = await self.db.fetchall(
            "SELECT role_id FROM staff_roles WHERE guild_id = ? ORDER BY role_id ASC;",
            [guild_id],
        )
        return [int(row["role_id"]) for row in rows]
