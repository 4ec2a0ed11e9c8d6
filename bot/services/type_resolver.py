from __future__ import annotations

from database.models import TypeDescriptor
from database.repositories import CaseTypeRepository
from utils.constants import LEGACY_CASE_TYPES


class TypeResolver:
    """Resolves a case type id for a guild.

    Active custom types configured for the guild win; the built-in table is the
    fallback. Inactive custom types are ignored.
    """

    def __init__(self, case_types: CaseTypeRepository) -> None:
        self.case_types = case_types

    async def resolve_type(self, guild_id: int, type_id: str) -> TypeDescriptor | None:
        key = type_id.strip().lower()
        if not key:
            return None
        custom = await self.case_types.get(guild_id, key)
        if custom and custom.is_active:
            return TypeDescriptor(type_id=custom.type_id, display_name=custom.display_name, emoji=custom.emoji)
        return LEGACY_CASE_TYPES.get(key)

    async def list_types(self, guild_id: int) -> list[TypeDescriptor]:
        resolved: dict[str, TypeDescriptor] = dict(LEGACY_CASE_TYPES)
        for custom in await self.case_types.list_by_guild(guild_id):
            if custom.is_active:
                resolved[custom.type_id] = TypeDescriptor(
                    type_id=custom.type_id, display_name=custom.display_name, emoji=custom.emoji
                )
        return list(resolved.values())
