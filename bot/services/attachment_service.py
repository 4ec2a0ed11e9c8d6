from __future__ import annotations

import asyncio
import logging
import zipfile
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import aiohttp

from core.config import ArchiveConfig
from services.remote import CapturedAttachment, CapturedMessage

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class ZipArtifact:
    path: Path
    entry_count: int
    skipped: list[str] = field(default_factory=list)


def select_images(messages: Iterable[CapturedMessage]) -> list[CapturedAttachment]:
    return [
        attachment
        for message in messages
        for attachment in message.attachments
        if (attachment.content_type or "").lower().startswith("image/")
    ]


class AttachmentService:
    def __init__(self, config: ArchiveConfig) -> None:
        self.config = config
        self.base_dir = Path(config.temp_directory)

    def bundle_path(self, channel_id: int) -> Path:
        return self.base_dir / f"attachments_{channel_id}.zip"

    async def bundle(self, channel_id: int, messages: Iterable[CapturedMessage]) -> ZipArtifact | None:
        images = select_images(messages)
        if not images:
            return None

        downloaded: list[tuple[str, bytes]] = []
        skipped: list[str] = []
        timeout = aiohttp.ClientTimeout(total=self.config.download_timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for index, attachment in enumerate(images, start=1):
                try:
                    payload = await self._download(session, attachment)
                except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                    LOGGER.warning(
                        "Skipping attachment %s from channel %s: %s",
                        attachment.filename,
                        channel_id,
                        exc,
                        extra={"channel_id": channel_id},
                    )
                    skipped.append(attachment.filename)
                    continue
                downloaded.append((f"{index:03d}_{attachment.filename}", payload))

        if not downloaded:
            return None

        path = self.bundle_path(channel_id)
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for entry_name, payload in downloaded:
                    archive.writestr(entry_name, payload)
        except (OSError, zipfile.BadZipFile) as exc:
            LOGGER.warning("Could not write attachment bundle for channel %s: %s", channel_id, exc)
            path.unlink(missing_ok=True)
            return None

        return ZipArtifact(path=path, entry_count=len(downloaded), skipped=skipped)

    async def _download(self, session: aiohttp.ClientSession, attachment: CapturedAttachment) -> bytes:
        async with session.get(attachment.url) as response:
            response.raise_for_status()
            return await response.read()
