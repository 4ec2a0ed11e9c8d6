from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from core.config import ArchiveConfig
from core.errors import TranscriptCaptureError
from services.remote import CapturedMessage, CaseRemote
from utils.time import to_iso, utc_now

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class TranscriptArtifact:
    channel_id: int
    path: Path
    messages: list[CapturedMessage]
    captured_at: datetime


class TranscriptService:
    def __init__(self, config: ArchiveConfig, remote: CaseRemote) -> None:
        self.config = config
        self.remote = remote
        self.base_dir = Path(config.temp_directory)

    def transcript_path(self, channel_id: int) -> Path:
        return self.base_dir / f"{channel_id}.txt"

    async def capture(self, channel_id: int) -> TranscriptArtifact:
        """Write the full history of a channel to ``<temp>/<channel_id>.txt``.

        History is paged backwards until an empty page comes back, then put in
        chronological order. The interaction that triggered the capture must
        already be acknowledged since this can take a while on busy channels.
        """
        path = self.transcript_path(channel_id)
        captured_at = utc_now()
        try:
            messages = await self._fetch_all(channel_id)
            self.base_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(self._build_text(captured_at, messages), encoding="utf-8")
        except Exception as exc:
            LOGGER.warning("Transcript capture failed for channel %s", channel_id, exc_info=exc)
            path.unlink(missing_ok=True)
            raise TranscriptCaptureError() from exc

        LOGGER.info(
            "Captured %s messages from channel %s",
            len(messages),
            channel_id,
            extra={"channel_id": channel_id},
        )
        return TranscriptArtifact(channel_id=channel_id, path=path, messages=messages, captured_at=captured_at)

    async def _fetch_all(self, channel_id: int) -> list[CapturedMessage]:
        collected: list[CapturedMessage] = []
        before: int | None = None
        while True:
            page = await self.remote.fetch_messages(channel_id, self.config.history_page_size, before)
            if not page:
                break
            collected.extend(page)
            before = page[-1].id
        collected.reverse()
        return collected

    @staticmethod
    def _build_text(captured_at: datetime, messages: Iterable[CapturedMessage]) -> str:
        lines = [to_iso(captured_at) or ""]
        for msg in messages:
            lines.append(f"[{msg.author}]: {msg.content}")
        return "\n".join(lines) + "\n"
