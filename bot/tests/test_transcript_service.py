from __future__ import annotations

from datetime import datetime

import pytest

from conftest import FakeRemote, make_message
from core.config import ArchiveConfig
from core.errors import TranscriptCaptureError
from services.transcript_service import TranscriptService


@pytest.mark.asyncio
async def test_capture_pages_until_empty_and_orders_oldest_first(
    remote: FakeRemote, archive_config: ArchiveConfig
) -> None:
    remote.history[1] = [make_message(i, f"user{i % 3}", f"message {i}") for i in range(1, 251)]
    service = TranscriptService(archive_config, remote)

    artifact = await service.capture(1)

    assert [call[2] for call in remote.fetch_calls] == [None, 151, 51, 1]
    assert all(call[1] == 100 for call in remote.fetch_calls)
    assert [m.id for m in artifact.messages] == list(range(1, 251))

    lines = artifact.path.read_text(encoding="utf-8").splitlines()
    assert datetime.fromisoformat(lines[0]) == artifact.captured_at
    assert lines[1] == "[user1]: message 1"
    assert lines[-1] == "[user1]: message 250"
    assert len(lines) == 251
    assert artifact.path.name == "1.txt"


@pytest.mark.asyncio
async def test_capture_of_empty_channel_writes_header_only(
    remote: FakeRemote, archive_config: ArchiveConfig
) -> None:
    service = TranscriptService(archive_config, remote)

    artifact = await service.capture(2)

    assert artifact.messages == []
    assert len(artifact.path.read_text(encoding="utf-8").splitlines()) == 1


@pytest.mark.asyncio
async def test_capture_failure_leaves_no_file(remote: FakeRemote, archive_config: ArchiveConfig) -> None:
    service = TranscriptService(archive_config, remote)
    stale = service.transcript_path(3)
    stale.parent.mkdir(parents=True, exist_ok=True)
    stale.write_text("partial", encoding="utf-8")
    remote.failing.add("fetch_messages")

    with pytest.raises(TranscriptCaptureError):
        await service.capture(3)

    assert not stale.exists()


@pytest.mark.asyncio
async def test_custom_page_size(remote: FakeRemote, tmp_path) -> None:
    config = ArchiveConfig(temp_directory=str(tmp_path / "t"), history_page_size=2)
    remote.history[4] = [make_message(i, "a", str(i)) for i in range(1, 6)]
    service = TranscriptService(config, remote)

    artifact = await service.capture(4)

    assert len(remote.fetch_calls) == 4
    assert [m.content for m in artifact.messages] == ["1", "2", "3", "4", "5"]
