from __future__ import annotations

import zipfile

import pytest

from conftest import StubAttachmentService, image, make_message
from core.config import ArchiveConfig
from services.attachment_service import select_images
from services.remote import CapturedAttachment


def test_select_images_filters_by_content_type() -> None:
    messages = [
        make_message(1, "a", "", [image("a.png"), CapturedAttachment("notes.txt", "https://cdn.test/n", "text/plain")]),
        make_message(2, "b", "", [image("b.jpg", content_type="IMAGE/JPEG"), CapturedAttachment("x", "u", "")]),
    ]

    assert [a.filename for a in select_images(messages)] == ["a.png", "b.jpg"]


@pytest.mark.asyncio
async def test_bundle_skips_failed_downloads(archive_config: ArchiveConfig) -> None:
    service = StubAttachmentService(
        archive_config,
        {"https://cdn.test/a.png": b"a", "https://cdn.test/c.png": b"c"},
    )
    messages = [make_message(1, "a", "", [image("a.png"), image("b.png"), image("c.png")])]

    artifact = await service.bundle(10, messages)

    assert artifact is not None
    assert artifact.path == service.bundle_path(10)
    assert artifact.entry_count == 2
    assert artifact.skipped == ["b.png"]
    with zipfile.ZipFile(artifact.path) as archive:
        assert archive.namelist() == ["001_a.png", "003_c.png"]
        assert archive.read("003_c.png") == b"c"


@pytest.mark.asyncio
async def test_bundle_keeps_duplicate_filenames(archive_config: ArchiveConfig) -> None:
    service = StubAttachmentService(
        archive_config,
        {"https://cdn.test/1": b"one", "https://cdn.test/2": b"two", "https://cdn.test/3": b"three"},
    )
    messages = [
        make_message(1, "a", "", [image("shot.png", "https://cdn.test/1"), image("shot.png", "https://cdn.test/2")]),
        make_message(2, "a", "", [image("shot.png", "https://cdn.test/3")]),
    ]

    artifact = await service.bundle(11, messages)

    assert artifact is not None and artifact.entry_count == 3
    with zipfile.ZipFile(artifact.path) as archive:
        assert len(archive.namelist()) == 3


@pytest.mark.asyncio
async def test_bundle_without_images_returns_none(archive_config: ArchiveConfig) -> None:
    service = StubAttachmentService(archive_config)

    assert await service.bundle(12, [make_message(1, "a", "text only")]) is None
    assert not service.bundle_path(12).exists()


@pytest.mark.asyncio
async def test_bundle_with_all_downloads_failing_returns_none(archive_config: ArchiveConfig) -> None:
    service = StubAttachmentService(archive_config)

    assert await service.bundle(13, [make_message(1, "a", "", [image("gone.png")])]) is None
    assert not service.bundle_path(13).exists()
