"""AttachmentService tests."""
from __future__ import annotations

import re

import pytest

from invoice_dispatch.attachments import AttachmentService
from invoice_dispatch.core.exceptions import AttachmentNotFoundError, InvoiceNotFoundError


@pytest.fixture
def service(seeded_store, config) -> AttachmentService:
    return AttachmentService(seeded_store, config.attachments_dir)


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "upload" / "Terms & Conditions.pdf"
    path.parent.mkdir()
    path.write_bytes(b"%PDF-1.4 terms")
    return path


class TestUpload:

    @pytest.mark.asyncio
    async def test_copies_and_records(self, service, source, config) -> None:
        attachment = await service.upload(1, source)

        assert re.fullmatch(r"1_\d{13}\.pdf", attachment.filename)
        assert attachment.original_filename == "Terms & Conditions.pdf"
        assert attachment.file_size == len(b"%PDF-1.4 terms")
        assert attachment.mime_type == "application/pdf"
        stored = config.attachments_dir / attachment.filename
        assert stored.read_bytes() == source.read_bytes()
        assert attachment.file_path == str(stored)
        assert source.exists()

    @pytest.mark.asyncio
    async def test_listed(self, service, source) -> None:
        attachment = await service.upload(1, source)
        assert await service.list(1) == [attachment]

    @pytest.mark.asyncio
    async def test_unknown_invoice(self, service, source) -> None:
        with pytest.raises(InvoiceNotFoundError):
            await service.upload(404, source)

    @pytest.mark.asyncio
    async def test_missing_source(self, service, tmp_path) -> None:
        with pytest.raises(AttachmentNotFoundError):
            await service.upload(1, tmp_path / "nope.pdf")


class TestDelete:

    @pytest.mark.asyncio
    async def test_removes_file_and_row(self, service, source) -> None:
        attachment = await service.upload(1, source)
        await service.delete(attachment.id)
        assert await service.list(1) == []
        assert not (service.attachments_dir / attachment.filename).exists()

    @pytest.mark.asyncio
    async def test_file_already_gone(self, service, source) -> None:
        attachment = await service.upload(1, source)
        (service.attachments_dir / attachment.filename).unlink()
        await service.delete(attachment.id)
        assert await service.list(1) == []

    @pytest.mark.asyncio
    async def test_unknown_id(self, service) -> None:
        with pytest.raises(AttachmentNotFoundError):
            await service.delete(999)
