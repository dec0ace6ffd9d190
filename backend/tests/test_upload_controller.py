from __future__ import annotations

import asyncio

import pytest

from fisboard.controllers.upload import UploadController
from fisboard.models.enums import UploadErrorCode, UploadState
from fisboard.models.schemas import UploadMetadata, UploadResult
from fisboard.services.invalidation import InvalidationReport
from fisboard.services.upload_service import ReceiptImage, UploadCancelled, failure

PNG = ReceiptImage(filename="fis.png", content_type="image/png", content=b"png-bytes")


class DummyService:
    max_size = 1024

    def __init__(self, result: UploadResult | None = None, block: bool = False):
        self.result = result or UploadResult(
            success=True,
            message="ok",
            data=UploadMetadata(file_name="fis.png", file_size=9, file_type="image/png", upload_id="upload_1", timestamp="t"),
        )
        self.block = block
        self.calls = 0

    async def upload(self, image, cancel_token=None):
        self.calls += 1
        if self.block:
            await cancel_token.wait()
            raise UploadCancelled()
        return self.result


class DummyCoordinator:
    def __init__(self):
        self.calls = 0

    async def on_write_completed(self):
        self.calls += 1
        return InvalidationReport(outcomes=[])


def test_rejected_file_moves_to_error_without_network():
    service = DummyService()
    controller = UploadController(service, DummyCoordinator())
    accepted = controller.select_file(ReceiptImage("fis.gif", "image/gif", b"gif"))
    assert accepted is False
    assert controller.state is UploadState.ERROR
    assert controller.error.code is UploadErrorCode.INVALID_FILE_TYPE
    assert controller.selected is None
    assert service.calls == 0


@pytest.mark.asyncio
async def test_successful_upload_invalidates_views():
    coordinator = DummyCoordinator()
    states = []
    controller = UploadController(DummyService(), coordinator, listener=lambda c: states.append(c.state))
    assert controller.select_file(PNG)
    result = await controller.upload()
    assert result.success
    assert controller.state is UploadState.SUCCESS
    assert coordinator.calls == 1
    assert controller.last_report.ok
    assert states == [UploadState.IDLE, UploadState.UPLOADING, UploadState.SUCCESS]


@pytest.mark.asyncio
async def test_failed_upload_does_not_invalidate():
    coordinator = DummyCoordinator()
    service = DummyService(result=failure(UploadErrorCode.WEBHOOK_ERROR, "Failed", "Webhook returned 500"))
    controller = UploadController(service, coordinator)
    controller.select_file(PNG)
    result = await controller.upload()
    assert result.success is False
    assert controller.state is UploadState.ERROR
    assert controller.error.code is UploadErrorCode.WEBHOOK_ERROR
    assert coordinator.calls == 0


@pytest.mark.asyncio
async def test_upload_without_selection_reports_missing_file():
    controller = UploadController(DummyService(), DummyCoordinator())
    result = await controller.upload()
    assert result.error.code is UploadErrorCode.NO_FILE_PROVIDED
    assert controller.state is UploadState.ERROR


@pytest.mark.asyncio
async def test_abort_returns_to_idle_and_skips_invalidation():
    coordinator = DummyCoordinator()
    controller = UploadController(DummyService(block=True), coordinator)
    controller.select_file(PNG)
    pending = asyncio.ensure_future(controller.upload())
    await asyncio.sleep(0)
    assert controller.state is UploadState.UPLOADING
    assert controller.abort() is True
    assert controller.state is UploadState.IDLE
    assert await pending is None
    assert controller.selected is PNG
    assert coordinator.calls == 0
    assert controller.abort() is False


@pytest.mark.asyncio
async def test_result_arriving_after_abort_is_discarded():
    gate = asyncio.Event()
    coordinator = DummyCoordinator()

    class LateService(DummyService):
        async def upload(self, image, cancel_token=None):
            await gate.wait()
            return self.result

    controller = UploadController(LateService(), coordinator)
    controller.select_file(PNG)
    pending = asyncio.ensure_future(controller.upload())
    await asyncio.sleep(0)
    controller.abort()
    gate.set()
    assert await pending is None
    assert controller.state is UploadState.IDLE
    assert coordinator.calls == 0
