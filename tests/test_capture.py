"""Tests for camera ownership in MediaCapture."""

import asyncio
import threading

import pytest

from nano_lens.domain.errors import (
    DeviceUnavailable,
    InvalidRecordingState,
    NoActiveStream,
    RecordingFailed,
)
from nano_lens.domain.media import CaptureMode
from nano_lens.domain.session import ZoomRange
from nano_lens.services.capture import STILL_MIME_TYPE, MediaCapture
from tests.conftest import CLIP_BYTES, JPEG_BYTES, FakeCameraDriver


def test_open_requests_audio_only_for_video() -> None:
    driver = FakeCameraDriver()
    capture = MediaCapture(driver=driver, width=1280, height=720)

    asyncio.run(capture.open(CaptureMode.PHOTO))
    asyncio.run(capture.open(CaptureMode.VIDEO))

    assert [stream.constraints.audio for stream in driver.streams] == [False, True]
    assert driver.streams[0].constraints.width == 1280
    assert len(driver.held_streams) == 1


def test_close_is_idempotent() -> None:
    driver = FakeCameraDriver()
    capture = MediaCapture(driver=driver)
    asyncio.run(capture.open(CaptureMode.PHOTO))

    asyncio.run(capture.close())
    asyncio.run(capture.close())

    assert not capture.is_open
    assert driver.held_streams == []


def test_open_wraps_driver_errors() -> None:
    class BrokenDriver(FakeCameraDriver):
        async def acquire(self, constraints):  # type: ignore[no-untyped-def]
            raise RuntimeError("NotReadableError")

    capture = MediaCapture(driver=BrokenDriver())

    with pytest.raises(DeviceUnavailable, match="NotReadableError"):
        asyncio.run(capture.open(CaptureMode.PHOTO))
    assert not capture.is_open


def test_capture_still_requires_open_stream() -> None:
    capture = MediaCapture(driver=FakeCameraDriver())

    with pytest.raises(NoActiveStream):
        asyncio.run(capture.capture_still())

    asyncio.run(capture.open(CaptureMode.PHOTO))
    payload = asyncio.run(capture.capture_still())

    assert payload.data == JPEG_BYTES
    assert payload.mime_type == STILL_MIME_TYPE


def test_recording_lifecycle() -> None:
    capture = MediaCapture(driver=FakeCameraDriver())
    asyncio.run(capture.open(CaptureMode.VIDEO))

    with pytest.raises(InvalidRecordingState):
        asyncio.run(capture.stop_recording())

    capture.start_recording()
    with pytest.raises(InvalidRecordingState):
        capture.start_recording()

    payload = asyncio.run(capture.stop_recording())

    assert payload.data == CLIP_BYTES
    assert payload.mime_type == "video/mp4"
    assert not capture.is_recording


def test_zoom_is_clamped_to_range() -> None:
    driver = FakeCameraDriver(zoom=ZoomRange(min=1.0, max=3.0))
    capture = MediaCapture(driver=driver)
    zoom = asyncio.run(capture.open(CaptureMode.PHOTO))

    assert zoom == ZoomRange(min=1.0, max=3.0)
    assert capture.set_zoom(0.2) == 1.0
    assert capture.set_zoom(5.0) == 3.0
    assert driver.streams[0].zoom_levels == [1.0, 3.0]


def test_zoom_degrades_when_unsupported_or_rejected() -> None:
    capture = MediaCapture(driver=FakeCameraDriver())
    asyncio.run(capture.open(CaptureMode.PHOTO))
    assert capture.set_zoom(2.0) is None

    driver = FakeCameraDriver(zoom=ZoomRange(min=1.0, max=3.0))
    capture = MediaCapture(driver=driver)
    asyncio.run(capture.open(CaptureMode.PHOTO))
    driver.streams[0].reject_zoom = True

    assert capture.set_zoom(2.0) is None


def test_zoom_without_stream_is_ignored() -> None:
    assert MediaCapture(driver=FakeCameraDriver()).set_zoom(2.0) is None


def test_recorder_start_failure_raises_recording_failed() -> None:
    driver = FakeCameraDriver(start_error=OSError("no space for temp clip"))
    capture = MediaCapture(driver=driver)
    asyncio.run(capture.open(CaptureMode.VIDEO))

    with pytest.raises(RecordingFailed, match="no space for temp clip"):
        capture.start_recording()

    assert not capture.is_recording
    assert capture.is_open


def test_release_and_still_encoding_run_off_the_loop_thread() -> None:
    driver = FakeCameraDriver()
    capture = MediaCapture(driver=driver)
    asyncio.run(capture.open(CaptureMode.PHOTO))

    asyncio.run(capture.capture_still())
    asyncio.run(capture.close())

    stream = driver.streams[0]
    loop_thread = threading.get_ident()
    assert stream.encode_thread is not None
    assert stream.encode_thread != loop_thread
    assert stream.release_thread is not None
    assert stream.release_thread != loop_thread
