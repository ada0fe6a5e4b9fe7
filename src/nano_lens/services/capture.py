"""Camera and microphone ownership for still and video capture."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from nano_lens.domain.errors import (
    DeviceUnavailable,
    InvalidRecordingState,
    NoActiveStream,
    RecordingFailed,
)
from nano_lens.domain.media import CaptureMode, MediaPayload
from nano_lens.domain.session import ZoomRange

logger = logging.getLogger(__name__)

STILL_MIME_TYPE = "image/jpeg"


@dataclass(frozen=True)
class StreamConstraints:
    """Parameters for requesting a live camera stream."""

    facing_mode: str = "environment"
    width: int = 1920
    height: int = 1080
    audio: bool = False


class CameraStream(Protocol):
    """Live stream handle returned by a camera driver."""

    recording_mime_type: str

    def zoom_range(self) -> ZoomRange | None:
        """Return the supported zoom range, or None if zoom is unsupported."""

    def apply_zoom(self, level: float) -> None:
        """Apply a zoom level to the live stream."""

    def encode_frame(self, mime_type: str, quality: float) -> bytes:
        """Encode the current live frame."""

    def start_recorder(self) -> None:
        """Begin buffering the live stream into a clip."""

    async def stop_recorder(self) -> bytes:
        """Stop buffering and return the flushed clip."""

    def release(self) -> None:
        """Release every device track held by the stream."""


class CameraDriver(Protocol):
    """Interface for acquiring camera streams."""

    async def acquire(self, constraints: StreamConstraints) -> CameraStream:
        """Acquire a live stream, raising DeviceUnavailable on failure."""


@dataclass
class MediaCapture:
    """Holds at most one live stream and produces media payloads from it."""

    driver: CameraDriver
    width: int = 1920
    height: int = 1080
    still_quality: float = 0.9
    _stream: CameraStream | None = field(default=None, init=False)
    _zoom: ZoomRange | None = field(default=None, init=False)
    _recording: bool = field(default=False, init=False)

    @property
    def is_open(self) -> bool:
        return self._stream is not None

    @property
    def is_recording(self) -> bool:
        return self._recording

    @property
    def zoom_range(self) -> ZoomRange | None:
        return self._zoom

    async def open(self, mode: CaptureMode) -> ZoomRange | None:
        """Acquire a live stream for the mode and report its zoom range."""
        await self.close()
        constraints = StreamConstraints(
            width=self.width,
            height=self.height,
            audio=mode is CaptureMode.VIDEO,
        )
        try:
            stream = await self.driver.acquire(constraints)
        except DeviceUnavailable:
            raise
        except Exception as exc:
            raise DeviceUnavailable(str(exc) or type(exc).__name__) from exc

        try:
            zoom = stream.zoom_range()
        except Exception:
            logger.warning("Zoom capability probe failed", exc_info=True)
            zoom = None

        self._stream = stream
        self._zoom = zoom
        logger.info(
            "Camera opened in %s mode (zoom=%s)",
            mode.value,
            f"{zoom.min}-{zoom.max}" if zoom else "unsupported",
        )
        return zoom

    async def close(self) -> None:
        """Release the live stream; safe to call when nothing is open.

        The stream is detached before the release runs, so the capture
        reports closed even while the device is still being torn down.
        """
        stream = self._stream
        if stream is None:
            return
        self._stream = None
        self._zoom = None
        self._recording = False
        try:
            await asyncio.to_thread(stream.release)
        except Exception:
            logger.exception("Failed to release camera stream")
        logger.info("Camera released")

    async def capture_still(self) -> MediaPayload:
        """Encode the current live frame as a still image."""
        stream = self._require_stream()
        data = await asyncio.to_thread(
            stream.encode_frame, STILL_MIME_TYPE, self.still_quality
        )
        return MediaPayload(data=data, mime_type=STILL_MIME_TYPE)

    def start_recording(self) -> None:
        """Start buffering the live stream into a clip."""
        stream = self._require_stream()
        if self._recording:
            raise InvalidRecordingState("Recording is already in progress")
        try:
            stream.start_recorder()
        except Exception as exc:
            raise RecordingFailed(str(exc) or type(exc).__name__) from exc
        self._recording = True

    async def stop_recording(self) -> MediaPayload:
        """Stop recording and return the complete clip once flushed."""
        stream = self._stream
        if stream is None or not self._recording:
            raise InvalidRecordingState("No recording is in progress")
        self._recording = False
        data = await stream.stop_recorder()
        logger.info("Recording finished (%s bytes)", len(data))
        return MediaPayload(data=data, mime_type=stream.recording_mime_type)

    def set_zoom(self, level: float) -> float | None:
        """Apply a clamped zoom level; returns None when zoom is unavailable."""
        if self._stream is None or self._zoom is None:
            return None
        clamped = self._zoom.clamp(level)
        try:
            self._stream.apply_zoom(clamped)
        except Exception:
            logger.warning("Zoom not supported directly", exc_info=True)
            return None
        return clamped

    def _require_stream(self) -> CameraStream:
        if self._stream is None:
            raise NoActiveStream("Camera stream is not open")
        return self._stream
