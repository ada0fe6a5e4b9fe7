"""OpenCV-backed camera driver and clip frame sampling."""

import asyncio
import logging
import queue
import tempfile
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import cv2

from nano_lens.domain.errors import DeviceUnavailable
from nano_lens.domain.session import ZoomRange
from nano_lens.services.capture import CameraDriver, CameraStream, StreamConstraints

logger = logging.getLogger(__name__)

RECORDING_MIME_TYPE = "video/mp4"
_RECORDING_FOURCC = "mp4v"
_MAX_QUEUED_FRAMES = 300

CaptureFactory = Callable[[int], Any]
WriterFactory = Callable[[str, int, float, tuple[int, int]], Any]


@dataclass
class OpenCVCameraDriver(CameraDriver):
    """Camera driver using cv2.VideoCapture for a local device index."""

    device_index: int = 0
    fps: float = 30.0
    zoom_max: float = 5.0
    capture_factory: CaptureFactory = cv2.VideoCapture
    writer_factory: WriterFactory = cv2.VideoWriter

    async def acquire(self, constraints: StreamConstraints) -> CameraStream:
        """Open the device and start reading frames in the background."""
        capture = await asyncio.to_thread(self.capture_factory, self.device_index)
        if not capture.isOpened():
            capture.release()
            raise DeviceUnavailable(f"Camera {self.device_index} could not be opened")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        if constraints.audio:
            logger.info("Audio capture is not available through OpenCV; clips are silent")

        stream = OpenCVStream(
            capture=capture,
            fps=self.fps,
            zoom_max=self.zoom_max,
            writer_factory=self.writer_factory,
        )
        try:
            await asyncio.to_thread(stream.start)
        except BaseException:
            stream.release()
            raise
        return stream


class OpenCVStream(CameraStream):
    """Live stream that keeps the latest frame and feeds an optional recorder."""

    recording_mime_type = RECORDING_MIME_TYPE

    def __init__(
        self,
        capture: Any,
        fps: float,
        zoom_max: float,
        writer_factory: WriterFactory,
    ) -> None:
        self._capture = capture
        self._fps = fps
        self._zoom_max = zoom_max
        self._writer_factory = writer_factory
        self._lock = threading.Lock()
        self._frame: Any = None
        self._stopped = threading.Event()
        self._reader: threading.Thread | None = None
        self._recorder: _ClipRecorder | None = None

    def start(self) -> None:
        grabbed, frame = self._capture.read()
        if not grabbed or frame is None:
            raise DeviceUnavailable("Camera returned no frames")
        self._frame = frame
        self._reader = threading.Thread(target=self._read_loop, daemon=True)
        self._reader.start()

    def zoom_range(self) -> ZoomRange | None:
        with self._lock:
            current = self._capture.get(cv2.CAP_PROP_ZOOM)
        if not current or current <= 0:
            return None
        return ZoomRange(min=1.0, max=max(1.0, self._zoom_max))

    def apply_zoom(self, level: float) -> None:
        with self._lock:
            accepted = self._capture.set(cv2.CAP_PROP_ZOOM, level)
        if not accepted:
            raise RuntimeError(f"Camera rejected zoom level {level}")

    def encode_frame(self, mime_type: str, quality: float) -> bytes:
        with self._lock:
            frame = None if self._frame is None else self._frame.copy()
        if frame is None:
            raise RuntimeError("No frame available")
        if mime_type == "image/png":
            ok, buffer = cv2.imencode(".png", frame)
        else:
            params = [int(cv2.IMWRITE_JPEG_QUALITY), int(round(quality * 100))]
            ok, buffer = cv2.imencode(".jpg", frame, params)
        if not ok:
            raise RuntimeError(f"Failed to encode frame as {mime_type}")
        return buffer.tobytes()

    def start_recorder(self) -> None:
        recorder = _ClipRecorder(fps=self._fps, writer_factory=self._writer_factory)
        recorder.start()
        with self._lock:
            self._recorder = recorder

    async def stop_recorder(self) -> bytes:
        with self._lock:
            recorder = self._recorder
            self._recorder = None
        if recorder is None:
            raise RuntimeError("Recorder is not running")
        return await asyncio.to_thread(recorder.finish)

    def release(self) -> None:
        self._stopped.set()
        if self._reader is not None and self._reader is not threading.current_thread():
            self._reader.join(timeout=2.0)
        with self._lock:
            recorder = self._recorder
            self._recorder = None
        if recorder is not None:
            recorder.discard()
        self._capture.release()

    def _read_loop(self) -> None:
        interval = 1.0 / self._fps if self._fps > 0 else 0.0
        while not self._stopped.is_set():
            grabbed, frame = self._capture.read()
            if grabbed and frame is not None:
                with self._lock:
                    self._frame = frame
                    recorder = self._recorder
                if recorder is not None:
                    recorder.write(frame)
            time.sleep(interval)


class _ClipRecorder:
    """Writes queued frames to a temporary clip on a worker thread."""

    def __init__(self, fps: float, writer_factory: WriterFactory) -> None:
        self._fps = fps
        self._writer_factory = writer_factory
        self._queue: queue.Queue[Any] = queue.Queue()
        self._running = False
        self._thread: threading.Thread | None = None
        with tempfile.NamedTemporaryFile(suffix=".mp4", delete=False) as handle:
            self._path = Path(handle.name)
        self._frames_written = 0

    def start(self) -> None:
        self._running = True
        self._thread = threading.Thread(target=self._write_loop, daemon=True)
        self._thread.start()

    def write(self, frame: Any) -> None:
        if self._running and self._queue.qsize() < _MAX_QUEUED_FRAMES:
            self._queue.put(frame)

    def finish(self) -> bytes:
        self._stop()
        try:
            if self._frames_written == 0:
                raise RuntimeError("Recording captured no frames")
            return self._path.read_bytes()
        finally:
            self._path.unlink(missing_ok=True)

    def discard(self) -> None:
        self._stop()
        self._path.unlink(missing_ok=True)

    def _stop(self) -> None:
        self._running = False
        if self._thread is not None:
            self._thread.join()

    def _write_loop(self) -> None:
        writer = None
        size: tuple[int, int] | None = None
        try:
            while self._running or not self._queue.empty():
                try:
                    frame = self._queue.get(timeout=0.1)
                except queue.Empty:
                    continue
                height, width = frame.shape[:2]
                if writer is None or size != (width, height):
                    if writer is not None:
                        writer.release()
                    size = (width, height)
                    fourcc = cv2.VideoWriter_fourcc(*_RECORDING_FOURCC)
                    writer = self._writer_factory(str(self._path), fourcc, self._fps, size)
                writer.write(frame)
                self._frames_written += 1
        finally:
            if writer is not None:
                writer.release()


def sample_video_frames(data: bytes, count: int) -> list[bytes]:
    """Decode a clip and return up to ``count`` evenly spaced JPEG frames."""
    with tempfile.NamedTemporaryFile(suffix=".mp4", delete=False) as handle:
        handle.write(data)
        path = Path(handle.name)
    capture = cv2.VideoCapture(str(path))
    try:
        if not capture.isOpened():
            return []
        total = int(capture.get(cv2.CAP_PROP_FRAME_COUNT))
        frames = (
            _sample_by_position(capture, total, count)
            if total > 0
            else _sample_sequentially(capture, count)
        )
        return [_encode_jpeg(frame) for frame in frames]
    finally:
        capture.release()
        path.unlink(missing_ok=True)


def _sample_by_position(capture: Any, total: int, count: int) -> list[Any]:
    positions = sorted({int(index * total / count) for index in range(count)})
    frames = []
    for position in positions:
        capture.set(cv2.CAP_PROP_POS_FRAMES, position)
        grabbed, frame = capture.read()
        if grabbed and frame is not None:
            frames.append(frame)
    return frames


def _sample_sequentially(capture: Any, count: int) -> list[Any]:
    fps = capture.get(cv2.CAP_PROP_FPS)
    stride = max(1, int(fps)) if fps and fps > 0 else 1
    frames = []
    index = 0
    while len(frames) < count:
        grabbed, frame = capture.read()
        if not grabbed or frame is None:
            break
        if index % stride == 0:
            frames.append(frame)
        index += 1
    return frames


def _encode_jpeg(frame: Any) -> bytes:
    ok, buffer = cv2.imencode(".jpg", frame, [int(cv2.IMWRITE_JPEG_QUALITY), 85])
    if not ok:
        raise RuntimeError("Failed to encode sampled frame")
    return buffer.tobytes()
