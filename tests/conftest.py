"""Shared test fixtures."""

import asyncio
import threading
from dataclasses import dataclass, field
from pathlib import Path

import pytest

from nano_lens.config import Settings
from nano_lens.containers import AppContainer
from nano_lens.domain.errors import AnalysisFailed, DeviceUnavailable
from nano_lens.domain.media import AnalysisResult, EditResult, MediaPayload
from nano_lens.domain.session import ZoomRange
from nano_lens.services.analysis import AnalysisClient, AnalysisService, VisionModelClient
from nano_lens.services.capture import CameraDriver, CameraStream, MediaCapture, StreamConstraints
from nano_lens.services.history import HistoryStore, KeyValueStorage
from nano_lens.services.session import SessionController

JPEG_BYTES = b"\xff\xd8\xff" + b"still-frame"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"edited"
CLIP_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"clip"


@dataclass
class FakeCameraStream(CameraStream):
    """Fake live stream that records how it was used."""

    constraints: StreamConstraints
    zoom: ZoomRange | None = None
    clip: bytes = CLIP_BYTES
    flush_error: Exception | None = None
    start_error: Exception | None = None
    flush_gate: asyncio.Event | None = None
    reject_zoom: bool = False
    recording_mime_type: str = "video/mp4"
    released: bool = False
    recording: bool = False
    zoom_levels: list[float] = field(default_factory=list)
    encode_thread: int | None = None
    release_thread: int | None = None

    def zoom_range(self) -> ZoomRange | None:
        return self.zoom

    def apply_zoom(self, level: float) -> None:
        if self.reject_zoom:
            raise RuntimeError("zoom rejected")
        self.zoom_levels.append(level)

    def encode_frame(self, mime_type: str, quality: float) -> bytes:
        self.encode_thread = threading.get_ident()
        return JPEG_BYTES

    def start_recorder(self) -> None:
        if self.start_error is not None:
            raise self.start_error
        self.recording = True

    async def stop_recorder(self) -> bytes:
        self.recording = False
        if self.flush_gate is not None:
            await self.flush_gate.wait()
        await asyncio.sleep(0)
        if self.flush_error is not None:
            raise self.flush_error
        return self.clip

    def release(self) -> None:
        self.release_thread = threading.get_ident()
        self.released = True


@dataclass
class FakeCameraDriver(CameraDriver):
    """Fake camera driver that hands out fake streams."""

    available: bool = True
    zoom: ZoomRange | None = None
    flush_error: Exception | None = None
    start_error: Exception | None = None
    flush_gate: asyncio.Event | None = None
    acquire_gate: asyncio.Event | None = None
    streams: list[FakeCameraStream] = field(default_factory=list)

    async def acquire(self, constraints: StreamConstraints) -> CameraStream:
        if self.acquire_gate is not None:
            await self.acquire_gate.wait()
        if not self.available:
            raise DeviceUnavailable("Permission denied")
        stream = FakeCameraStream(
            constraints=constraints,
            zoom=self.zoom,
            flush_error=self.flush_error,
            start_error=self.start_error,
            flush_gate=self.flush_gate,
        )
        self.streams.append(stream)
        return stream

    @property
    def held_streams(self) -> list[FakeCameraStream]:
        return [stream for stream in self.streams if not stream.released]


@dataclass
class InMemoryKeyValueStorage(KeyValueStorage):
    """In-memory key-value storage for tests."""

    items: dict[str, str] = field(default_factory=dict)
    fail_writes: bool = False
    writes: int = 0

    def get_item(self, key: str) -> str | None:
        return self.items.get(key)

    def set_item(self, key: str, value: str) -> None:
        if self.fail_writes:
            raise OSError("disk full")
        self.items[key] = value
        self.writes += 1


@dataclass
class FakeAnalysisClient(AnalysisClient):
    """Fake analysis client with scripted results and optional gating."""

    analysis: AnalysisResult = field(
        default_factory=lambda: AnalysisResult(
            description="A red mug on a desk.",
            points=["Ceramic mug", "Holds coffee", "Dishwasher safe"],
        )
    )
    fail_analysis: bool = False
    edit_results: list[EditResult | Exception] = field(default_factory=list)
    gate: asyncio.Event | None = None
    analyze_calls: list[tuple[str, bytes, str]] = field(default_factory=list)
    edit_calls: list[tuple[bytes, str, str]] = field(default_factory=list)
    held_streams_during_calls: list[int] = field(default_factory=list)
    driver: FakeCameraDriver | None = None

    async def analyze_image(self, data: bytes, mime_type: str) -> AnalysisResult:
        self.analyze_calls.append(("image", data, mime_type))
        return await self._settle_analysis()

    async def analyze_video(self, data: bytes, mime_type: str) -> AnalysisResult:
        self.analyze_calls.append(("video", data, mime_type))
        return await self._settle_analysis()

    async def edit_image(
        self, data: bytes, mime_type: str, instruction: str
    ) -> EditResult:
        self.edit_calls.append((data, mime_type, instruction))
        await self._wait()
        outcome = (
            self.edit_results.pop(0)
            if self.edit_results
            else EditResult(image=MediaPayload(data=PNG_BYTES, mime_type="image/png"))
        )
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def _settle_analysis(self) -> AnalysisResult:
        await self._wait()
        if self.fail_analysis:
            raise AnalysisFailed("remote error")
        return self.analysis

    async def _wait(self) -> None:
        if self.driver is not None:
            self.held_streams_during_calls.append(len(self.driver.held_streams))
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(0)


@dataclass
class FakeVisionModelClient(VisionModelClient):
    """Fake vision model client returning fixed payloads."""

    payload: dict[str, object] = field(
        default_factory=lambda: {
            "description": "A bicycle leaning on a wall.",
            "points": ["Road bike", "Steel frame", "Needs air in tyres"],
        }
    )
    edit_payload: dict[str, object] = field(
        default_factory=lambda: {"image_base64": "iVBORw0KGgo=", "text": None}
    )
    error: Exception | None = None
    delay_seconds: float = 0.0
    describe_calls: list[dict[str, object]] = field(default_factory=list)
    edit_calls: list[dict[str, object]] = field(default_factory=list)

    async def describe(  # noqa: PLR0913
        self,
        *,
        model: str,
        reasoning_effort: str | None,
        store: bool,
        image_data_urls: list[str],
        schema: dict[str, object],
        prompt: str,
    ) -> dict[str, object]:
        self.describe_calls.append(
            {"model": model, "image_data_urls": image_data_urls, "prompt": prompt}
        )
        await self._maybe_fail()
        return self.payload

    async def edit(
        self, *, model: str, store: bool, image_data_url: str, prompt: str
    ) -> dict[str, object]:
        self.edit_calls.append({"image_data_url": image_data_url, "prompt": prompt})
        await self._maybe_fail()
        return self.edit_payload

    async def _maybe_fail(self) -> None:
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self.error is not None:
            raise self.error


def make_controller(
    driver: FakeCameraDriver | None = None,
    analysis_client: FakeAnalysisClient | None = None,
    storage: InMemoryKeyValueStorage | None = None,
    clock_start: float = 1_700_000_000.0,
) -> SessionController:
    """Build a controller wired to fakes with a steadily advancing clock."""
    ticks = iter(range(10_000))

    def clock() -> float:
        return clock_start + next(ticks)

    resolved_driver = driver or FakeCameraDriver()
    client = analysis_client or FakeAnalysisClient()
    client.driver = resolved_driver
    return SessionController(
        capture=MediaCapture(driver=resolved_driver),
        analysis_client=client,
        history_store=HistoryStore(storage or InMemoryKeyValueStorage()),
        clock=clock,
    )


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        openai_api_key="openai-key",
        history_dir=str(tmp_path / "history"),
    )


@pytest.fixture
def camera_driver() -> FakeCameraDriver:
    return FakeCameraDriver(zoom=ZoomRange(min=1.0, max=4.0))


@pytest.fixture
def analysis_client() -> FakeAnalysisClient:
    return FakeAnalysisClient()


@pytest.fixture
def storage() -> InMemoryKeyValueStorage:
    return InMemoryKeyValueStorage()


@pytest.fixture
def controller(
    camera_driver: FakeCameraDriver,
    analysis_client: FakeAnalysisClient,
    storage: InMemoryKeyValueStorage,
) -> SessionController:
    return make_controller(camera_driver, analysis_client, storage)


@pytest.fixture
def container(
    settings: Settings,
    controller: SessionController,
) -> AppContainer:
    analysis_service = AnalysisService(
        client=FakeVisionModelClient(),
        model=settings.openai_model,
        reasoning_effort=settings.openai_reasoning_effort,
        store=settings.openai_store,
        frame_sampler=lambda data, count: [JPEG_BYTES],
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        capture=controller.capture,
        history_store=controller.history_store,
        analysis_service=analysis_service,
        session_controller=controller,
        close_resources=close_resources,
    )


