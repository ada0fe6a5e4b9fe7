"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from pathlib import Path

from nano_lens.adapters.json_file_storage import JsonFileStorage
from nano_lens.adapters.opencv_camera import OpenCVCameraDriver, sample_video_frames
from nano_lens.adapters.openai_vision_client import OpenAIVisionClient
from nano_lens.config import Settings
from nano_lens.services.analysis import AnalysisService
from nano_lens.services.capture import MediaCapture
from nano_lens.services.history import HistoryStore
from nano_lens.services.session import SessionController


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    capture: MediaCapture
    history_store: HistoryStore
    analysis_service: AnalysisService
    session_controller: SessionController
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    driver = OpenCVCameraDriver(
        device_index=resolved_settings.camera_index,
        fps=resolved_settings.camera_fps,
        zoom_max=resolved_settings.camera_max_zoom,
    )
    capture = MediaCapture(
        driver=driver,
        width=resolved_settings.camera_width,
        height=resolved_settings.camera_height,
        still_quality=resolved_settings.still_quality,
    )
    history_store = HistoryStore(
        storage=JsonFileStorage(Path(resolved_settings.history_dir)),
        key=resolved_settings.history_key,
        limit=resolved_settings.history_limit,
    )
    openai_client = OpenAIVisionClient.create(resolved_settings.openai_api_key)
    analysis_service = AnalysisService(
        client=openai_client,
        model=resolved_settings.openai_model,
        reasoning_effort=resolved_settings.openai_reasoning_effort,
        store=resolved_settings.openai_store,
        frame_sampler=sample_video_frames,
        timeout_seconds=resolved_settings.analysis_timeout_seconds,
        edit_timeout_seconds=resolved_settings.edit_timeout_seconds,
        video_frame_count=resolved_settings.video_sample_frames,
    )
    session_controller = SessionController(
        capture=capture,
        analysis_client=analysis_service,
        history_store=history_store,
    )

    async def close_resources() -> None:
        await openai_client.close()

    return AppContainer(
        settings=resolved_settings,
        capture=capture,
        history_store=history_store,
        analysis_service=analysis_service,
        session_controller=session_controller,
        close_resources=close_resources,
    )
