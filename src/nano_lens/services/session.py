"""Session state machine for capture, analysis and editing."""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from nano_lens.domain.errors import (
    DeviceUnavailable,
    HistoryRecordNotFound,
    InvalidRecordingState,
    InvalidTransition,
    OperationInProgress,
    RecordingFailed,
    UnsupportedMedia,
)
from nano_lens.domain.media import (
    CaptureMode,
    MediaAsset,
    MediaKind,
    MediaPayload,
    kind_for_mime_type,
)
from nano_lens.domain.session import (
    SessionEvent,
    SessionSnapshot,
    SessionState,
    ZoomRange,
)
from nano_lens.services.analysis import AnalysisClient
from nano_lens.services.capture import MediaCapture
from nano_lens.services.history import HistoryStore

logger = logging.getLogger(__name__)

CAMERA_UNAVAILABLE_MESSAGE = "Camera access needed."
IMAGE_ANALYSIS_FAILED_MESSAGE = "Could not analyze image."
VIDEO_ANALYSIS_FAILED_MESSAGE = "Video analysis failed."
RECORDING_FAILED_MESSAGE = "Recording failed."
EDIT_FAILED_MESSAGE = "Failed to edit image."
EDIT_NO_CHANGES_MESSAGE = "No changes generated."

SessionListener = Callable[[SessionEvent, SessionSnapshot], None]

_BUSY_STATES = frozenset(
    {SessionState.RECORDING, SessionState.ANALYZING, SessionState.EDITING}
)


@dataclass
class SessionController:
    """Single source of truth for the capture session.

    Device ownership follows the state: the camera is held only in IDLE and
    RECORDING and is released on every other transition. At most one
    analysis or edit call is outstanding at any time.

    A new controller reports IDLE with ``camera_ready`` false and holds no
    device until ``initialize()`` runs; capture commands are rejected until
    then.
    """

    capture: MediaCapture
    analysis_client: AnalysisClient
    history_store: HistoryStore
    clock: Callable[[], float] = time.time
    _state: SessionState = field(default=SessionState.IDLE, init=False)
    _mode: CaptureMode = field(default=CaptureMode.PHOTO, init=False)
    _current: MediaAsset | None = field(default=None, init=False)
    _edit_source: MediaPayload | None = field(default=None, init=False)
    _error: str | None = field(default=None, init=False)
    _zoom_level: float = field(default=1.0, init=False)
    _recording_started_at: float | None = field(default=None, init=False)
    _busy: bool = field(default=False, init=False)
    _last_asset_id: int = field(default=0, init=False)
    _listeners: list[SessionListener] = field(default_factory=list, init=False)

    @property
    def state(self) -> SessionState:
        return self._state

    def snapshot(self) -> SessionSnapshot:
        """Return the current session view."""
        display: MediaPayload | None = None
        if self._edit_source is not None:
            display = self._edit_source
        elif self._current is not None:
            display = self._current.display_payload
        recording_seconds = None
        if self._recording_started_at is not None:
            recording_seconds = max(0, int(self.clock() - self._recording_started_at))
        return SessionSnapshot(
            state=self._state,
            mode=self._mode,
            current=self._current,
            display=display,
            edited=self._edit_source is not None,
            error=self._error,
            camera_ready=self.capture.is_open,
            zoom=self.capture.zoom_range,
            zoom_level=self._zoom_level,
            recording_seconds=recording_seconds,
        )

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener for transitions and return an unsubscribe hook."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def initialize(self) -> SessionSnapshot:
        """Acquire the camera, entering IDLE on success and ERROR on failure."""
        self._ensure_not_busy()
        if self._state not in {SessionState.IDLE, SessionState.ERROR}:
            raise InvalidTransition(f"Cannot initialize capture from {self._state}")
        await self._enter_idle(SessionEvent.INITIALIZE)
        return self.snapshot()

    async def set_mode(self, mode: CaptureMode) -> SessionSnapshot:
        """Switch between photo and video mode, re-acquiring the camera."""
        self._ensure_not_busy()
        if self._state not in {SessionState.IDLE, SessionState.ERROR}:
            raise InvalidTransition(f"Cannot change mode from {self._state}")
        self._mode = mode
        await self._enter_idle(SessionEvent.SET_MODE)
        return self.snapshot()

    def set_zoom(self, level: float) -> SessionSnapshot:
        """Best-effort zoom while the live preview is shown."""
        if self._state in {SessionState.IDLE, SessionState.RECORDING}:
            applied = self.capture.set_zoom(level)
            if applied is not None:
                self._zoom_level = applied
        return self.snapshot()

    async def capture_photo(self) -> SessionSnapshot:
        """Capture a still frame and analyze it."""
        self._ensure_not_busy()
        self._ensure_live_preview("capture a photo")
        self._busy = True
        try:
            payload = await self.capture.capture_still()
            await self.capture.close()
        finally:
            self._busy = False
        asset = self._new_asset(MediaKind.IMAGE, payload)
        return await self._analyze(asset, SessionEvent.CAPTURE_PHOTO)

    async def import_media(self, data: bytes, mime_type: str) -> SessionSnapshot:
        """Analyze an uploaded image or clip instead of a camera capture."""
        self._ensure_not_busy()
        if self._state not in {SessionState.IDLE, SessionState.ERROR}:
            raise InvalidTransition(f"Cannot import media from {self._state}")
        kind = kind_for_mime_type(mime_type)
        if kind is None:
            raise UnsupportedMedia(f"Unsupported media type: {mime_type!r}")
        asset = self._new_asset(kind, MediaPayload(data=data, mime_type=mime_type))
        await self._release_camera()
        return await self._analyze(asset, SessionEvent.IMPORT_MEDIA)

    def start_recording(self) -> SessionSnapshot:
        """Start recording a clip from the live preview."""
        if self._state is SessionState.RECORDING:
            raise InvalidRecordingState("Recording is already in progress")
        self._ensure_not_busy()
        self._ensure_live_preview("start recording")
        if self._mode is not CaptureMode.VIDEO:
            raise InvalidTransition("Recording requires video mode")
        try:
            self.capture.start_recording()
        except RecordingFailed:
            logger.exception("Failed to start recording")
            self._error = RECORDING_FAILED_MESSAGE
            self._notify(SessionEvent.START_RECORDING)
            return self.snapshot()
        self._error = None
        self._recording_started_at = self.clock()
        self._transition(SessionState.RECORDING, SessionEvent.START_RECORDING)
        return self.snapshot()

    async def stop_recording(self) -> SessionSnapshot:
        """Stop recording and analyze the finished clip."""
        if self._busy:
            raise OperationInProgress("Recording is already being finalized")
        if self._state is not SessionState.RECORDING:
            raise InvalidRecordingState("No recording is in progress")

        self._busy = True
        payload: MediaPayload | None = None
        try:
            payload = await self.capture.stop_recording()
        except asyncio.CancelledError:
            try:
                await self._finish_recording()
            finally:
                self._transition(
                    SessionState.ERROR,
                    SessionEvent.STOP_RECORDING,
                    error=RECORDING_FAILED_MESSAGE,
                )
            raise
        except Exception:
            logger.exception("Failed to finalize recording")
        await self._finish_recording()

        if payload is None:
            self._error = RECORDING_FAILED_MESSAGE
            await self._enter_idle(SessionEvent.STOP_RECORDING)
            return self.snapshot()

        asset = self._new_asset(MediaKind.VIDEO, payload)
        return await self._analyze(asset, SessionEvent.STOP_RECORDING)

    async def submit_edit(self, instruction: str) -> SessionSnapshot:
        """Edit the displayed image; each accepted edit feeds the next one."""
        if self._state is SessionState.EDITING:
            raise OperationInProgress("An edit is already in progress")
        self._ensure_not_busy()
        if self._state is not SessionState.VIEWING or self._current is None:
            raise InvalidTransition(f"Cannot edit from {self._state}")
        if self._current.kind is not MediaKind.IMAGE:
            raise InvalidTransition("Only images can be edited")
        prompt = instruction.strip()
        if not prompt:
            raise InvalidTransition("Edit instruction must not be empty")

        source = self._edit_source or self._current.payload
        self._error = None
        self._transition(SessionState.EDITING, SessionEvent.SUBMIT_EDIT)
        try:
            result = await self.analysis_client.edit_image(
                source.data, source.mime_type, prompt
            )
        except asyncio.CancelledError:
            self._error = EDIT_FAILED_MESSAGE
            self._transition(SessionState.VIEWING, SessionEvent.EDIT_SETTLED)
            raise
        except Exception:
            logger.exception("Edit request failed for asset %s", self._current.id)
            self._error = EDIT_FAILED_MESSAGE
        else:
            if result.image is not None:
                self._edit_source = result.image
            elif result.text_response:
                self._error = result.text_response
            else:
                self._error = EDIT_NO_CHANGES_MESSAGE
        self._transition(SessionState.VIEWING, SessionEvent.EDIT_SETTLED)
        return self.snapshot()

    async def reset(self) -> SessionSnapshot:
        """Discard the current asset and return to the live preview."""
        self._ensure_not_busy()
        if self._state is not SessionState.VIEWING:
            raise InvalidTransition(f"Cannot reset from {self._state}")
        self._current = None
        self._edit_source = None
        self._error = None
        await self._enter_idle(SessionEvent.RESET)
        return self.snapshot()

    async def restore_from_history(self, record_id: str) -> SessionSnapshot:
        """Show a stored record as the current asset without re-analyzing it."""
        self._ensure_not_busy()
        record = self.history_store.get(record_id)
        if record is None:
            raise HistoryRecordNotFound(record_id)
        await self._release_camera()
        self._current = record
        self._edit_source = None
        self._error = None
        self._transition(SessionState.VIEWING, SessionEvent.RESTORE_FROM_HISTORY)
        return self.snapshot()

    def dismiss_error(self) -> SessionSnapshot:
        """Clear the transient error message."""
        if self._state is not SessionState.ERROR and self._error is not None:
            self._error = None
            self._notify(SessionEvent.ERROR_DISMISSED)
        return self.snapshot()

    async def aclose(self) -> None:
        """Release the camera when the application shuts down."""
        self._recording_started_at = None
        await self.capture.close()

    async def _analyze(self, asset: MediaAsset, event: SessionEvent) -> SessionSnapshot:
        self._current = asset
        self._edit_source = None
        self._error = None
        self._transition(SessionState.ANALYZING, event)

        failure_message = (
            VIDEO_ANALYSIS_FAILED_MESSAGE
            if asset.kind is MediaKind.VIDEO
            else IMAGE_ANALYSIS_FAILED_MESSAGE
        )
        try:
            if asset.kind is MediaKind.VIDEO:
                result = await self.analysis_client.analyze_video(
                    asset.payload.data, asset.payload.mime_type
                )
            else:
                result = await self.analysis_client.analyze_image(
                    asset.payload.data, asset.payload.mime_type
                )
        except asyncio.CancelledError:
            self._error = failure_message
            self._transition(SessionState.VIEWING, SessionEvent.ANALYSIS_SETTLED)
            raise
        except Exception:
            logger.exception("Analysis failed for %s asset %s", asset.kind, asset.id)
            self._error = failure_message
            self._transition(SessionState.VIEWING, SessionEvent.ANALYSIS_SETTLED)
            return self.snapshot()

        analyzed = asset.with_analysis(result)
        self._current = analyzed
        self._commit(analyzed)
        self._transition(SessionState.VIEWING, SessionEvent.ANALYSIS_SETTLED)
        return self.snapshot()

    def _commit(self, record: MediaAsset) -> None:
        try:
            self.history_store.append(record)
        except Exception:
            logger.exception("Failed to persist history record %s", record.id)

    async def _enter_idle(self, event: SessionEvent) -> None:
        self._busy = True
        try:
            zoom = await self.capture.open(self._mode)
        except asyncio.CancelledError:
            try:
                await self.capture.close()
            finally:
                self._busy = False
                self._transition(
                    SessionState.ERROR, event, error=CAMERA_UNAVAILABLE_MESSAGE
                )
            raise
        except DeviceUnavailable as exc:
            logger.warning("Camera unavailable: %s", exc)
            self._zoom_level = 1.0
            self._transition(
                SessionState.ERROR, event, error=CAMERA_UNAVAILABLE_MESSAGE
            )
            return
        finally:
            self._busy = False
        self._zoom_level = _initial_zoom(zoom)
        self._transition(SessionState.IDLE, event)

    async def _release_camera(self) -> None:
        self._busy = True
        try:
            await self.capture.close()
        finally:
            self._busy = False

    async def _finish_recording(self) -> None:
        self._recording_started_at = None
        try:
            await self.capture.close()
        finally:
            self._busy = False

    def _ensure_not_busy(self) -> None:
        if self._busy or self._state in _BUSY_STATES:
            raise OperationInProgress(f"Session is busy ({self._state})")

    def _ensure_live_preview(self, action: str) -> None:
        if self._state is not SessionState.IDLE:
            raise InvalidTransition(f"Cannot {action} from {self._state}")
        if not self.capture.is_open:
            raise InvalidTransition(f"Cannot {action}: camera is not ready")

    def _new_asset(self, kind: MediaKind, payload: MediaPayload) -> MediaAsset:
        now = self.clock()
        asset_id = max(int(now * 1000), self._last_asset_id + 1)
        self._last_asset_id = asset_id
        return MediaAsset(
            id=str(asset_id),
            kind=kind,
            payload=payload,
            created_at=datetime.fromtimestamp(now, tz=UTC),
        )

    def _transition(
        self,
        state: SessionState,
        event: SessionEvent,
        error: str | None = None,
    ) -> None:
        previous = self._state
        self._state = state
        if error is not None:
            self._error = error
        elif state is SessionState.IDLE and previous is SessionState.ERROR:
            self._error = None
        logger.debug("Session %s: %s -> %s", event.value, previous, state)
        self._notify(event)

    def _notify(self, event: SessionEvent) -> None:
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(event, snapshot)
            except Exception:
                logger.exception("Session listener failed on %s", event.value)


def _initial_zoom(zoom: ZoomRange | None) -> float:
    if zoom is None:
        return 1.0
    return zoom.min or 1.0
