"""Domain models for the capture session state machine."""

from dataclasses import dataclass
from enum import StrEnum

from nano_lens.domain.media import CaptureMode, MediaAsset, MediaPayload


class SessionState(StrEnum):
    """States of the capture session."""

    IDLE = "IDLE"
    RECORDING = "RECORDING"
    ANALYZING = "ANALYZING"
    VIEWING = "VIEWING"
    EDITING = "EDITING"
    ERROR = "ERROR"


class SessionEvent(StrEnum):
    """Transitions reported to session subscribers."""

    INITIALIZE = "initialize"
    SET_MODE = "set_mode"
    CAPTURE_PHOTO = "capture_photo"
    IMPORT_MEDIA = "import_media"
    START_RECORDING = "start_recording"
    STOP_RECORDING = "stop_recording"
    ANALYSIS_SETTLED = "analysis_settled"
    SUBMIT_EDIT = "submit_edit"
    EDIT_SETTLED = "edit_settled"
    RESET = "reset"
    RESTORE_FROM_HISTORY = "restore_from_history"
    ERROR_DISMISSED = "error_dismissed"


@dataclass(frozen=True)
class ZoomRange:
    """Zoom levels supported by the active camera."""

    min: float
    max: float

    def clamp(self, level: float) -> float:
        """Clamp a requested zoom level into the supported range."""
        return max(self.min, min(self.max, level))


@dataclass(frozen=True)
class SessionSnapshot:
    """Read-only view of the session rendered by the presentation layer."""

    state: SessionState
    mode: CaptureMode
    current: MediaAsset | None
    display: MediaPayload | None
    edited: bool
    error: str | None
    camera_ready: bool
    zoom: ZoomRange | None
    zoom_level: float
    recording_seconds: int | None
