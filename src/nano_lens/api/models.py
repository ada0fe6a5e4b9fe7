"""Pydantic models for the session HTTP API."""

from datetime import datetime

from pydantic import BaseModel, Field

from nano_lens.domain.media import AnalysisResult, CaptureMode, MediaAsset, MediaKind
from nano_lens.domain.session import SessionSnapshot, SessionState


class ModeRequest(BaseModel):
    """Request to switch capture mode."""

    mode: CaptureMode


class ZoomRequest(BaseModel):
    """Request to change the zoom level."""

    level: float


class EditRequest(BaseModel):
    """Natural-language edit instruction."""

    instruction: str = Field(max_length=2000)


class AssetView(BaseModel):
    """Asset metadata without the binary payload."""

    id: str
    kind: MediaKind
    mime_type: str
    size_bytes: int
    created_at: datetime
    analysis: AnalysisResult | None = None


class ZoomView(BaseModel):
    """Supported zoom range."""

    min: float
    max: float


class SessionView(BaseModel):
    """Session state returned to clients."""

    state: SessionState
    mode: CaptureMode
    current: AssetView | None = None
    display_mime_type: str | None = None
    edited: bool = False
    error: str | None = None
    camera_ready: bool = False
    zoom: ZoomView | None = None
    zoom_level: float = 1.0
    recording_seconds: int | None = None


class HistoryView(BaseModel):
    """History listing."""

    records: list[AssetView]


def asset_view(asset: MediaAsset) -> AssetView:
    """Build the metadata view for an asset."""
    return AssetView(
        id=asset.id,
        kind=asset.kind,
        mime_type=asset.payload.mime_type,
        size_bytes=len(asset.payload.data),
        created_at=asset.created_at,
        analysis=asset.analysis,
    )


def session_view(snapshot: SessionSnapshot) -> SessionView:
    """Build the client view of a session snapshot."""
    return SessionView(
        state=snapshot.state,
        mode=snapshot.mode,
        current=asset_view(snapshot.current) if snapshot.current else None,
        display_mime_type=snapshot.display.mime_type if snapshot.display else None,
        edited=snapshot.edited,
        error=snapshot.error,
        camera_ready=snapshot.camera_ready,
        zoom=(
            ZoomView(min=snapshot.zoom.min, max=snapshot.zoom.max)
            if snapshot.zoom
            else None
        ),
        zoom_level=snapshot.zoom_level,
        recording_seconds=snapshot.recording_seconds,
    )
