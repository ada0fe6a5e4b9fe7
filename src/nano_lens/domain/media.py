"""Domain models for captured media and model results."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class MediaKind(StrEnum):
    """Kind of a captured asset."""

    IMAGE = "image"
    VIDEO = "video"


class CaptureMode(StrEnum):
    """Camera mode selected by the user."""

    PHOTO = "photo"
    VIDEO = "video"


class MediaPayload(BaseModel):
    """Encoded binary content tagged with its MIME type."""

    model_config = ConfigDict(
        frozen=True, ser_json_bytes="base64", val_json_bytes="base64"
    )

    data: bytes
    mime_type: str


class AnalysisResult(BaseModel):
    """Structured analysis returned by the vision model."""

    model_config = ConfigDict(frozen=True)

    description: str | None = None
    points: list[str] = Field(default_factory=list)


class EditResult(BaseModel):
    """Outcome of an edit request: an image, an explanation, or neither."""

    model_config = ConfigDict(frozen=True)

    image: MediaPayload | None = None
    text_response: str | None = None


class MediaAsset(BaseModel):
    """A captured photo or clip, optionally enriched with its analysis."""

    model_config = ConfigDict(frozen=True)

    id: str
    kind: MediaKind
    payload: MediaPayload
    created_at: datetime
    preview: MediaPayload | None = None
    analysis: AnalysisResult | None = None

    @property
    def display_payload(self) -> MediaPayload:
        """Return the renderable payload for this asset."""
        return self.preview or self.payload

    def with_analysis(self, analysis: AnalysisResult) -> "MediaAsset":
        """Return a copy with analysis attached; analysis is set only once."""
        if self.analysis is not None:
            raise ValueError(f"Asset {self.id} already has an analysis")
        return self.model_copy(update={"analysis": analysis})


HistoryRecord = MediaAsset


def kind_for_mime_type(mime_type: str) -> MediaKind | None:
    """Map a MIME type onto a media kind, if it is one we can analyze."""
    major = mime_type.split("/", 1)[0].strip().lower()
    if major == "image":
        return MediaKind.IMAGE
    if major == "video":
        return MediaKind.VIDEO
    return None
