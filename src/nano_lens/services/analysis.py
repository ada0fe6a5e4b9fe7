"""Remote vision analysis and image editing."""

import asyncio
import base64
import binascii
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from nano_lens.domain.errors import AnalysisFailed, EditFailed
from nano_lens.domain.media import AnalysisResult, EditResult, MediaPayload

logger = logging.getLogger(__name__)

EDITED_IMAGE_MIME_TYPE = "image/png"

ANALYSIS_SCHEMA: dict[str, object] = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "points": {
            "type": "array",
            "items": {"type": "string"},
        },
    },
    "required": ["description", "points"],
    "additionalProperties": False,
}

IMAGE_PROMPT = (
    "Identify the main subject of this photo. "
    "Return a one-sentence description and exactly three short, "
    "useful insight points about it."
)

VIDEO_PROMPT = (
    "These frames are sampled in order from a short video clip. "
    "Describe what happens in one sentence and return exactly three short, "
    "useful insight points about the subject or activity."
)

FrameSampler = Callable[[bytes, int], list[bytes]]


class AnalysisClient(Protocol):
    """Contract the session controller relies on for remote calls."""

    async def analyze_image(self, data: bytes, mime_type: str) -> AnalysisResult:
        """Analyze a still image."""

    async def analyze_video(self, data: bytes, mime_type: str) -> AnalysisResult:
        """Analyze a recorded clip."""

    async def edit_image(
        self, data: bytes, mime_type: str, instruction: str
    ) -> EditResult:
        """Apply a natural-language edit to an image."""


class VisionModelClient(Protocol):
    """Interface for the hosted vision model."""

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
        """Return structured analysis data for one or more images."""

    async def edit(
        self, *, model: str, store: bool, image_data_url: str, prompt: str
    ) -> dict[str, object]:
        """Return an edited image as base64 and/or the model's text reply."""


@dataclass
class AnalysisService(AnalysisClient):
    """Builds model requests and converts failures into domain errors."""

    client: VisionModelClient
    model: str
    reasoning_effort: str | None
    store: bool
    frame_sampler: FrameSampler
    timeout_seconds: float = 60.0
    edit_timeout_seconds: float = 120.0
    video_frame_count: int = 6

    async def analyze_image(self, data: bytes, mime_type: str) -> AnalysisResult:
        """Analyze a still image via the configured client."""
        return await self._describe([_to_data_url(data, mime_type)], IMAGE_PROMPT)

    async def analyze_video(self, data: bytes, mime_type: str) -> AnalysisResult:
        """Analyze a clip by sending evenly sampled frames."""
        try:
            frames = await asyncio.to_thread(
                self.frame_sampler, data, self.video_frame_count
            )
        except Exception as exc:
            raise AnalysisFailed(f"Could not decode {mime_type} clip") from exc
        if not frames:
            raise AnalysisFailed(f"No frames could be decoded from {mime_type} clip")
        logger.info("Sampled %s frames from %s clip", len(frames), mime_type)
        urls = [_to_data_url(frame) for frame in frames]
        return await self._describe(urls, VIDEO_PROMPT)

    async def edit_image(
        self, data: bytes, mime_type: str, instruction: str
    ) -> EditResult:
        """Request an edit of the image following the instruction."""
        try:
            raw = await asyncio.wait_for(
                self.client.edit(
                    model=self.model,
                    store=self.store,
                    image_data_url=_to_data_url(data, mime_type),
                    prompt=instruction,
                ),
                timeout=self.edit_timeout_seconds,
            )
        except TimeoutError as exc:
            raise EditFailed("Edit request timed out") from exc
        except Exception as exc:
            raise EditFailed(str(exc) or type(exc).__name__) from exc

        image_b64 = raw.get("image_base64")
        text = raw.get("text")
        image: MediaPayload | None = None
        if isinstance(image_b64, str) and image_b64:
            try:
                decoded = base64.b64decode(image_b64, validate=True)
            except binascii.Error as exc:
                raise EditFailed("Edited image is not valid base64") from exc
            image = MediaPayload(data=decoded, mime_type=EDITED_IMAGE_MIME_TYPE)
        text_response = text.strip() if isinstance(text, str) and text.strip() else None
        return EditResult(image=image, text_response=text_response)

    async def _describe(self, image_data_urls: list[str], prompt: str) -> AnalysisResult:
        try:
            raw = await asyncio.wait_for(
                self.client.describe(
                    model=self.model,
                    reasoning_effort=self.reasoning_effort,
                    store=self.store,
                    image_data_urls=image_data_urls,
                    schema=ANALYSIS_SCHEMA,
                    prompt=prompt,
                ),
                timeout=self.timeout_seconds,
            )
        except TimeoutError as exc:
            raise AnalysisFailed("Analysis request timed out") from exc
        except Exception as exc:
            raise AnalysisFailed(str(exc) or type(exc).__name__) from exc
        try:
            return AnalysisResult.model_validate(raw)
        except ValidationError as exc:
            raise AnalysisFailed("Analysis response did not match schema") from exc


def _to_data_url(data: bytes, mime_type: str | None = None) -> str:
    """Convert bytes to a base64 data URL for image input."""
    resolved = mime_type or _detect_mime_type(data)
    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{resolved};base64,{encoded}"


def _detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    return "image/jpeg"
