"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Header, Request, status
from fastapi.responses import JSONResponse, Response

from nano_lens.api.history import router as history_router
from nano_lens.api.models import (
    EditRequest,
    ModeRequest,
    SessionView,
    ZoomRequest,
    session_view,
)
from nano_lens.app_logging import configure_logging
from nano_lens.containers import AppContainer
from nano_lens.domain.errors import (
    HistoryRecordNotFound,
    InvalidRecordingState,
    InvalidTransition,
    NanoLensError,
    OperationInProgress,
    UnsupportedMedia,
)
from nano_lens.services.session import SessionController

_ERROR_STATUS: dict[type[NanoLensError], int] = {
    OperationInProgress: status.HTTP_409_CONFLICT,
    InvalidTransition: status.HTTP_409_CONFLICT,
    InvalidRecordingState: status.HTTP_409_CONFLICT,
    HistoryRecordNotFound: status.HTTP_404_NOT_FOUND,
    UnsupportedMedia: status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
}


def create_app(container: AppContainer) -> FastAPI:
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        state_container: AppContainer = app.state.container
        state_container.history_store.load()
        snapshot = await state_container.session_controller.initialize()
        logger.info("Session started in %s", snapshot.state)
        yield
        await state_container.session_controller.aclose()
        await state_container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(history_router)

    @app.exception_handler(NanoLensError)
    async def handle_session_error(
        request: Request, exc: NanoLensError
    ) -> JSONResponse:
        status_code = next(
            (
                code
                for error_type, code in _ERROR_STATUS.items()
                if isinstance(exc, error_type)
            ),
            status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
        if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("Unhandled session error: %s", exc)
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/session")
    async def get_session(request: Request) -> SessionView:
        """Return the current session state."""
        return session_view(_controller(request).snapshot())

    @app.put("/session/mode")
    async def set_mode(body: ModeRequest, request: Request) -> SessionView:
        """Switch between photo and video capture."""
        return session_view(await _controller(request).set_mode(body.mode))

    @app.post("/session/initialize")
    async def initialize(request: Request) -> SessionView:
        """Re-acquire the camera after a device failure."""
        return session_view(await _controller(request).initialize())

    @app.post("/session/photo")
    async def capture_photo(request: Request) -> SessionView:
        """Capture a photo and wait for its analysis."""
        return session_view(await _controller(request).capture_photo())

    @app.post("/session/media")
    async def import_media(
        request: Request,
        content_type: str = Header(default="application/octet-stream"),
    ) -> SessionView:
        """Analyze an uploaded image or clip sent as the raw request body."""
        data = await request.body()
        mime_type = content_type.split(";", 1)[0].strip()
        return session_view(await _controller(request).import_media(data, mime_type))

    @app.post("/session/recording/start")
    async def start_recording(request: Request) -> SessionView:
        """Start recording a clip."""
        return session_view(_controller(request).start_recording())

    @app.post("/session/recording/stop")
    async def stop_recording(request: Request) -> SessionView:
        """Stop recording and wait for the clip's analysis."""
        return session_view(await _controller(request).stop_recording())

    @app.put("/session/zoom")
    async def set_zoom(body: ZoomRequest, request: Request) -> SessionView:
        """Apply a best-effort zoom level."""
        return session_view(_controller(request).set_zoom(body.level))

    @app.post("/session/edit")
    async def submit_edit(body: EditRequest, request: Request) -> SessionView:
        """Edit the displayed image and wait for the result."""
        return session_view(await _controller(request).submit_edit(body.instruction))

    @app.post("/session/reset")
    async def reset(request: Request) -> SessionView:
        """Discard the current asset and return to the camera."""
        return session_view(await _controller(request).reset())

    @app.delete("/session/error")
    async def dismiss_error(request: Request) -> SessionView:
        """Dismiss the transient error message."""
        return session_view(_controller(request).dismiss_error())

    @app.get("/session/display")
    async def display(request: Request) -> Response:
        """Return the bytes of the displayed image or clip."""
        snapshot = _controller(request).snapshot()
        if snapshot.display is None:
            return Response(status_code=status.HTTP_404_NOT_FOUND)
        return Response(
            content=snapshot.display.data, media_type=snapshot.display.mime_type
        )

    return app


def _controller(request: Request) -> SessionController:
    container: AppContainer = request.app.state.container
    return container.session_controller
