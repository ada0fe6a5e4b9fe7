"""History API endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import Response

from nano_lens.api.models import HistoryView, SessionView, asset_view, session_view

if TYPE_CHECKING:
    from nano_lens.containers import AppContainer

router = APIRouter(prefix="/history", tags=["history"])


@router.get("")
async def list_history(request: Request) -> HistoryView:
    """Return stored captures, most recent first."""
    container: AppContainer = request.app.state.container
    records = container.history_store.list_records()
    return HistoryView(records=[asset_view(record) for record in records])


@router.delete("/{record_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_record(record_id: str, request: Request) -> Response:
    """Delete a stored capture; unknown ids are ignored."""
    container: AppContainer = request.app.state.container
    container.history_store.remove(record_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{record_id}/restore")
async def restore_record(record_id: str, request: Request) -> SessionView:
    """Show a stored capture in the session."""
    container: AppContainer = request.app.state.container
    snapshot = await container.session_controller.restore_from_history(record_id)
    return session_view(snapshot)


@router.get("/{record_id}/display")
async def record_display(record_id: str, request: Request) -> Response:
    """Return the bytes of a stored capture."""
    container: AppContainer = request.app.state.container
    record = container.history_store.get(record_id)
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
    payload = record.display_payload
    return Response(content=payload.data, media_type=payload.mime_type)
