"""API routes for saving CMS changes to version control."""

import asyncio
import typing

import fastapi
import pydantic

from . import autosave

router = fastapi.APIRouter(prefix='/cms')


class SaveRequest(pydantic.BaseModel):
    """Optional description of a manual save."""

    message: str | None = None
    changes: typing.Any = None


@router.post('/save-changes')
async def save_changes(request: SaveRequest | None = None) -> dict[str, typing.Any]:
    """Commit pending changes now, unless clean or already saving."""
    request = request or SaveRequest()
    saver = autosave.autosaver
    commit_hash = await saver.save(request.message, request.changes)
    return {
        'success': True,
        'saved': commit_hash is not None,
        'commitHash': commit_hash or saver.last_commit,
    }


@router.get('/save-changes')
async def save_history(
    limit: int = fastapi.Query(20, ge=1, le=200),
) -> dict[str, typing.Any]:
    """Return the most recent saves."""
    commits = await asyncio.to_thread(autosave.autosaver.sink.history, limit)
    return {'success': True, 'commits': [c.to_json() for c in commits]}


@router.get('/save-status')
async def save_status() -> dict[str, typing.Any]:
    """Report whether unsaved changes exist and whether a save is running."""
    return autosave.autosaver.status()
