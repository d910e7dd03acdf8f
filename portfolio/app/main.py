"""Portfolio application - public API, CMS studio API and uploaded photos."""

import asyncio
import contextlib
from collections.abc import AsyncGenerator

import fastapi
import fastapi.responses

import common.app

from . import settings
from .cms import errors
from .cms import routes as cms_routes
from .saves import autosave
from .saves import routes as saves_routes


@contextlib.asynccontextmanager
async def lifespan(app: fastapi.FastAPI) -> AsyncGenerator[None, None]:
    """Run the auto-save loop for the lifetime of the app."""
    saver = autosave.autosaver
    task: asyncio.Task[None] | None = None
    if settings.autosave_enabled():
        task = asyncio.create_task(saver.run())
    try:
        yield
    finally:
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await saver.flush()


app = common.app.create_app('Portfolio', lifespan=lifespan)
errors.install_handlers(app)


@app.api_route(
    '/uploads/{file_path:path}', methods=['GET', 'HEAD'], include_in_schema=False
)
async def uploaded_file(file_path: str) -> fastapi.responses.FileResponse:
    """Serve an uploaded photo.

    The directory is looked up per request, so uploads are reachable even
    when the directory was created after startup.
    """
    root = settings.uploads_root().resolve()
    target = (root / file_path).resolve()
    if not target.is_relative_to(root) or not target.is_file():
        raise fastapi.HTTPException(status_code=404, detail='Not found')
    return fastapi.responses.FileResponse(target)


app.include_router(cms_routes.admin_router, prefix='/api')
app.include_router(saves_routes.router, prefix='/api')
app.include_router(cms_routes.public_router, prefix='/api')
