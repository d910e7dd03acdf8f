"""Error taxonomy for the CMS collections and its HTTP translation."""

import logging

import fastapi
import fastapi.responses

logger = logging.getLogger(__name__)


class CMSError(Exception):
    """Base class for errors surfaced to CMS clients."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(CMSError):
    """A required field is missing or an uploaded file is not acceptable."""

    status_code = 400


class NotFoundError(CMSError):
    """A mutation targets an id absent from its collection."""

    status_code = 404


class PersistenceError(CMSError):
    """Reading or writing a backing file, or committing it, failed."""

    status_code = 500


async def handle_cms_error(
    request: fastapi.Request, exc: Exception
) -> fastapi.responses.JSONResponse:
    """Render a CMSError as the structured failure body."""
    assert isinstance(exc, CMSError)
    if exc.status_code >= 500:
        logger.error('%s %s failed: %s', request.method, request.url.path, exc.message)
    return fastapi.responses.JSONResponse(
        status_code=exc.status_code,
        content={'success': False, 'error': exc.message},
    )


def install_handlers(app: fastapi.FastAPI) -> None:
    """Register the CMSError handler on *app*."""
    app.add_exception_handler(CMSError, handle_cms_error)
