"""Application settings read from environment variables.

Values are read on every call rather than at import time so that tests
(and the admin changing the environment between runs) see fresh values.
"""

import os
import pathlib

MEBIBYTE = 1024 * 1024


def _flag(name: str, default: str) -> bool:
    """Interpret an environment variable as a boolean switch."""
    return os.environ.get(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


def data_dir() -> pathlib.Path:
    """Directory holding the JSON collection files."""
    return pathlib.Path(os.environ.get('DATA_DIR', 'data'))


def public_dir() -> pathlib.Path:
    """Root of the statically served files."""
    return pathlib.Path(os.environ.get('PUBLIC_DIR', 'public'))


def uploads_root() -> pathlib.Path:
    """Directory served at /uploads."""
    return public_dir() / 'uploads'


def upload_dir() -> pathlib.Path:
    """Directory uploaded photos are written to."""
    return uploads_root() / 'photos'


def max_upload_bytes() -> int:
    """Per-file upload ceiling in bytes."""
    return int(os.environ.get('MAX_UPLOAD_MB', '10')) * MEBIBYTE


def autosave_enabled() -> bool:
    return _flag('AUTOSAVE_ENABLED', '1')


def autosave_interval_seconds() -> float:
    return float(os.environ.get('AUTOSAVE_INTERVAL_SECONDS', '300'))


def git_repo_dir() -> pathlib.Path:
    return pathlib.Path(os.environ.get('GIT_REPO_DIR', '.'))


def git_remote() -> str:
    return os.environ.get('GIT_REMOTE', 'origin')


def git_branch() -> str:
    return os.environ.get('GIT_BRANCH', 'main')


def git_push_enabled() -> bool:
    return _flag('GIT_PUSH', '1')


def git_author() -> tuple[str, str]:
    """Name and email used for CMS commits."""
    return (
        os.environ.get('GIT_AUTHOR_NAME', 'Portfolio CMS'),
        os.environ.get('GIT_AUTHOR_EMAIL', 'cms@localhost'),
    )


def geocode_uploads() -> bool:
    """Whether to reverse-geocode EXIF GPS coordinates on upload."""
    return _flag('GEOCODE_UPLOADS', '0')
