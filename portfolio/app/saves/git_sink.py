"""Git-backed persistence of the CMS data files.

The sink stages the JSON collections and uploaded photos, commits them and
pushes best-effort. Callers only see a commit hash or a PersistenceError.
"""

import dataclasses
import logging
import pathlib
import subprocess
from collections.abc import Sequence

from .. import settings
from ..cms.errors import PersistenceError

logger = logging.getLogger(__name__)

GIT_BIN = 'git'
# Field separator for `git log` output; never appears in commit subjects.
_SEP = '\x1f'


@dataclasses.dataclass
class Commit:
    """One entry of the save history."""

    hash: str
    message: str
    date: str

    def to_json(self) -> dict[str, str]:
        return dataclasses.asdict(self)


class GitSink:
    """Commits the CMS files in a git working tree."""

    def __init__(
        self,
        repo_dir: pathlib.Path,
        paths: Sequence[pathlib.Path],
        remote: str = 'origin',
        branch: str = 'main',
        push: bool = True,
        author: tuple[str, str] = ('Portfolio CMS', 'cms@localhost'),
    ) -> None:
        self.repo_dir = repo_dir
        self.paths = list(paths)
        self.remote = remote
        self.branch = branch
        self.push = push
        self.author = author

    @classmethod
    def from_settings(cls) -> 'GitSink':
        """Build a sink for the configured repository and data locations."""
        return cls(
            repo_dir=settings.git_repo_dir(),
            paths=[settings.data_dir(), settings.uploads_root()],
            remote=settings.git_remote(),
            branch=settings.git_branch(),
            push=settings.git_push_enabled(),
            author=settings.git_author(),
        )

    def _git(self, *args: str, check: bool = True) -> subprocess.CompletedProcess[str]:
        name, email = self.author
        cmd = [GIT_BIN, '-c', f'user.name={name}', '-c', f'user.email={email}', *args]
        try:
            result = subprocess.run(
                cmd, cwd=self.repo_dir, capture_output=True, text=True, check=False
            )
        except OSError as e:
            raise PersistenceError(f'Could not run git: {e}') from e
        if check and result.returncode != 0:
            detail = (result.stderr or result.stdout).strip()
            raise PersistenceError(f'git {args[0]} failed: {detail}')
        return result

    def _pathspecs(self) -> list[str]:
        return [str(p.resolve()) for p in self.paths if p.exists()]

    def head(self) -> str:
        """Hash of the current HEAD commit."""
        return self._git('rev-parse', 'HEAD').stdout.strip()

    def commit(self, message: str) -> str:
        """Stage and commit the CMS files, returning the resulting HEAD hash.

        When nothing changed, no commit is made and the current HEAD is
        returned. A failed push is logged and does not fail the save.
        """
        pathspecs = self._pathspecs()
        if pathspecs:
            self._git('add', '-A', '--', *pathspecs)
        staged = self._git('diff', '--cached', '--quiet', check=False)
        if staged.returncode == 0:
            logger.info('Nothing to commit')
            return self.head()
        if staged.returncode != 1:
            raise PersistenceError(f'git diff failed: {staged.stderr.strip()}')

        self._git('commit', '-m', message)
        commit_hash = self.head()
        logger.info('Committed %s: %s', commit_hash[:8], message)

        if self.push:
            pushed = self._git('push', self.remote, self.branch, check=False)
            if pushed.returncode != 0:
                logger.warning(
                    'Push to %s/%s failed, commit kept locally: %s',
                    self.remote,
                    self.branch,
                    pushed.stderr.strip(),
                )
        return commit_hash

    def history(self, limit: int = 20) -> list[Commit]:
        """Return the most recent commits, newest first."""
        result = self._git(
            'log', f'-n{limit}', f'--pretty=format:%H{_SEP}%s{_SEP}%cI'
        )
        commits: list[Commit] = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            commit_hash, message, date = line.split(_SEP, 2)
            commits.append(Commit(hash=commit_hash, message=message, date=date))
        return commits
