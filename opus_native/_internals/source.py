"""Acquisition of the pinned Opus source tree."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Sequence

from opus_native._internals.config import OPUS_REPOSITORY_URL
from opus_native._internals.errors import (
    CheckoutError,
    CloneError,
    RevisionNotFoundError,
    StaleSourceError,
)

logger = logging.getLogger(__name__)


class GitCommandError(Exception):
    """A git invocation exited with a non-zero status."""

    def __init__(self, args: Sequence[str], returncode: int, stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(stderr.strip() or f"{' '.join(args)} exited with {returncode}")


class GitRunner(Protocol):
    """Runs one git command and returns its stdout."""

    def __call__(self, args: Sequence[str], cwd: Path | None = None) -> str: ...


def run_git(args: Sequence[str], cwd: Path | None = None) -> str:
    """Run git, raising GitCommandError on failure."""
    logger.debug("git %s", " ".join(args))
    try:
        result = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
        )
    except FileNotFoundError as e:
        raise GitCommandError(args, -1, f"git executable not found: {e}") from e
    if result.returncode != 0:
        raise GitCommandError(args, result.returncode, result.stderr)
    return result.stdout


@dataclass(frozen=True)
class SourceTree:
    """A checked-out Opus tree at a pinned version."""

    root: Path
    version: str

    @property
    def include_dir(self) -> Path:
        return self.root / "include"


class SourceAcquirer:
    """
    Guarantees a tagged revision of the Opus sources exists at a path.

    The existence of ``root/include`` is the idempotence signal: once it is
    there, no network access happens again for that root.
    """

    def __init__(
        self,
        runner: GitRunner | None = None,
        repository_url: str = OPUS_REPOSITORY_URL,
        verify_cached: bool = True,
    ):
        """
        Args:
            runner: Callable executing git commands (defaults to the git CLI)
            repository_url: Upstream repository to clone
            verify_cached: Check a cached git checkout against the pinned tag
        """
        self._run = runner or run_git
        self.repository_url = repository_url
        self.verify_cached = verify_cached

    def ensure(self, root: Path | str, version: str) -> SourceTree:
        """Return the source tree at ``root``, cloning it if needed."""
        root = Path(root)

        if root.exists() and (root / "include").exists():
            logger.info("Using existing Opus source at %s", root)
            if self.verify_cached and (root / ".git").exists():
                self._verify_cached(root, version)
            return SourceTree(root=root, version=version)

        logger.warning("Cloning Opus repository with shallow depth...")
        self._clone(root)
        revision = self._resolve(root, version)
        self._checkout(root, version, revision)
        logger.warning("Opus %s cloned successfully (shallow)", version)
        return SourceTree(root=root, version=version)

    def _clone(self, root: Path) -> None:
        root.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._run(
                ["clone", "--depth", "1", "--no-checkout", self.repository_url, str(root)]
            )
        except GitCommandError as e:
            raise CloneError(self.repository_url, root, e.stderr.strip()) from e

    def _resolve(self, root: Path, version: str) -> str:
        # A depth-1 clone only has the default branch head; fetch the tag itself
        try:
            self._run(["fetch", "--depth", "1", "origin", "tag", version], cwd=root)
            revision = self._run(["rev-parse", "--verify", f"{version}^{{commit}}"], cwd=root)
        except GitCommandError as e:
            raise RevisionNotFoundError(version, e.stderr.strip()) from e
        return revision.strip()

    def _checkout(self, root: Path, version: str, revision: str) -> None:
        try:
            self._run(
                ["-c", "advice.detachedHead=false", "checkout", "--detach", "--force", revision],
                cwd=root,
            )
            head = self._run(["rev-parse", "HEAD"], cwd=root).strip()
        except GitCommandError as e:
            raise CheckoutError(version, e.stderr.strip()) from e
        if head != revision:
            raise CheckoutError(version, f"HEAD is {head}, expected {revision}")

    def _verify_cached(self, root: Path, version: str) -> None:
        # Local only: the tag was fetched when the tree was cloned
        try:
            head = self._run(["rev-parse", "HEAD"], cwd=root).strip()
            pinned = self._run(
                ["rev-parse", "--verify", f"{version}^{{commit}}"], cwd=root
            ).strip()
        except GitCommandError as e:
            raise StaleSourceError(root, version, e.stderr.strip() or "tag not present") from e
        if head != pinned:
            raise StaleSourceError(root, version, f"HEAD is {head}")
