"""Smoke scripts checked out at the requested ref."""

from __future__ import annotations

import logging
import tempfile
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from releasegate.exec import ExecError, ExecResult, ExecTimeout, Runner, ToolNotFound, run_command

logger = logging.getLogger(__name__)


class ScriptCheckoutError(RuntimeError):
    """The ref holding the smoke scripts could not be checked out."""


@dataclass(frozen=True)
class CheckedOutRef:
    ref: str
    commit: str
    path: Path


def is_relative_script(script: Path | None) -> bool:
    return script is not None and not script.is_absolute()


def resolve_script(script: Path | None, root: Path) -> Path | None:
    if script is None or script.is_absolute():
        return script
    return root / script


class ScriptCheckout:
    """Detached git worktree of ``ref``, removed again when the run ends."""

    def __init__(self, runner: Runner = run_command, *, git: str = "git", timeout: float = 120.0):
        self._run = runner
        self._git_bin = git
        self._timeout = timeout

    def _git(self, repo: Path, *args: str, check: bool = True) -> ExecResult:
        return self._run([self._git_bin, "-C", str(repo), *args], check=check, timeout=self._timeout)

    @contextmanager
    def checkout(self, repo: Path, ref: str) -> Iterator[CheckedOutRef]:
        """Check out ``ref`` of ``repo`` into a scoped temporary directory.

        Raises:
            ScriptCheckoutError: If ``ref`` does not resolve to a commit or the
                worktree cannot be created.
        """
        try:
            commit = self._git(repo, "rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}").stdout.strip()
        except (ExecError, ExecTimeout, ToolNotFound) as exc:
            raise ScriptCheckoutError(f"cannot resolve ref {ref!r} in {repo}: {exc}") from exc
        if not commit:
            raise ScriptCheckoutError(f"cannot resolve ref {ref!r} in {repo}")

        with tempfile.TemporaryDirectory(prefix="releasegate-scripts-") as workdir:
            path = Path(workdir) / "checkout"
            try:
                self._git(repo, "worktree", "add", "--detach", str(path), commit)
            except (ExecError, ExecTimeout, ToolNotFound) as exc:
                self._prune(repo)
                raise ScriptCheckoutError(f"cannot check out {ref!r} from {repo}: {exc}") from exc

            logger.info("smoke scripts from %s (%s)", ref, commit[:12])
            try:
                yield CheckedOutRef(ref=ref, commit=commit, path=path)
            finally:
                self._remove(repo, path)

    def _remove(self, repo: Path, path: Path) -> None:
        try:
            removed = self._git(repo, "worktree", "remove", "--force", str(path), check=False)
        except (ExecTimeout, ToolNotFound) as exc:
            logger.warning("could not remove scripts worktree %s: %s", path, exc)
            return
        if not removed.ok:
            logger.warning("could not remove scripts worktree %s: %s", path, removed.output)
        self._prune(repo)

    def _prune(self, repo: Path) -> None:
        try:
            self._git(repo, "worktree", "prune", check=False)
        except (ExecTimeout, ToolNotFound) as exc:
            logger.warning("git worktree prune failed: %s", exc)
