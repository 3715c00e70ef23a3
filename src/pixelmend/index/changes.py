"""Working-tree change detection.

Confidence scoring boosts files changed since the last commit, and the
heuristic fixer reverts edits against the committed version.  Both questions
go through a :class:`ChangeDetector`.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Iterable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


@runtime_checkable
class ChangeDetector(Protocol):
    def modified_files(self, root: Path) -> set[Path]:
        ...

    def baseline_content(self, path: Path) -> str | None:
        ...


class GitChangeDetector:
    """Asks git which files differ from HEAD and what HEAD contained."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout

    def _git(self, args: list[str], cwd: Path) -> str | None:
        try:
            result = subprocess.run(
                ["git", *args],
                capture_output=True,
                text=True,
                cwd=str(cwd),
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.debug("git %s failed: %s", " ".join(args), e)
            return None
        if result.returncode != 0:
            logger.debug("git %s exited %d: %s", args[0], result.returncode, result.stderr.strip())
            return None
        return result.stdout

    def modified_files(self, root: Path) -> set[Path]:
        root = Path(root).resolve()
        cwd = root if root.is_dir() else root.parent
        found: set[Path] = set()
        for args in (
            ["diff", "--name-only", "--relative", "HEAD"],
            ["ls-files", "--others", "--exclude-standard"],
        ):
            out = self._git(args, cwd)
            if out is None:
                continue
            for name in out.splitlines():
                if name.strip():
                    found.add((cwd / name.strip()).resolve())
        if found:
            logger.info("%d file(s) modified since HEAD", len(found))
        return found

    def baseline_content(self, path: Path) -> str | None:
        path = Path(path).resolve()
        # "HEAD:./name" resolves relative to cwd.
        return self._git(["show", f"HEAD:./{path.name}"], path.parent)


class StaticChangeDetector:
    """Change detector backed by explicit lists, for tests and --modified."""

    def __init__(
        self,
        modified: Iterable[Path | str] = (),
        baselines: dict[Path | str, str] | None = None,
        fallback: ChangeDetector | None = None,
    ):
        self._modified = {Path(p).resolve() for p in modified}
        self._baselines = {Path(p).resolve(): text for p, text in (baselines or {}).items()}
        self._fallback = fallback

    def modified_files(self, root: Path) -> set[Path]:
        return set(self._modified)

    def baseline_content(self, path: Path) -> str | None:
        path = Path(path).resolve()
        if path in self._baselines:
            return self._baselines[path]
        if self._fallback is not None:
            return self._fallback.baseline_content(path)
        return None

    @classmethod
    def from_list_file(
        cls,
        list_file: Path,
        base: Path | None = None,
        fallback: ChangeDetector | None = None,
    ) -> StaticChangeDetector:
        """Read one path per line, relative to *base* (default: the list's directory)."""
        base = base or list_file.parent
        paths = []
        for line in list_file.read_text().splitlines():
            line = line.strip()
            if line and not line.startswith("#"):
                paths.append(base / line)
        return cls(modified=paths, fallback=fallback)
