"""Screenshot capture by running an external command."""

from __future__ import annotations

import logging
import shlex
import subprocess
from pathlib import Path

from pixelmend.core.errors import CapabilityError

logger = logging.getLogger(__name__)


class CommandRenderer:
    """Runs a command template to render a surface.

    The template may use ``{surface}`` and ``{output}``; the command must
    write a PNG screenshot to ``{output}``, e.g.::

        node capture.js --page {surface} --out {output}
    """

    def __init__(self, command: str, cwd: Path | None = None, timeout: float = 60.0):
        if not command.strip():
            raise ValueError("A render command is required ([verify] render_command)")
        self.command = command
        self.cwd = cwd
        self.timeout = timeout

    def render(self, surface_id: str, output_dir: Path) -> Path:
        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        output = output_dir / f"{surface_id}.png"
        args = [
            part.format(surface=surface_id, output=str(output))
            for part in shlex.split(self.command)
        ]
        logger.debug("Rendering %s: %s", surface_id, " ".join(args))

        try:
            result = subprocess.run(
                args,
                capture_output=True,
                text=True,
                cwd=str(self.cwd) if self.cwd else None,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise CapabilityError("render", f"command timed out after {self.timeout:g}s") from e
        except OSError as e:
            raise CapabilityError("render", f"cannot run {args[0]}: {e}") from e

        if result.returncode != 0:
            raise CapabilityError(
                "render", f"exit status {result.returncode}: {result.stderr.strip()[:200]}"
            )
        if not output.is_file():
            raise CapabilityError("render", f"command did not write {output}")
        return output
