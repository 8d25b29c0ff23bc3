"""Invocation of the external table converters as child processes."""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol, Sequence

from table_importer.core.errors import ConversionError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConversionResult:
    returncode: int
    stdout: str
    stderr: str


class Converter(Protocol):
    def convert(
        self, args: Sequence[str], *, input_path: Path, output_dir: Path
    ) -> ConversionResult:
        """Run one conversion; raise ``ConversionError`` on failure."""
        ...


class ExternalConverter:
    """Runs a converter binary from inside its own directory.

    The tool locates its input and output through ``RDF_PATH`` and
    ``OUTPUT_DIR``; positional arguments are passed straight through.
    """

    def __init__(self, executable: str | Path, timeout: float | None = None) -> None:
        self.executable = Path(executable)
        self.working_dir = self.executable.parent
        self.timeout = timeout

    def _env(self, input_path: Path, output_dir: Path) -> dict[str, str]:
        env = dict(os.environ)
        env["PATH"] = f"{self.working_dir}{os.pathsep}{env.get('PATH', '')}"
        env["RDF_PATH"] = str(input_path)
        env["OUTPUT_DIR"] = str(output_dir)
        return env

    def convert(
        self, args: Sequence[str], *, input_path: Path, output_dir: Path
    ) -> ConversionResult:
        command = [str(self.executable), *args]
        logger.info(
            f"Starting conversion: {command} (cwd={self.working_dir}, "
            f"input={input_path}, output_dir={output_dir})"
        )
        try:
            completed = subprocess.run(
                command,
                cwd=self.working_dir,
                env=self._env(input_path, output_dir),
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ConversionError(
                f"Conversion timed out after {self.timeout}s",
                stdout=_as_text(e.stdout),
                stderr=_as_text(e.stderr),
            ) from e
        except OSError as e:
            raise ConversionError(f"Conversion failed: {e}") from e

        if completed.stdout:
            logger.info(f"Conversion stdout: {completed.stdout.strip()}")
        if completed.stderr:
            logger.warning(f"Conversion stderr: {completed.stderr.strip()}")

        if completed.returncode != 0:
            raise ConversionError(
                f"Conversion failed with exit code {completed.returncode}",
                completed.stderr.strip() or completed.stdout.strip() or None,
                stdout=completed.stdout,
                stderr=completed.stderr,
                returncode=completed.returncode,
            )
        return ConversionResult(completed.returncode, completed.stdout, completed.stderr)


def _as_text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def wait_for_output(
    path: Path,
    timeout: float,
    poll_interval: float,
    *,
    settle: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Path:
    """Poll until the converter's output file shows up.

    The converter may still be flushing when its process exits, so a short
    poll replaces a fixed post-exit delay. ``settle`` adds an optional pause
    once the file exists.
    """
    deadline = clock() + timeout
    while not path.exists():
        if clock() >= deadline:
            raise ConversionError(
                "Conversion did not produce output",
                f"Expected output file {path.name} was not generated",
            )
        sleep(poll_interval)
    if settle:
        sleep(settle)
    return path
