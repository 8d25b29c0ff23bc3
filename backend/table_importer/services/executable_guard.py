"""Presence/permission check for the external converter executables."""

from __future__ import annotations

import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)


class ExecutableGuard:
    """Confirms a converter binary exists and may be executed.

    The check runs on every job rather than once at startup: deployments swap
    the tool directory underneath a running process.
    """

    def __init__(self, executable: str | Path) -> None:
        self.executable = Path(executable)

    def verify(self) -> bool:
        if not self.executable.is_file():
            logger.error(f"Converter not found at {self.executable}")
            return False
        if not os.access(self.executable, os.X_OK):
            logger.error(f"Converter at {self.executable} is not executable")
            return False
        return True
