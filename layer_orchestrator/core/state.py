"""
Deployment state persistence.

The DeploymentState document is written after every layer reaches a
terminal sub-state, so an interrupted run can be resumed and already
healthy layers skipped. Exactly one orchestrator writes a given file at
a time.

File format:
    {
      "layers": {"near_base": {"layer_name": "near_base", "deployed": true,
                               "outputs": {...}, "timestamp": "..."}},
      "timestamp": "...",
      "version": "1.0.0"
    }
"""

import json
import logging
import os
import tempfile
from pathlib import Path

import layer_orchestrator.constants as CONSTANTS
from .models import DeploymentState

logger = logging.getLogger(__name__)


class StateStore:
    """Loads and atomically saves a DeploymentState JSON document."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> DeploymentState:
        """
        Read the state file.

        Returns:
            The stored state, or an empty DeploymentState when the file
            is missing, unreadable, or corrupt (a warning is logged).
        """
        if not self.path.exists():
            logger.debug(f"No state file at {self.path}; starting empty")
            return DeploymentState(version=CONSTANTS.STATE_VERSION)

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
            state = DeploymentState.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Could not read state file {self.path}, ignoring it: {e}")
            return DeploymentState(version=CONSTANTS.STATE_VERSION)

        logger.debug(f"Loaded state for layers: {list(state.layers)}")
        return state

    def save(self, state: DeploymentState) -> None:
        """
        Write the state via a temp file and os.replace.

        Readers never observe a half-written document.
        """
        state.version = CONSTANTS.STATE_VERSION
        directory = self.path.parent
        directory.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

        logger.debug(f"State saved to {self.path}")
