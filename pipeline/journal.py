"""
Step journal for checkpointed runs.

Records the result of every completed step, keyed by step name. When a
run is retried under the same run id, completed steps are replayed from
the journal instead of executed again, so their stats are counted once.
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Union

from utils.logger import setup_logger

logger = setup_logger(name=__name__)


class StepJournal:
    """
    Step results for one run, optionally persisted as a JSON file.

    With `directory=None` the journal lives in memory only (single-process
    retries and tests).
    """

    def __init__(self, run_id: str, directory: Optional[Union[str, Path]] = None):
        self.run_id = run_id
        self.path: Optional[Path] = Path(directory) / f"{run_id}.json" if directory else None
        self._steps: Dict[str, Any] = {}

        if self.path is not None and self.path.exists():
            with open(self.path, "r", encoding="utf-8") as f:
                self._steps = json.load(f)
            logger.info(f"Loaded journal for run {run_id} ({len(self._steps)} completed steps)")

    def get(self, step_name: str) -> Optional[Any]:
        """Recorded result of a completed step, or None."""
        return self._steps.get(step_name)

    def record(self, step_name: str, result: Any) -> None:
        """Record a completed step's JSON-serializable result."""
        self._steps[step_name] = result
        self._save()

    def completed_steps(self) -> list[str]:
        return list(self._steps)

    def _save(self) -> None:
        if self.path is None:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".json.tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._steps, f, indent=2)
        # Atomic on POSIX: a crash mid-write leaves the previous journal intact
        os.replace(tmp_path, self.path)
