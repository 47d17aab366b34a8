"""
In-memory table of runs that are still executing.
"""

import threading
from typing import Dict, List, Optional

from promptchain.models.execution import ActiveRun


class RunRegistry:
    """
    Active runs keyed by run id.

    Entries are added when a run starts and removed once when it reaches a
    terminal state. Status lookups may come from other threads (sync route
    handlers run in a thread pool), so every access holds the lock.
    """

    def __init__(self):
        self._runs: Dict[str, ActiveRun] = {}
        self._lock = threading.Lock()

    def register(self, run_id: str, workflow_id: str) -> None:
        with self._lock:
            if run_id in self._runs:
                raise ValueError(f"Run already registered: {run_id}")
            self._runs[run_id] = ActiveRun(workflow_id=workflow_id)

    def deregister(self, run_id: str) -> bool:
        """Remove a run. Returns False if it was not registered."""
        with self._lock:
            return self._runs.pop(run_id, None) is not None

    def get(self, run_id: str) -> Optional[ActiveRun]:
        with self._lock:
            entry = self._runs.get(run_id)
            return entry.model_copy() if entry else None

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._runs)

    def __contains__(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._runs

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)
