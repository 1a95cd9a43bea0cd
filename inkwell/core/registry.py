"""
Live-run registry: lets HTTP handlers address a running pipeline by id.
"""

import threading
from typing import TYPE_CHECKING, Dict, List, Optional

if TYPE_CHECKING:
    from .pipeline import AgentPipeline


class RunRegistry:
    """Keyed lookup of active pipelines. Holds no run data of its own."""

    def __init__(self):
        self._runs: Dict[str, "AgentPipeline"] = {}
        self._lock = threading.Lock()

    def add(self, run_id: str, pipeline: "AgentPipeline") -> None:
        with self._lock:
            if run_id in self._runs and self._runs[run_id] is not pipeline:
                raise ValueError(f"Run {run_id} is already registered")
            self._runs[run_id] = pipeline

    def get(self, run_id: str) -> Optional["AgentPipeline"]:
        with self._lock:
            return self._runs.get(run_id)

    def remove(self, run_id: str) -> Optional["AgentPipeline"]:
        with self._lock:
            return self._runs.pop(run_id, None)

    def active_ids(self) -> List[str]:
        with self._lock:
            return list(self._runs)

    def __contains__(self, run_id: str) -> bool:
        with self._lock:
            return run_id in self._runs

    def __len__(self) -> int:
        with self._lock:
            return len(self._runs)
