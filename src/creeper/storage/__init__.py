"""Storage abstractions for Creeper."""

from .models import AnalysisRecord, DaemonRecord, PendingImprovement, ProjectState
from .state import StateStore, probe_process, project_key

__all__ = [
    "AnalysisRecord",
    "DaemonRecord",
    "PendingImprovement",
    "ProjectState",
    "StateStore",
    "probe_process",
    "project_key",
]
