"""Change detection and debounce scheduling."""

from .detector import IGNORED_DIRECTORIES, WORKSPACE_DIRNAME, ChangeDetector
from .scheduler import DebounceScheduler

__all__ = ["ChangeDetector", "DebounceScheduler", "IGNORED_DIRECTORIES", "WORKSPACE_DIRNAME"]
