"""Pluggable domain analyzers."""

from .base import Domain
from .builtin import BUILTIN_PROFILES, CLAUDE_CODE_AUTOMATION
from .loader import DomainLoadError, DomainLoader
from .models import AnalysisResult, CycleContext, DomainProfile
from .pipeline import DomainPipeline, DomainRun

__all__ = [
    "AnalysisResult",
    "BUILTIN_PROFILES",
    "CLAUDE_CODE_AUTOMATION",
    "CycleContext",
    "Domain",
    "DomainLoadError",
    "DomainLoader",
    "DomainPipeline",
    "DomainProfile",
    "DomainRun",
]
