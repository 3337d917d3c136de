"""Run the configured domains over a cycle context."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, Sequence

from .base import Domain
from .builtin import BUILTIN_PROFILES
from .loader import DomainLoader
from .models import AnalysisResult, CycleContext

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DomainRun:
    domain: Domain
    result: AnalysisResult


class DomainPipeline:
    """Calls each active domain and collects its rendered instructions."""

    def __init__(self, domains: Sequence[Domain], *, dry_run: bool = False) -> None:
        self._domains = list(domains)
        self.dry_run = dry_run

    @classmethod
    def from_loader(cls, loader: DomainLoader | None = None, *, dry_run: bool = False) -> "DomainPipeline":
        """Built-in domains followed by loaded profiles; a loaded id replaces a built-in one."""

        profiles = {profile.id: profile for profile in BUILTIN_PROFILES}
        if loader is not None:
            profiles.update(loader.load_all())
        for profile in profiles.values():
            if not profile.enabled:
                logger.info("Domain disabled", extra={"domain": profile.id})
        return cls(
            [Domain(profile) for profile in profiles.values() if profile.enabled],
            dry_run=dry_run,
        )

    @property
    def domains(self) -> list[Domain]:
        return list(self._domains)

    def run(self, context: CycleContext) -> Iterable[DomainRun]:
        for domain in self._domains:
            if not domain.should_activate(context):
                logger.info("Skipping domain", extra={"domain": domain.id})
                continue
            logger.info("Running domain", extra={"domain": domain.id})
            yield DomainRun(domain=domain, result=domain.analyze(context))


__all__ = ["DomainPipeline", "DomainRun"]
