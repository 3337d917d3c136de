"""Domain profile loading from YAML files."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Iterable

import yaml

from .builtin import BUILTIN_PROFILES
from .models import DomainProfile

logger = logging.getLogger(__name__)

PROFILE_PATTERNS = ("*.yml", "*.yaml")


class DomainLoadError(RuntimeError):
    """Raised when one or more domain profile files cannot be used."""


def _entries(document: Any) -> list[Any]:
    if document is None:
        return []
    if isinstance(document, dict) and "domains" in document:
        listed = document["domains"]
        return list(listed) if isinstance(listed, list) else [listed]
    if isinstance(document, list):
        return document
    return [document]


class DomainLoader:
    """Read extra domains from ``*.yml``/``*.yaml`` files.

    A file holds a single profile mapping or a ``domains:`` list of them.
    ``extends: <id>`` starts a profile from a built-in (or previously loaded)
    domain and overrides only the keys it sets. A profile reusing a built-in
    id replaces that built-in; ``enabled: false`` switches it off.
    """

    def __init__(
        self,
        search_paths: Iterable[Path] | None = None,
        *,
        base_profiles: Iterable[DomainProfile] = BUILTIN_PROFILES,
    ) -> None:
        self._search_paths: list[Path] = []
        for path in search_paths or []:
            path = Path(path)
            if path.is_dir():
                self._search_paths.append(path)
            else:
                logger.debug("Skipping missing domain directory", extra={"path": str(path)})
        self._base = {profile.id: profile for profile in base_profiles}

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def _files(self) -> list[Path]:
        files: list[Path] = []
        for base in self._search_paths:
            for pattern in PROFILE_PATTERNS:
                files.extend(sorted(base.glob(pattern)))
        return files

    def _resolve(self, entry: Any, loaded: dict[str, DomainProfile]) -> DomainProfile:
        if not isinstance(entry, dict):
            raise ValueError("each domain entry must be a mapping")
        data = dict(entry)
        parent_id = data.pop("extends", None)
        if parent_id is not None:
            parent = loaded.get(parent_id) or self._base.get(parent_id)
            if parent is None:
                raise ValueError(f"extends unknown domain '{parent_id}'")
            data = {**parent.model_dump(), **data}
        return DomainProfile.model_validate(data)

    def load_all(self) -> dict[str, DomainProfile]:
        """Load every profile; later files override earlier ids."""

        profiles: dict[str, DomainProfile] = {}
        errors: list[str] = []

        for path in self._files():
            try:
                entries = _entries(yaml.safe_load(path.read_text(encoding="utf-8")))
            except (OSError, yaml.YAMLError) as exc:
                errors.append(f"Cannot read domain file {path}: {exc}")
                continue

            for entry in entries:
                try:
                    profile = self._resolve(entry, profiles)
                except ValueError as exc:
                    errors.append(f"Invalid domain in {path}: {exc}")
                    continue
                if profile.id in self._base and profile.id not in profiles:
                    logger.info(
                        "Domain file overrides built-in domain",
                        extra={"domain": profile.id, "path": str(path), "enabled": profile.enabled},
                    )
                profiles[profile.id] = profile

        if errors:
            raise DomainLoadError("; ".join(errors))
        return profiles


__all__ = ["DomainLoadError", "DomainLoader"]
