# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
from abc import ABC, abstractmethod
from typing import Any

from .config import Config
from .errors import ValidationError
from .models import VIRTUAL_PREVIEW, VIRTUAL_PREVIEW_ID, CaptureSource


class SourceRegistry(ABC):
    """Supplies the capture sources an operator can pick from."""

    @abstractmethod
    def list_sources(self) -> list[CaptureSource]:
        """Current sources; the virtual preview is always among them."""
        pass

    def get(self, source_id: str) -> CaptureSource | None:
        for source in self.list_sources():
            if source.id == source_id:
                return source
        return None


class StaticSourceRegistry(SourceRegistry):
    """Sources given up front or read from the ``sources`` config list."""

    def __init__(self, sources: list[CaptureSource | dict[str, Any]] | None = None):
        self._sources = sources

    def list_sources(self) -> list[CaptureSource]:
        entries = self._sources if self._sources is not None else (Config().get("sources", []) or [])

        result = [VIRTUAL_PREVIEW]
        for entry in entries:
            try:
                source = entry if isinstance(entry, CaptureSource) else CaptureSource.from_dict(entry)
            except ValidationError as e:
                logging.getLogger("sources").warning(f"skipping source {entry!r}: {e.message}")
                continue
            if source.id == VIRTUAL_PREVIEW_ID:
                continue
            result.append(source)
        return result
