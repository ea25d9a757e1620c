from __future__ import annotations

import asyncio
import re
from pathlib import Path

from pydantic import ValidationError

from traverse.config import settings
from traverse.models.domain import RequirementsChecklist
from traverse.services import logger as log_service


def corridor_key(corridor: str) -> str:
    """``"India → Germany"`` -> ``"india-germany"``."""
    key = re.sub(r"\s*→\s*", "-", corridor.strip().lower())
    key = re.sub(r"\s+", "-", key)
    return re.sub(r"[^a-z0-9-]", "", key)


class CorridorCache:
    """Read-only store of precomputed requirement checklists, one JSON file per corridor."""

    def __init__(self, directory: str | Path | None = None):
        self.directory = Path(directory or settings.corridor_cache_dir)

    def path_for(self, corridor: str) -> Path:
        return self.directory / f"{corridor_key(corridor)}.json"

    async def load(self, corridor: str) -> RequirementsChecklist | None:
        path = self.path_for(corridor)
        try:
            raw = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as exc:
            log_service.log_event(
                event_type="corridor_cache_invalid",
                message=f"Cannot read corridor file {path.name}",
                error=str(exc),
            )
            return None
        try:
            return RequirementsChecklist.model_validate_json(raw)
        except ValidationError as exc:
            log_service.log_event(
                event_type="corridor_cache_invalid",
                message=f"Ignoring unreadable corridor file {path.name}",
                error=str(exc),
            )
            return None
