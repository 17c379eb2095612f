"""Optional JSON file persistence for scenario histories.

The engine works with no persistence at all. When one is supplied it is
offered a snapshot after each completed turn and asked to restore a
scenario's history the first time that scenario is entered.

Directory layout:

    {base}/
      scenarios/
        {stem}.json      ← list of Message objects for one scenario
                           (slugified id, plus a digest if slugify changed it)

Reads and writes are best-effort: a missing or unreadable file restores as
an empty history, and a failed write is logged, never raised into the engine.
Unfinished streaming messages and "welcome back" greetings are not written.
"""

from __future__ import annotations

import hashlib
import logging
import re
import unicodedata
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from pydantic import ValidationError

from tutor_chat.models import BaseMessage, message_list_adapter

logger = logging.getLogger(__name__)

EPHEMERAL_TAGS = frozenset({"session_return"})


class Persistence(Protocol):
    def snapshot(self, scenario_id: str, messages: Sequence[BaseMessage]) -> None: ...

    def restore(self, scenario_id: str) -> list[BaseMessage]: ...

    def delete(self, scenario_id: str) -> None: ...


def slugify(scenario_id: str) -> str:
    """Convert a scenario id to a filesystem-safe file stem.

    "herophilus_menu?topic_id=Circulation & Gas" → "herophilus_menu-topic_id-circulation-gas"
    """
    text = unicodedata.normalize("NFKD", scenario_id)
    text = text.encode("ascii", "ignore").decode("ascii")
    text = text.lower()
    text = re.sub(r"[^a-z0-9_]+", "-", text)
    text = text.strip("-")
    return text or "untitled"


def file_stem(scenario_id: str) -> str:
    """slugify(), plus a short digest whenever slugify had to change the id.

    Plain ids such as "aristotle_general" keep their readable name; any id
    that slugify folds gets a suffix, so two ids never share a file.
    """
    slug = slugify(scenario_id)
    if slug == scenario_id:
        return slug
    digest = hashlib.sha1(scenario_id.encode("utf-8")).hexdigest()[:10]
    return f"{slug}-{digest}"


class JsonFilePersistence:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._root = base_path / "scenarios"
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, scenario_id: str) -> Path:
        return self._root / f"{file_stem(scenario_id)}.json"

    def snapshot(self, scenario_id: str, messages: Sequence[BaseMessage]) -> None:
        to_save = [
            m for m in messages
            if not m.is_streaming and m.tag not in EPHEMERAL_TAGS
        ]
        try:
            self._path(scenario_id).write_bytes(
                message_list_adapter.dump_json(to_save, indent=2)
            )
        except OSError as e:
            logger.warning("Failed to persist chat history for %s: %s", scenario_id, e)

    def restore(self, scenario_id: str) -> list[BaseMessage]:
        path = self._path(scenario_id)
        if not path.is_file():
            return []
        try:
            messages = message_list_adapter.validate_json(path.read_bytes())
        except (OSError, ValidationError) as e:
            logger.warning("Failed to load chat history for %s: %s", scenario_id, e)
            return []
        # Files are keyed by slug; ignore anything written for a different id
        return [m for m in messages if m.scenario_id == scenario_id]

    def delete(self, scenario_id: str) -> None:
        try:
            self._path(scenario_id).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Failed to delete chat history for %s: %s", scenario_id, e)
