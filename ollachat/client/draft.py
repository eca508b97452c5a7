"""Input-box draft, echoed to disk so it survives restarts of one client context."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

DRAFT_KEY = "input"


class DraftStore:
    """Draft text for one context (think: one browser profile).

    Lifecycle is explicit: load() reads the file, set() edits in memory,
    save() writes back. Other contexts in the same file are left alone.
    """

    def __init__(self, path: str | Path, context: str = "default") -> None:
        self._path = Path(path)
        self._context = context
        self._value: str | None = None

    @property
    def value(self) -> str:
        if self._value is None:
            raise RuntimeError("draft not loaded; call load() first")
        return self._value

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning("ignoring unreadable draft file %s: %s", self._path, e)
            return {}
        return data if isinstance(data, dict) else {}

    def load(self) -> str:
        entry = self._read_all().get(self._context) or {}
        value = entry.get(DRAFT_KEY, "") if isinstance(entry, dict) else ""
        self._value = value if isinstance(value, str) else ""
        return self._value

    def set(self, text: str) -> None:
        self._value = text

    def save(self) -> None:
        data = self._read_all()
        data[self._context] = {DRAFT_KEY: self.value}
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self._path.with_name(self._path.name + ".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False), encoding="utf-8")
        os.replace(tmp, self._path)

    def clear(self) -> None:
        self._value = ""
        self.save()
