"""
State snapshot persistence.

The StateStore treats persistence as an opaque snapshot store:
``load()`` returns the last saved dict (or None), ``save(dict)`` replaces
it. The JSON implementation writes to a temp file and renames so a crash
mid-write never leaves a truncated snapshot behind.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol

from shared.serialization_utils import DecimalEncoder


class StateRepository(Protocol):
    def load(self) -> dict[str, Any] | None: ...

    def save(self, state: dict[str, Any]) -> None: ...


class JsonFileStateRepository:
    """Snapshot stored as pretty-printed JSON (Decimals as strings)."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any] | None:
        if not self._path.exists():
            return None
        with open(self._path, "r", encoding="utf-8") as f:
            return json.load(f)

    def save(self, state: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state, f, cls=DecimalEncoder, indent=2)
            os.replace(tmp_path, self._path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise


class InMemoryStateRepository:
    """Keeps the last snapshot in memory (tests, READ_ONLY dry runs)."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._state = initial
        self.save_count = 0

    def load(self) -> dict[str, Any] | None:
        return self._state

    def save(self, state: dict[str, Any]) -> None:
        # Round-trip through JSON so the stored copy matches what a file would hold
        self._state = json.loads(json.dumps(state, cls=DecimalEncoder))
        self.save_count += 1
