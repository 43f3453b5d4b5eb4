"""Ranked Bloom taxonomy used to label skill stages."""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

DEFAULT_PATH = Path(__file__).resolve().parent / "bloom_levels.json"


class BloomLevelConfigError(ValueError):
    """Raised when ``bloom_levels.json`` contains invalid data."""


@dataclass(frozen=True)
class BloomLevel:
    id: str
    rank: int
    label: str
    description: str = ""


def _parse_level(position: int, entry: Any) -> BloomLevel:
    if not isinstance(entry, dict):
        raise BloomLevelConfigError(f"Bloom entry {position} is not an object")
    level_id = str(entry.get("id") or "").strip()
    label = str(entry.get("label") or "").strip()
    if not level_id or not label:
        raise BloomLevelConfigError(f"Bloom entry {position} needs both 'id' and 'label'")
    try:
        rank = int(entry.get("rank", position))
    except (TypeError, ValueError) as exc:
        raise BloomLevelConfigError(f"Bloom level {level_id!r} has a non-integer rank") from exc
    if rank < 1:
        raise BloomLevelConfigError(f"Bloom level {level_id!r} rank must be at least 1")
    return BloomLevel(level_id, rank, label, str(entry.get("description", "")).strip())


class BloomLevelRegistry:
    """Bloom levels keyed by rank; skill ``bloom_level`` values are ranks."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path) if path is not None else DEFAULT_PATH
        self._by_rank: Dict[int, BloomLevel] = {}
        self.reload()

    def reload(self) -> None:
        if not self.path.exists():
            raise FileNotFoundError(f"Bloom levels file not found: {self.path}")
        raw = json.loads(self.path.read_text(encoding="utf-8"))
        if not isinstance(raw, list) or not raw:
            raise BloomLevelConfigError("Bloom levels file must be a non-empty JSON list")

        by_rank: Dict[int, BloomLevel] = {}
        ids = set()
        for position, entry in enumerate(raw, start=1):
            level = _parse_level(position, entry)
            if level.id in ids or level.rank in by_rank:
                raise BloomLevelConfigError(f"Bloom level {level.id!r} repeats an id or rank")
            ids.add(level.id)
            by_rank[level.rank] = level
        self._by_rank = dict(sorted(by_rank.items()))

    @property
    def levels(self) -> List[BloomLevel]:
        return list(self._by_rank.values())

    def sequence(self) -> Sequence[str]:
        """Level ids in ascending rank order."""

        return tuple(level.id for level in self._by_rank.values())

    def by_rank(self, rank: int) -> Optional[BloomLevel]:
        return self._by_rank.get(rank)

    def label_for_rank(self, rank: int) -> str:
        level = self._by_rank.get(rank)
        return level.label if level else "Unknown"

    def get(self, level_id: str) -> Optional[BloomLevel]:
        return next((level for level in self._by_rank.values() if level.id == level_id), None)

    def __iter__(self) -> Iterator[BloomLevel]:
        return iter(self._by_rank.values())

    def __len__(self) -> int:
        return len(self._by_rank)


BLOOM_LEVELS = BloomLevelRegistry()
