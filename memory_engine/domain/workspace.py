from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Union


@dataclass(frozen=True)
class WorkspacePaths:
    """Пути рабочего каталога: собираются один раз при старте и передаются в сторы."""

    workspace: Path
    memory_dir: Path
    long_term_file: Path

    @staticmethod
    def from_workspace(workspace: Union[str, Path]) -> "WorkspacePaths":
        ws = Path(workspace).expanduser()
        memory_dir = ws / "memory"
        return WorkspacePaths(workspace=ws, memory_dir=memory_dir, long_term_file=memory_dir / "MEMORY.md")

    def daily_file(self, day: date) -> Path:
        return self.memory_dir / f"{day.isoformat()}.md"

    def vector_store_file(self, namespace: str) -> Path:
        return self.memory_dir / f"vectors.{namespace}.json"

    def conversations_dir(self) -> Path:
        return self.workspace / "conversations"
