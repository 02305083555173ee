from __future__ import annotations

import logging
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional

from memory_engine.domain.errors import StorageError
from memory_engine.domain.workspace import WorkspacePaths
from memory_engine.ports.notes import NotesStore

log = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
MAX_CONTEXT_TOKENS = 2000
MAX_CONTEXT_CHARS = MAX_CONTEXT_TOKENS * CHARS_PER_TOKEN

LONG_TERM_SHARE = 0.6
MIN_TODAY_BUDGET = 100
MARKER_RESERVE = 20
BREAK_SEPARATORS = ("\n\n", ".\n", ". ", "\n")
TRUNCATION_MARKER = "... (truncated)"


def truncate_at_boundary(content: str, max_chars: int) -> str:
    """
    Обрезка до max_chars с маркером. Сначала ищем границу абзаца/предложения/строки/слова
    во второй половине окна, иначе режем по символам. Результат не длиннее max_chars.
    """
    if len(content) <= max_chars:
        return content

    cut = max(0, max_chars - MARKER_RESERVE)
    head = content[:cut]

    for sep in BREAK_SEPARATORS:
        pos = head.rfind(sep)
        if pos > cut // 2:
            return content[: pos + len(sep)] + "\n" + TRUNCATION_MARKER

    pos = head.rfind(" ")
    if pos > cut // 2:
        return content[:pos] + " " + TRUNCATION_MARKER

    return head + TRUNCATION_MARKER


def _atomic_write(path: Path, text: str) -> None:
    tmp = path.with_suffix(path.suffix + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(path)
    except OSError as e:
        log.warning("failed to write notes %s: %s", path, e)
        raise StorageError(f"failed to write {path}: {e}") from e


class FileNotesStore(NotesStore):
    """
    memory/MEMORY.md: долговременные заметки; memory/YYYY-MM-DD.md: заметки дня.
    Пишутся вне хода диалога (инструментом/CLI), здесь запись только атомарная.
    """

    def __init__(self, paths: WorkspacePaths, today: Optional[Callable[[], date]] = None):
        self.paths = paths
        self._today = today or date.today
        try:
            self.paths.memory_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            log.warning("failed to create %s: %s", self.paths.memory_dir, e)

    def today_file(self) -> Path:
        return self.paths.daily_file(self._today())

    def _read(self, path: Path) -> str:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""
        except OSError as e:
            log.warning("failed to read notes %s: %s", path, e)
            return ""

    def read_long_term(self) -> str:
        return self._read(self.paths.long_term_file)

    def read_today(self) -> str:
        return self._read(self.today_file())

    def get_memory_context(self, max_chars: int = MAX_CONTEXT_CHARS) -> str:
        max_chars = max(0, int(max_chars))
        parts: List[str] = []
        remaining = max_chars

        long_term = self.read_long_term()
        if long_term:
            truncated = truncate_at_boundary(long_term, int(max_chars * LONG_TERM_SHARE))
            parts.append(f"## Long-term Memory\n{truncated}")
            remaining = max(0, remaining - len(truncated))

        today = self.read_today()
        if today and remaining > MIN_TODAY_BUDGET:
            parts.append(f"## Today's Notes\n{truncate_at_boundary(today, remaining)}")

        return "\n\n".join(parts)

    def write_long_term(self, text: str) -> None:
        _atomic_write(self.paths.long_term_file, text)

    def append_long_term(self, text: str) -> None:
        self.write_long_term(_append(self.read_long_term(), text))

    def append_today(self, text: str) -> None:
        _atomic_write(self.today_file(), _append(self.read_today(), text))


def _append(existing: str, text: str) -> str:
    text = (text or "").strip()
    if not existing:
        return text + "\n"
    sep = "" if existing.endswith("\n") else "\n"
    return f"{existing}{sep}{text}\n"
