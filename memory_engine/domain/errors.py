from __future__ import annotations


class MemoryEngineError(Exception):
    pass


class ProviderError(MemoryEngineError):
    """Completion/embedding недоступны: сеть, auth, rate limit, кривой ответ."""


class StorageError(MemoryEngineError):
    """Запись на диск не удалась; видимое состояние не изменилось."""
