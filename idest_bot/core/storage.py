"""Client-side state storage behind a small capability interface."""
from typing import Dict, Optional, Protocol

from ..database import crud

# One-shot flag: show the "queued for grading" notice on the next submissions view
GRADING_QUEUED_KEY = "assignment_grading_queued"


class ClientStorage(Protocol):
    """Key/value storage the workflow depends on instead of a concrete backend."""

    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...

    async def remove_item(self, key: str) -> None: ...


class MemoryClientStorage:
    """Session-scoped storage: lives as long as the object."""

    def __init__(self):
        self._items: Dict[str, str] = {}

    async def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._items[key] = value

    async def remove_item(self, key: str) -> None:
        self._items.pop(key, None)


class DatabaseClientStorage:
    """Per-user storage in the ``client_state`` table, survives restarts."""

    def __init__(self, telegram_id: int):
        self.telegram_id = telegram_id

    async def get_item(self, key: str) -> Optional[str]:
        return await crud.get_client_state(self.telegram_id, key)

    async def set_item(self, key: str, value: str) -> None:
        await crud.set_client_state(self.telegram_id, key, value)

    async def remove_item(self, key: str) -> None:
        await crud.delete_client_state(self.telegram_id, key)


async def mark_grading_queued(storage: ClientStorage) -> None:
    await storage.set_item(GRADING_QUEUED_KEY, "1")


async def pop_grading_queued(storage: ClientStorage) -> bool:
    """Read the flag once; the next read is False until it is set again."""
    queued = await storage.get_item(GRADING_QUEUED_KEY) == "1"
    if queued:
        await storage.remove_item(GRADING_QUEUED_KEY)
    return queued
