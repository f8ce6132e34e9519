"""
Doctor and patient directories.

Repositories injected into the scheduling core in place of lists loaded
once at startup. The host application owns them and decides when to
refresh.
"""

from typing import Dict, Generic, List, Optional, Protocol, TypeVar

from loguru import logger

from scheduling.models.doctor import Doctor
from scheduling.models.patient import Patient


class Searchable(Protocol):
    id: int

    def matches(self, query: str) -> bool: ...


T = TypeVar("T", bound=Searchable)


class _Directory(Generic[T]):
    """Cached, searchable list of directory entries."""

    name = "directory"

    def __init__(self):
        self._entries: Dict[int, T] = {}
        self._loaded = False

    @property
    def loaded(self) -> bool:
        return self._loaded

    def replace(self, entries: List[T]) -> None:
        """Replace the cached entries, keeping the source order."""
        self._entries = {entry.id: entry for entry in entries}
        self._loaded = True
        logger.info(f"{self.name}: cached {len(self._entries)} entries")

    def list(self) -> List[T]:
        return list(self._entries.values())

    def get(self, entry_id: int) -> Optional[T]:
        return self._entries.get(entry_id)

    def search(self, query: str) -> List[T]:
        """Entries matching the query; all entries for a blank query."""
        return [entry for entry in self._entries.values() if entry.matches(query)]


class DoctorDirectory(_Directory[Doctor]):
    name = "doctors"

    def __init__(self, client):
        super().__init__()
        self._client = client

    async def refresh(self) -> List[Doctor]:
        """Reload doctors from the clinic backend."""
        self.replace(await self._client.list_doctors())
        return self.list()


class PatientDirectory(_Directory[Patient]):
    name = "patients"

    def __init__(self, client):
        super().__init__()
        self._client = client

    async def refresh(self, query: Optional[str] = None) -> List[Patient]:
        """
        Reload patients from the clinic backend.

        With a query only the matching patients are fetched and cached,
        which keeps large patient bases out of memory.
        """
        self.replace(await self._client.search_patients(query))
        return self.list()

    def recent(self, limit: int = 5) -> List[Patient]:
        """Most recently registered patients, newest first."""
        return sorted(self._entries.values(), key=lambda p: p.id, reverse=True)[:limit]
