from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, List, Optional

from app.shared.utils.time import utcnow


@dataclass
class WaitingQueueEntry:
    user_id: str
    priority: int
    requested_at: datetime


class WaitingQueue:
    """
    Admission queue for seats: priority desc, then requested_at asc.

    Re-sorted on every insertion.
    """

    def __init__(self, entries: Optional[List[WaitingQueueEntry]] = None):
        self._entries: List[WaitingQueueEntry] = list(entries or [])
        self._sort()

    def _sort(self):
        self._entries.sort(key=lambda e: (-e.priority, e.requested_at))

    def add(
        self,
        user_id: str,
        priority: int = 0,
        requested_at: Optional[datetime] = None,
    ) -> bool:
        """Returns False (and keeps the original entry) if already queued"""
        if user_id in self:
            return False
        self._entries.append(
            WaitingQueueEntry(
                user_id=user_id,
                priority=priority,
                requested_at=requested_at or utcnow(),
            )
        )
        self._sort()
        return True

    def remove(self, user_id: str) -> bool:
        for index, entry in enumerate(self._entries):
            if entry.user_id == user_id:
                del self._entries[index]
                return True
        return False

    def get(self, user_id: str) -> Optional[WaitingQueueEntry]:
        for entry in self._entries:
            if entry.user_id == user_id:
                return entry
        return None

    def position_of(self, user_id: str) -> Optional[int]:
        for index, entry in enumerate(self._entries):
            if entry.user_id == user_id:
                return index + 1
        return None

    def peek(self) -> Optional[WaitingQueueEntry]:
        return self._entries[0] if self._entries else None

    def pop(self) -> Optional[WaitingQueueEntry]:
        return self._entries.pop(0) if self._entries else None

    def user_ids(self) -> List[str]:
        return [entry.user_id for entry in self._entries]

    def entries(self) -> List[WaitingQueueEntry]:
        return list(self._entries)

    def __contains__(self, user_id: str) -> bool:
        return any(entry.user_id == user_id for entry in self._entries)

    def __iter__(self) -> Iterator[WaitingQueueEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
