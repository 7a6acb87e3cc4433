"""Per-user async locks serializing assistant turns."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from src.utils.logging import get_structured_logger, mask_user_id

logger = get_structured_logger(__name__)


class UserTurnLocks:
    """
    In-process async lock keyed by Slack user ID.

    A thread accepts one active run at a time, so turns for the same user
    queue here instead of racing on the shared thread. Idle keys are removed.
    Must be used from a single event loop.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._refs: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, user_id: str):
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
            self._refs[user_id] = 0
        self._refs[user_id] += 1

        if lock.locked():
            logger.info(
                "Waiting for previous turn to finish",
                slack_user_id=mask_user_id(user_id),
                queued=self._refs[user_id] - 1
            )

        try:
            async with lock:
                yield
        finally:
            self._refs[user_id] -= 1
            if self._refs[user_id] == 0:
                del self._refs[user_id]
                del self._locks[user_id]

    def active_users(self) -> int:
        return len(self._locks)


_turn_locks: Optional[UserTurnLocks] = None


def get_user_turn_locks() -> UserTurnLocks:
    """Locks shared by every path that writes to a user's assistant thread."""
    global _turn_locks
    if _turn_locks is None:
        _turn_locks = UserTurnLocks()
    return _turn_locks
