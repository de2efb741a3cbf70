import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

# user_id -> (lock, number of holders and waiters)
_locks: dict[str, tuple[asyncio.Lock, int]] = {}


def _acquire_entry(user_id: str) -> asyncio.Lock:
    lock, users = _locks.get(user_id) or (asyncio.Lock(), 0)
    _locks[user_id] = (lock, users + 1)
    return lock


def _release_entry(user_id: str) -> None:
    lock, users = _locks[user_id]
    if users <= 1:
        del _locks[user_id]
    else:
        _locks[user_id] = (lock, users - 1)


@asynccontextmanager
async def user_lock(user_id: str) -> AsyncIterator[None]:
    """Serialize work on one user's claim set within this process.

    The entry for a user is dropped once nobody holds or waits for its lock.
    """
    lock = _acquire_entry(user_id)
    try:
        async with lock:
            yield
    finally:
        _release_entry(user_id)
