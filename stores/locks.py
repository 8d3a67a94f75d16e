"""
In-process locks keyed by identity fragment
"""

import asyncio
import hashlib
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Iterable, List, Optional


def fragment_lock_keys(
    owner_scope: str,
    email: Optional[str] = None,
    phone_number: Optional[str] = None
) -> List[str]:
    """Lock keys for the fragments of one request, in acquisition order"""
    keys = []
    if email:
        keys.append(f"{owner_scope}\x1femail\x1f{email}")
    if phone_number:
        keys.append(f"{owner_scope}\x1fphone\x1f{phone_number}")
    return sorted(keys)


def advisory_lock_id(key: str) -> int:
    """Map a lock key onto the signed 64-bit space of pg_advisory_xact_lock"""
    digest = hashlib.blake2b(key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class KeyedLock:
    """
    Registry of asyncio locks created on demand per key

    Keys are always taken in sorted order so two holders of overlapping
    key sets cannot deadlock. Entries are dropped once nobody holds or
    waits for them.
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self):
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, keys: Iterable[str]) -> AsyncIterator[None]:
        registered = []
        owned = []
        try:
            for key in sorted(set(keys)):
                lock = self._locks.setdefault(key, asyncio.Lock())
                self._users[key] = self._users.get(key, 0) + 1
                registered.append(key)
                await lock.acquire()
                owned.append(key)
            yield
        finally:
            for key in reversed(owned):
                self._locks[key].release()
            for key in registered:
                self._users[key] -= 1
                if not self._users[key]:
                    del self._users[key]
                    del self._locks[key]
