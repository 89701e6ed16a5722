"""
store.py - Key-value persistence with staged, all-or-nothing writes.

Storage is the authoritative store. Contracts never write to it directly:
the host wraps every top-level message in a StagedStorage, hands each
contract a PrefixedStorage view of that buffer, and either commits the
buffer in one step or discards it.

Values are stored as-is. Callers store immutable values only (frozen
dataclasses, ints, Decimals, tuples), so no copying is needed on read.
"""

from __future__ import annotations
from bisect import bisect_left, insort
from typing import Any, Dict, Iterator, List, Optional, Tuple

from .core import NotFound


# settings for pagination
DEFAULT_LIMIT = 10
MAX_LIMIT = 30

# Marks a key removed inside a staged buffer.
_TOMBSTONE = object()


def _in_range(key: bytes, start: Optional[bytes], end: Optional[bytes]) -> bool:
    if start is not None and key < start:
        return False
    if end is not None and key >= end:
        return False
    return True


class Storage:
    """
    Authoritative key-value map with keys kept in sorted order.

    range() is start-inclusive and end-exclusive, like every range in this
    package.
    """

    def __init__(self):
        self._data: Dict[bytes, Any] = {}
        self._keys: List[bytes] = []

    def get(self, key: bytes) -> Optional[Any]:
        return self._data.get(key)

    def set(self, key: bytes, value: Any) -> None:
        if value is None:
            raise ValueError("Cannot store None; use remove()")
        if key not in self._data:
            insort(self._keys, key)
        self._data[key] = value

    def remove(self, key: bytes) -> None:
        if key in self._data:
            del self._data[key]
            del self._keys[bisect_left(self._keys, key)]

    def range(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        ascending: bool = True,
    ) -> Iterator[Tuple[bytes, Any]]:
        lo = 0 if start is None else bisect_left(self._keys, start)
        hi = len(self._keys) if end is None else bisect_left(self._keys, end)
        keys = self._keys[lo:hi]
        if not ascending:
            keys = list(reversed(keys))
        for key in keys:
            yield key, self._data[key]

    def __len__(self) -> int:
        return len(self._keys)


class StagedStorage:
    """
    Write buffer layered over a parent store.

    Reads fall through to the parent for keys not written in this buffer.
    commit() applies every buffered write to the parent at once; discard()
    forgets them. A StagedStorage can itself be the parent of another one,
    which is how a single instruction is rolled back without losing the
    rest of the transaction.
    """

    def __init__(self, parent):
        self.parent = parent
        self._writes: Dict[bytes, Any] = {}
        self._closed = False

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError("Staged storage already committed or discarded")

    def get(self, key: bytes) -> Optional[Any]:
        if key in self._writes:
            value = self._writes[key]
            return None if value is _TOMBSTONE else value
        return self.parent.get(key)

    def set(self, key: bytes, value: Any) -> None:
        self._check_open()
        if value is None:
            raise ValueError("Cannot store None; use remove()")
        self._writes[key] = value

    def remove(self, key: bytes) -> None:
        self._check_open()
        self._writes[key] = _TOMBSTONE

    def range(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        ascending: bool = True,
    ) -> Iterator[Tuple[bytes, Any]]:
        merged: Dict[bytes, Any] = dict(self.parent.range(start, end))
        for key, value in self._writes.items():
            if not _in_range(key, start, end):
                continue
            if value is _TOMBSTONE:
                merged.pop(key, None)
            else:
                merged[key] = value
        for key in sorted(merged, reverse=not ascending):
            yield key, merged[key]

    @property
    def pending_writes(self) -> int:
        return len(self._writes)

    def commit(self) -> None:
        self._check_open()
        for key, value in self._writes.items():
            if value is _TOMBSTONE:
                self.parent.remove(key)
            else:
                self.parent.set(key, value)
        self._writes.clear()
        self._closed = True

    def discard(self) -> None:
        self._writes.clear()
        self._closed = True


def _length_prefixed(namespace: bytes) -> bytes:
    if len(namespace) > 0xFFFF:
        raise ValueError("namespace too long")
    return len(namespace).to_bytes(2, "big") + namespace


def _prefix_end(prefix: bytes) -> Optional[bytes]:
    """Smallest key greater than every key starting with prefix."""
    data = bytearray(prefix)
    while data:
        if data[-1] < 0xFF:
            data[-1] += 1
            return bytes(data)
        data.pop()
    return None


class PrefixedStorage:
    """View of a store restricted to keys under one namespace."""

    def __init__(self, storage, namespace: bytes):
        self.storage = storage
        self.prefix = _length_prefixed(namespace)

    def get(self, key: bytes) -> Optional[Any]:
        return self.storage.get(self.prefix + key)

    def set(self, key: bytes, value: Any) -> None:
        self.storage.set(self.prefix + key, value)

    def remove(self, key: bytes) -> None:
        self.storage.remove(self.prefix + key)

    def range(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        ascending: bool = True,
    ) -> Iterator[Tuple[bytes, Any]]:
        lo = self.prefix + (start or b"")
        hi = self.prefix + end if end is not None else _prefix_end(self.prefix)
        n = len(self.prefix)
        for key, value in self.storage.range(lo, hi, ascending):
            yield key[n:], value


# ============================================================================
# TYPED ACCESSORS
# ============================================================================

class Singleton:
    """A single value stored under a fixed key."""

    def __init__(self, storage, key: bytes):
        self.storage = storage
        self.key = _length_prefixed(key)

    def load(self) -> Any:
        value = self.storage.get(self.key)
        if value is None:
            raise NotFound(f"{self.key[2:].decode(errors='replace')} not found")
        return value

    def may_load(self) -> Optional[Any]:
        return self.storage.get(self.key)

    def save(self, value: Any) -> None:
        self.storage.set(self.key, value)

    def remove(self) -> None:
        self.storage.remove(self.key)


class Bucket:
    """Values keyed under a common prefix, iterable in key order."""

    def __init__(self, storage, prefix: bytes):
        self.view = PrefixedStorage(storage, prefix)
        self.name = prefix.decode(errors="replace")

    def load(self, key: bytes) -> Any:
        value = self.view.get(key)
        if value is None:
            raise NotFound(f"{self.name} entry {key!r} not found")
        return value

    def may_load(self, key: bytes) -> Optional[Any]:
        return self.view.get(key)

    def save(self, key: bytes, value: Any) -> None:
        self.view.set(key, value)

    def remove(self, key: bytes) -> None:
        self.view.remove(key)

    def range(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        ascending: bool = True,
    ) -> Iterator[Tuple[bytes, Any]]:
        return self.view.range(start, end, ascending)


# ============================================================================
# PAGINATION
# ============================================================================

def clamp_limit(limit: Optional[int]) -> int:
    """Page size: DEFAULT_LIMIT when unset, never above MAX_LIMIT."""
    if limit is None:
        return DEFAULT_LIMIT
    return max(0, min(limit, MAX_LIMIT))


def calc_range_start(start_after: Optional[bytes]) -> Optional[bytes]:
    """First key after start_after, formed by appending a 1 byte."""
    if start_after is None:
        return None
    return start_after + b"\x01"


def paginate(
    bucket: Bucket,
    start_after: Optional[bytes] = None,
    limit: Optional[int] = None,
) -> List[Tuple[bytes, Any]]:
    """One ascending page of a bucket, strictly after start_after."""
    page = []
    for item in bucket.range(calc_range_start(start_after)):
        if len(page) >= clamp_limit(limit):
            break
        page.append(item)
    return page


class ReadOnlyStorage:
    """View of a store that refuses writes; handed to query handlers."""

    def __init__(self, storage):
        self.storage = storage

    def get(self, key: bytes) -> Optional[Any]:
        return self.storage.get(key)

    def set(self, key: bytes, value: Any) -> None:
        raise PermissionError("Queries cannot write to storage")

    def remove(self, key: bytes) -> None:
        raise PermissionError("Queries cannot write to storage")

    def range(
        self,
        start: Optional[bytes] = None,
        end: Optional[bytes] = None,
        ascending: bool = True,
    ) -> Iterator[Tuple[bytes, Any]]:
        return self.storage.range(start, end, ascending)
