"""Per-login knowledge of which usernames the client already holds.

Two ordered structures, both compared ordinally (case-sensitive):

- completed prefixes: every indexed username starting with one of them was
  delivered. Kept prefix-free so the predecessor of a query is always the
  covering prefix when one exists.
- delivered ranges: alternating start/end markers. [start, end] was streamed
  in full, `end` being the last delivered key. Ranges stay disjoint and are
  merged on insert.
"""
from __future__ import annotations

import threading
from bisect import bisect_left, bisect_right, insort
from typing import Optional

_MAX_CODE_POINT = 0x10FFFF


def next_prefix(prefix: str) -> str:
    """Smallest string greater than every string starting with `prefix` (usernam -> usernan)."""
    last = ord(prefix[-1])
    if last >= _MAX_CODE_POINT:
        return prefix + chr(_MAX_CODE_POINT)
    return prefix[:-1] + chr(last + 1)


class CoverageCache:
    def __init__(self) -> None:
        # Guards the structures below. Held only for in-memory steps, never across I/O.
        self.lock = threading.RLock()
        # One search at a time per login. Only the search coordinator takes it.
        self.search_lock = threading.Lock()
        # Bumped by clear(); a search started before a reset records nothing.
        self.generation = 0
        self._completed: list[str] = []
        self._keys: list[str] = []
        self._is_start: dict[str, bool] = {}

    # ---------------------------
    # Completed prefixes
    # ---------------------------

    def completed_prefixes(self) -> list[str]:
        with self.lock:
            return list(self._completed)

    def covering_prefix(self, prefix: str) -> Optional[str]:
        """The completed prefix that `prefix` starts with, if any."""
        with self.lock:
            i = bisect_right(self._completed, prefix)
            if i == 0:
                return None
            candidate = self._completed[i - 1]
            return candidate if prefix.startswith(candidate) else None

    def mark_complete(self, prefix: str) -> None:
        if not prefix:
            return
        with self.lock:
            if self.covering_prefix(prefix) is not None:
                return
            lo = bisect_left(self._completed, prefix)
            hi = lo
            while hi < len(self._completed) and self._completed[hi].startswith(prefix):
                hi += 1
            self._completed[lo:hi] = [prefix]

    # ---------------------------
    # Delivered ranges
    # ---------------------------

    def markers(self) -> list[tuple[str, bool]]:
        """(key, is_start) pairs in key order."""
        with self.lock:
            return [(k, self._is_start[k]) for k in self._keys]

    def delivered_ranges(self) -> list[tuple[str, str]]:
        with self.lock:
            out: list[tuple[str, str]] = []
            start: Optional[str] = None
            for k in self._keys:
                if self._is_start[k]:
                    start = k
                elif start is not None:
                    out.append((start, k))
                    start = None
            return out

    def _floor(self, key: str) -> Optional[int]:
        i = bisect_right(self._keys, key)
        return i - 1 if i > 0 else None

    def _ceiling(self, key: str) -> Optional[int]:
        i = bisect_left(self._keys, key)
        return i if i < len(self._keys) else None

    def _put(self, key: str, is_start: bool) -> None:
        if key not in self._is_start:
            insort(self._keys, key)
        self._is_start[key] = is_start

    def _drop(self, key: str) -> None:
        i = bisect_left(self._keys, key)
        if i < len(self._keys) and self._keys[i] == key:
            del self._keys[i]
            del self._is_start[key]

    def exclusions_for(self, prefix: str) -> Optional[list[tuple[str, str]]]:
        """Delivered [lo, hi] spans inside the key range of `prefix*`.

        Returns None when an unterminated delivered range starting at or before
        `prefix` already spans everything the query could return.
        `prefix` is compared with that start ordinally (case-sensitive), like
        every other comparison in this cache, although the index match ignores
        case.
        """
        with self.lock:
            i = self._floor(prefix)
            if i is None:
                i = self._ceiling(prefix)
            if i is None:
                return []

            upper = next_prefix(prefix)
            if not upper > self._keys[i]:
                return []
            window = self._keys[i:bisect_left(self._keys, upper)]

            out: list[tuple[str, str]] = []
            for n, key in enumerate(window):
                if not self._is_start[key]:
                    if n == 0 and key == prefix:
                        # a range ends on the prefix itself
                        out.append((key, key))
                    continue
                if n == len(window) - 1:
                    if prefix >= key:
                        return None
                    out.append((key, upper))
                elif not self._is_start[window[n + 1]]:
                    out.append((key, window[n + 1]))
            return out

    def record_delivered(self, first: str, last: str) -> bool:
        """Merge [first, last] into the delivered ranges.

        Returns False (and records nothing) for empty or inverted spans, which
        case-insensitive index matches can produce.
        """
        if not first or not last or last <= first:
            return False

        with self.lock:
            fi = self._floor(first)
            ci = self._ceiling(last)
            before = self._keys[fi] if fi is not None else None
            after = self._keys[ci] if ci is not None else None

            lo = fi + 1 if fi is not None else 0
            hi = ci if ci is not None else len(self._keys)
            for key in self._keys[lo:hi]:
                del self._is_start[key]
            del self._keys[lo:hi]

            need_start = True
            if before is not None:
                if self._is_start[before]:
                    need_start = False
                elif before == first:
                    # an earlier range ends exactly here: join them
                    self._drop(before)
                    need_start = False

            need_end = True
            if after is not None:
                if not self._is_start[after]:
                    need_end = False
                elif after == last:
                    self._drop(after)
                    need_end = False

            if need_start:
                self._put(first, True)
            if need_end:
                self._put(last, False)
            return True

    def clear(self) -> None:
        with self.lock:
            self.generation += 1
            self._completed.clear()
            self._keys.clear()
            self._is_start.clear()
