from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

from ..coverage import CoverageCache
from ..errors import IndexUnavailable
from ..repo import UsernameIndex

log = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass
class SearchOutcome:
    """How a suggestion search ended.

    status: rejected | skipped | complete | timeout | truncated | failed
    """

    status: str
    pages: int = 0
    rows: int = 0


class SearchCoordinator:
    """Streams username suggestions for a prefix without resending rows the client holds."""

    def __init__(
        self,
        index: UsernameIndex,
        *,
        page_size: int = 1000,
        max_pages: int = 2,
        timeout_ms: int = 100,
        clock: Callable[[], int] = _now_ms,
    ) -> None:
        self.index = index
        self.page_size = max(1, int(page_size))
        # 0-based index of the last page one request may send
        self.max_pages = max(0, int(max_pages))
        self.timeout_ms = int(timeout_ms)
        self._clock = clock

    @staticmethod
    def _commit(cache: CoverageCache, generation: int, prefix: str, last: Optional[str] = None) -> bool:
        """Record the search result unless the cache was reset while it ran."""
        with cache.lock:
            if cache.generation != generation:
                log.debug("Coverage was reset during the search for %r, nothing recorded", prefix)
                return False
            if last is None:
                cache.mark_complete(prefix)
                return True
            return cache.record_delivered(prefix, last)

    def search(
        self,
        cache: CoverageCache,
        prefix: str,
        sent_at_ms: int,
        send: Callable[[list[str]], None],
    ) -> SearchOutcome:
        """Run one suggestion request.

        `sent_at_ms` is the client's send time; twice the observed delay is
        charged against the deadline to account for the way back.
        Each page goes to `send` as soon as it is read. Searches for the same
        cache run one at a time; the cache itself is only locked to read the
        coverage before the first query and to record the result after the last.
        """
        if not prefix:
            return SearchOutcome("rejected")

        with cache.search_lock:
            started = self._clock()
            ping = (started - int(sent_at_ms)) * 2

            with cache.lock:
                generation = cache.generation
                covering = cache.covering_prefix(prefix)
                exclusions = cache.exclusions_for(prefix) if covering is None else None

            if covering is not None:
                log.debug("Suggestions for %r already delivered via %r", prefix, covering)
                return SearchOutcome("skipped")
            if exclusions is None:
                log.debug("Skipping %r: inside an unterminated delivered range", prefix)
                return SearchOutcome("skipped")

            page_num = 0
            total = 0
            try:
                with self.index.session() as db:
                    while True:
                        rows = self.index.page(db, prefix, exclusions, page_num, self.page_size)
                        total += len(rows)
                        send(rows)

                        if len(rows) < self.page_size:
                            self._commit(cache, generation, prefix)
                            log.debug(
                                "Searching for %d usernames matching %r took %dms",
                                total, prefix, self._clock() - started,
                            )
                            return SearchOutcome("complete", page_num + 1, total)

                        elapsed = self._clock() - started
                        if elapsed + ping > self.timeout_ms:
                            self._commit(cache, generation, prefix, rows[-1])
                            log.debug(
                                "Search for %r timed out after %d results, %dms, ping=%dms",
                                prefix, total, elapsed, ping,
                            )
                            return SearchOutcome("timeout", page_num + 1, total)

                        if page_num >= self.max_pages:
                            self._commit(cache, generation, prefix, rows[-1])
                            log.debug("Search for %r truncated at %d results", prefix, total)
                            return SearchOutcome("truncated", page_num + 1, total)

                        page_num += 1
            except IndexUnavailable:
                log.warning("Suggestion query for %r failed after %d page(s)", prefix, page_num, exc_info=True)
                return SearchOutcome("failed", page_num, total)
