"""
Backfill Orchestrator.
Asks the ingestion layer to re-sync accounts when a window turns out to have
no history for one or more flow metrics, then refetches once the data lands.

Each window is identified by a key ("current:<from>:<to>:<ids>" or
"prev:<from>:<to>:<ids>"); the part before the first colon is its scope.
Each scope remembers the last key it attempted, so the current and previous
windows are tracked independently and a key is attempted at most once while
it stays the attempted key of its scope. It is released by release() or by
a cooldown rejection from the sync endpoint ("... please wait 42s ..."),
which also suppresses the key until the cooldown has elapsed.
"""

import asyncio
import logging
import re
import time
from typing import Awaitable, Callable, Optional, Sequence

from backfill_status import BackfillStatus
from dashboard_config import BACKFILL_DEBOUNCE_SECONDS

logger = logging.getLogger(__name__)

_COOLDOWN_RE = re.compile(r"wait\s+(\d+)s", re.IGNORECASE)

DEFAULT_ERROR_MESSAGE = "Backfill failed"

TriggerSync = Callable[[str, Optional[str]], Awaitable[object]]
Refetch = Callable[[], Awaitable[object]]


def parse_cooldown_seconds(message: Optional[str]) -> Optional[int]:
    """Seconds to wait from a cooldown message, or None if it isn't one."""
    if not message:
        return None
    m = _COOLDOWN_RE.search(message)
    return int(m.group(1)) if m else None


def format_backfill_error_details(error: Optional[str]) -> list[str]:
    """The two lines shown under a failed backfill."""
    if not error:
        return ["Unknown error.", "Try syncing from Settings."]
    return [error, "Try syncing from Settings if this keeps happening."]


def key_scope(key: str) -> str:
    return key.split(":", 1)[0]


class BackfillOrchestrator:
    """Owns backfill status, per-key cooldowns, attempted keys per scope and the debounced refetch."""

    def __init__(
        self,
        trigger_sync: TriggerSync,
        refetch: Refetch,
        clock: Callable[[], float] = time.time,
        debounce_seconds: float = BACKFILL_DEBOUNCE_SECONDS,
    ):
        self._trigger_sync = trigger_sync
        self._refetch = refetch
        self._clock = clock
        self._debounce_seconds = debounce_seconds

        self.status: str = BackfillStatus.IDLE
        self.error: Optional[str] = None

        # key -> epoch seconds before which the key must not be retried
        self._next_allowed_at: dict[str, float] = {}
        # scope -> last key attempted for that scope
        self._attempted: dict[str, str] = {}
        self._tasks: set[asyncio.Task] = set()
        # keys whose sync triggers have not all returned yet; superseded keys do not hold RUNNING
        self._in_flight: list[str] = []

        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._refetch_task: Optional[asyncio.Task] = None

    def is_attempted(self, key: str) -> bool:
        return self._attempted.get(key_scope(key)) == key

    def cooldown_remaining(self, key: str) -> float:
        next_at = self._next_allowed_at.get(key)
        if next_at is None:
            return 0.0
        return max(0.0, next_at - self._clock())

    # -----------------------------------------------------------------
    # Backfill
    # -----------------------------------------------------------------

    def start_backfill(
        self,
        key: str,
        from_date: Optional[str],
        account_ids: Sequence[str],
    ) -> Optional[asyncio.Task]:
        """
        Post one sync trigger per account for the window identified by key.

        Returns the running task, or None when the attempt was skipped
        (cooldown active, or this key is already the attempted key of its
        scope). Must be called from inside a running event loop.
        """
        remaining = self.cooldown_remaining(key)
        if remaining > 0:
            logger.debug(f"Backfill {key} suppressed by cooldown ({remaining:.0f}s left)")
            return None
        if self.is_attempted(key):
            return None

        self._attempted[key_scope(key)] = key
        self._in_flight.append(key)
        self.status = BackfillStatus.RUNNING
        self.error = None
        logger.info(f"Starting backfill {key} for {len(account_ids)} account(s) from {from_date}")

        task = asyncio.create_task(self._run(key, from_date, list(account_ids)))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, key: str, from_date: Optional[str], account_ids: list[str]) -> None:
        try:
            await asyncio.gather(*(self._trigger_sync(a, from_date) for a in account_ids))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._on_failure(key, str(e) or DEFAULT_ERROR_MESSAGE)
            return
        finally:
            self._in_flight.remove(key)

        if not self.is_attempted(key):
            logger.info(f"Backfill {key} finished after the window changed; status left as {self.status}")
            return

        self._next_allowed_at.pop(key, None)
        if self.status == BackfillStatus.RUNNING and not any(self.is_attempted(k) for k in self._in_flight):
            self.status = BackfillStatus.IDLE
            self.error = None
        logger.info(f"Backfill {key} complete, refetching")
        await self._safe_refetch()

    def _on_failure(self, key: str, message: str) -> None:
        attempted = self.is_attempted(key)
        seconds = parse_cooldown_seconds(message)
        if seconds is not None:
            self._next_allowed_at[key] = self._clock() + seconds
            logger.info(f"Backfill {key} hit sync cooldown, retry allowed in {seconds}s")
            if attempted:
                del self._attempted[key_scope(key)]

        if not attempted:
            logger.info(f"Backfill {key} failed after the window changed: {message}")
            return
        if seconds is None:
            logger.warning(f"Backfill {key} failed: {message}")

        self.status = BackfillStatus.ERROR
        self.error = message

    def release(self, scope: Optional[str] = None) -> None:
        """Forget the attempted key of one scope (or all) so it may be attempted again. Cooldowns stay."""
        if scope is None:
            self._attempted.clear()
        else:
            self._attempted.pop(scope, None)

    async def wait(self) -> None:
        """Await in-flight backfills and any pending refetch, including ones they start (used on shutdown and in tests)."""
        while True:
            pending = [t for t in (*self._tasks, self._refetch_task) if t and not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending)

    # -----------------------------------------------------------------
    # Sync-complete debouncing
    # -----------------------------------------------------------------

    def notify_sync_complete(self) -> None:
        """
        Called once per finished account sync. A burst of completions is
        coalesced into one refetch fired after a quiet period.
        """
        loop = asyncio.get_running_loop()
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
        self._debounce_handle = loop.call_later(self._debounce_seconds, self._fire_refetch)

    @property
    def refetch_scheduled(self) -> bool:
        return self._debounce_handle is not None

    def _fire_refetch(self) -> None:
        self._debounce_handle = None
        if self.status == BackfillStatus.ERROR:
            self.status = BackfillStatus.IDLE
            self.error = None
        self._refetch_task = asyncio.ensure_future(self._safe_refetch())

    async def _safe_refetch(self) -> None:
        try:
            await self._refetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Refetch after sync failed: {e}")

    def close(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None
        for task in (*self._tasks, self._refetch_task):
            if task and not task.done():
                task.cancel()
