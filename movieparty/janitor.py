"""
Asset lifecycle janitor.

Deletes uploaded media that no live playback state references: released
assets shortly after their party ends, and orphans on a periodic sweep.
Nothing in here raises into the caller or kills the periodic task.
"""
import asyncio
import errno
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set

from .state import RoomStore

logger = logging.getLogger("movieparty")

PARTIAL_PREFIX = ".upload-"
LOCKED_ERRNOS = frozenset({errno.EBUSY, errno.ETXTBSY, errno.EPERM, errno.EACCES})


def is_locked_error(exc: BaseException) -> bool:
    return isinstance(exc, OSError) and exc.errno in LOCKED_ERRNOS


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with a fixed delay for lock/busy failures"""

    attempts: int = 2
    delay: float = 5.0

    async def run(self, func, *args):
        attempts = max(self.attempts, 1)
        for attempt in range(1, attempts + 1):
            try:
                return func(*args)
            except OSError as e:
                if not is_locked_error(e) or attempt >= attempts:
                    raise
                logger.info("Resource busy (%s), retrying in %.1fs", e, self.delay)
                await asyncio.sleep(self.delay)


class Janitor:
    def __init__(self, store: RoomStore, uploads_dir: Path, *,
                 sweep_interval: float = 300.0,
                 orphan_age: float = 3600.0,
                 orphan_age_idle: float = 600.0,
                 reclaim_delay: float = 1.0,
                 sweep_delay: float = 2.0,
                 retry: Optional[RetryPolicy] = None):
        self.store = store
        self.uploads_dir = Path(uploads_dir)
        self.sweep_interval = sweep_interval
        self.orphan_age = orphan_age
        self.orphan_age_idle = orphan_age_idle
        self.reclaim_delay = reclaim_delay
        self.sweep_delay = sweep_delay
        self.retry = retry or RetryPolicy()
        self._periodic: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(cls, store: RoomStore, settings) -> "Janitor":
        return cls(
            store,
            settings.uploads_dir,
            sweep_interval=settings.sweep_interval,
            orphan_age=settings.orphan_age,
            orphan_age_idle=settings.orphan_age_idle,
            reclaim_delay=settings.reclaim_delay,
            sweep_delay=settings.sweep_delay,
            retry=RetryPolicy(settings.retry_attempts, settings.retry_delay),
        )

    # ------------------------------------------------------------
    # Task management
    # ------------------------------------------------------------

    def start(self) -> None:
        if self._periodic is None:
            self._periodic = asyncio.create_task(self._run_periodic())
            self.schedule_sweep()

    async def stop(self) -> None:
        tasks = list(self._pending)
        if self._periodic is not None:
            tasks.append(self._periodic)
            self._periodic = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pending.clear()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _run_periodic(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            try:
                await self.sweep()
            except Exception:
                logger.exception("Periodic cleanup failed")

    # ------------------------------------------------------------
    # On-demand passes
    # ------------------------------------------------------------

    def reclaim(self, path: Path, delay: Optional[float] = None) -> asyncio.Task:
        """Delete a released asset after a short deferral"""
        return self._spawn(self._reclaim_later(Path(path), self.reclaim_delay if delay is None else delay))

    def schedule_sweep(self, delay: Optional[float] = None) -> asyncio.Task:
        return self._spawn(self._sweep_later(self.sweep_delay if delay is None else delay))

    async def _reclaim_later(self, path: Path, delay: float) -> bool:
        await asyncio.sleep(delay)
        if path.resolve() in self.store.referenced_assets():
            logger.info("Asset %s is in use again, keeping it", path.name)
            return False
        return await self.delete(path)

    async def _sweep_later(self, delay: float) -> List[Path]:
        await asyncio.sleep(delay)
        try:
            return await self.sweep()
        except Exception:
            logger.exception("Orphan cleanup failed")
            return []

    # ------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------

    async def delete(self, path: Path) -> bool:
        """Unlink ``path`` under the retry policy. Never raises."""
        try:
            await self.retry.run(path.unlink)
        except FileNotFoundError:
            return True
        except OSError as e:
            if is_locked_error(e):
                logger.warning("File %s is still locked, leaving it for the periodic cleanup", path.name)
            else:
                logger.error("Error deleting %s: %s", path.name, e)
            return False
        logger.info("Cleaned up video file: %s", path.name)
        return True

    def _threshold(self) -> float:
        return self.orphan_age if self.store.rooms else self.orphan_age_idle

    async def sweep(self) -> List[Path]:
        """Delete unreferenced uploads older than the current threshold"""
        if not self.uploads_dir.is_dir():
            return []

        threshold = self._threshold()
        now = time.time()
        deleted = []
        for path in sorted(self.uploads_dir.iterdir()):
            try:
                if not path.is_file():
                    continue
                age = now - path.stat().st_mtime
            except OSError as e:
                logger.error("Error processing file %s: %s", path.name, e)
                continue

            # Uploads still being written always get the long threshold
            limit = max(threshold, self.orphan_age) if path.name.startswith(PARTIAL_PREFIX) else threshold
            if age <= limit or path.resolve() in self.store.referenced_assets():
                continue

            if await self.delete(path):
                logger.info("Orphaned video file %s removed (age: %d minutes)", path.name, age // 60)
                deleted.append(path)
        return deleted
