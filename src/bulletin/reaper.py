import asyncio
import logging

from typing import List, Optional, Set

logger = logging.getLogger(__name__)


class HandlerReaper(object):
    """
    The reaper reclaims handler units once they have terminated.

    Each tracked unit gets a small watcher task that waits for the unit to
    finish and then posts a notification to a queue. The reaper task consumes
    that queue and forgets the unit's handle. When several units finish at
    about the same time the reaper drains every queued notification in one
    pass.

    Reaping runs as its own task so it never delays the accept loop.
    """

    def __init__(self):
        # Units, not pids, since a pid may be reused once its unit has exited.
        self._units = set()  # type: Set[asyncio.subprocess.Process]
        self._watchers = set()
        self._finished = None  # type: Optional[asyncio.Queue]
        self._task = None  # type: Optional[asyncio.Task]

    @property
    def running(self) -> bool:
        return self._task is not None

    @property
    def outstanding(self) -> int:
        """ Return the number of tracked units that have not been reaped """
        return len(self._units)

    def start(self):
        """ Start consuming termination notifications """
        if self.running:
            return
        self._finished = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._reap())

    async def stop(self):
        """ Stop reaping. Units that are still running are no longer tracked. """
        if not self.running:
            return

        tasks = [self._task, *self._watchers]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._task = None
        self._finished = None
        self._watchers.clear()
        self._units.clear()

    def track(self, unit: asyncio.subprocess.Process) -> None:
        """ Track a spawned unit until it terminates.

        :param unit: A process-like object with a ``pid`` attribute and an
          awaitable ``wait`` method.
        """
        self._units.add(unit)
        watcher = asyncio.get_running_loop().create_task(self._watch(unit))
        self._watchers.add(watcher)
        watcher.add_done_callback(self._watchers.discard)

    async def _watch(self, unit):
        await unit.wait()
        self._finished.put_nowait(unit)

    def _drain(self, first) -> List:
        units = [first]
        while True:
            try:
                units.append(self._finished.get_nowait())
            except asyncio.QueueEmpty:
                return units

    async def _reap(self):
        while True:
            unit = await self._finished.get()
            for unit in self._drain(unit):
                if unit not in self._units:
                    continue
                self._units.discard(unit)
                logger.debug(
                    f"Reaped handler pid={unit.pid}, returncode={unit.returncode}"
                )
