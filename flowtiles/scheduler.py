"""Region-keyed work scheduling for the navigation tick.

Cost writes are queued and coalesced per cell until the next tick. Every
region carries a generation counter that is bumped whenever its navigation
data is rebuilt; work started under an older generation is stale and its
result is dropped. Per-region tasks for one tick are grouped so tasks on
the same region run one after another while different regions run on a
thread pool.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from multiprocessing.dummy import Pool as ThreadPool
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple

import structlog

from flowtiles.world.dimensions import FieldCell, RegionID

log = structlog.get_logger(__name__)

Task = Tuple[RegionID, Callable[[], Any]]


class MutationQueue:
    """Pending cost writes; the last write to a cell wins."""

    def __init__(self) -> None:
        self._pending: Dict[Tuple[RegionID, FieldCell], int] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._pending)

    def push(self, region: RegionID, cell: FieldCell, cost: int) -> None:
        with self._lock:
            # Re-insert so a rewritten cell moves to the back of the order
            self._pending.pop((region, cell), None)
            self._pending[(region, cell)] = cost

    def drain(self) -> List[Tuple[RegionID, FieldCell, int]]:
        with self._lock:
            pending, self._pending = self._pending, {}
        return [(region, cell, cost) for (region, cell), cost in pending.items()]


class RegionScheduler:
    """Generation counters and per-region task grouping."""

    def __init__(self, worker_threads: int = 4) -> None:
        if worker_threads < 1:
            raise ValueError("At least one worker thread is required.")
        self.worker_threads = worker_threads
        self.generations: Dict[RegionID, int] = defaultdict(int)
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Generations
    # ------------------------------------------------------------------
    def generation(self, region: RegionID) -> int:
        return self.generations[region]

    def bump(self, regions: Iterable[RegionID]) -> None:
        # Cost listeners may call this from a pool worker
        with self._lock:
            for region in regions:
                self.generations[region] += 1

    def snapshot(self, regions: Iterable[RegionID]) -> Dict[RegionID, int]:
        return {region: self.generations[region] for region in regions}

    def is_current(self, snapshot: Mapping[RegionID, int]) -> bool:
        return all(self.generations[r] == g for r, g in snapshot.items())

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------
    def run_grouped(self, tasks: Sequence[Task]) -> List[Any]:
        """Run ``tasks`` and return their results in submission order.

        Tasks sharing a region run sequentially inside one worker.
        """
        groups: Dict[RegionID, List[int]] = defaultdict(list)
        for index, (region, _task) in enumerate(tasks):
            groups[region].append(index)

        def _run_group(indices: List[int]) -> List[Tuple[int, Any]]:
            return [(i, tasks[i][1]()) for i in indices]

        batches = list(groups.values())
        if len(batches) <= 1 or self.worker_threads == 1:
            grouped = [_run_group(indices) for indices in batches]
        else:
            with ThreadPool(min(self.worker_threads, len(batches))) as pool:
                grouped = pool.map(_run_group, batches)

        results: List[Any] = [None] * len(tasks)
        for batch in grouped:
            for index, value in batch:
                results[index] = value
        log.debug("Region tasks finished", tasks=len(tasks), regions=len(batches))
        return results


__all__ = ["MutationQueue", "RegionScheduler", "Task"]
