import threading

import pytest

from flowtiles.scheduler import MutationQueue, RegionScheduler
from flowtiles.world.dimensions import FieldCell, RegionID

A = RegionID(0, 0)
B = RegionID(1, 0)


def test_mutation_queue_keeps_last_write_per_cell():
    queue = MutationQueue()
    queue.push(A, FieldCell(1, 1), 10)
    queue.push(B, FieldCell(0, 0), 20)
    queue.push(A, FieldCell(1, 1), 30)
    assert len(queue) == 2
    assert queue.drain() == [(B, FieldCell(0, 0), 20), (A, FieldCell(1, 1), 30)]
    assert queue.drain() == []


def test_generation_snapshots_go_stale_after_bump():
    scheduler = RegionScheduler()
    snapshot = scheduler.snapshot([A, B])
    assert scheduler.is_current(snapshot)
    scheduler.bump([B])
    assert scheduler.generation(B) == 1
    assert not scheduler.is_current(snapshot)
    assert scheduler.is_current(scheduler.snapshot([A]))


def test_run_grouped_returns_results_in_submission_order():
    scheduler = RegionScheduler(worker_threads=3)
    tasks = [(region, lambda i=i: i * i) for i, region in enumerate([A, B, A, B, A])]
    assert scheduler.run_grouped(tasks) == [0, 1, 4, 9, 16]


def test_same_region_tasks_share_one_worker():
    scheduler = RegionScheduler(worker_threads=4)
    seen = {}
    lock = threading.Lock()

    def record(region):
        def _task():
            with lock:
                seen.setdefault(region, set()).add(threading.get_ident())
            return region
        return _task

    tasks = [(region, record(region)) for region in [A, B, A, B, A, B]]
    scheduler.run_grouped(tasks)
    assert len(seen[A]) == 1
    assert len(seen[B]) == 1


def test_worker_errors_propagate():
    scheduler = RegionScheduler(worker_threads=2)

    def boom():
        raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        scheduler.run_grouped([(A, boom), (B, lambda: 1)])


def test_scheduler_needs_a_worker():
    with pytest.raises(ValueError):
        RegionScheduler(worker_threads=0)
