"""Bounded thread fan-out with per-call timeouts for external collaborator calls."""

from __future__ import annotations

import time
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from .errors import UpstreamError

T = TypeVar("T")
R = TypeVar("R")

# How often the fan-out loop re-checks running calls against their deadline
_POLL_SECONDS = 0.05


@dataclass
class TaskOutcome(Generic[T, R]):
    item: T
    result: R | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def fan_out(
    func: Callable[[T], R],
    items: Iterable[T],
    *,
    max_workers: int,
    timeout: float | None,
    label: str = "task",
) -> list[TaskOutcome[T, R]]:
    """Run ``func`` over ``items`` on a bounded thread pool.

    Outcomes come back in input order whatever the completion order. A call
    still running ``timeout`` seconds after it *started* is recorded as a
    ``TimeoutError`` outcome and abandoned; queued calls are not charged for
    time spent waiting for a worker. An abandoned call still holds its
    worker, so once every worker is held that way the calls still queued are
    failed with ``TimeoutError`` too rather than waiting on a worker that
    may never come back. Exceptions are captured per item, never
    raised from here.
    """
    work = list(items)
    if not work:
        return []
    started: dict[int, float] = {}

    def _run(idx: int, item: T) -> R:
        started[idx] = time.monotonic()
        return func(item)

    outcomes: list[TaskOutcome[T, R] | None] = [None] * len(work)
    workers = max(1, min(max_workers, len(work)))
    abandoned: set = set()
    pool = ThreadPoolExecutor(
        max_workers=workers,
        thread_name_prefix=f"impactlens-{label}",
    )
    try:
        futures = {pool.submit(_run, idx, item): idx for idx, item in enumerate(work)}
        pending = set(futures)
        poll = _POLL_SECONDS if timeout is None else min(_POLL_SECONDS, timeout)
        while pending:
            done, pending = wait(pending, timeout=poll, return_when=FIRST_COMPLETED)
            for fut in done:
                idx = futures[fut]
                exc = fut.exception()
                if exc is not None:
                    outcomes[idx] = TaskOutcome(work[idx], error=exc)
                else:
                    outcomes[idx] = TaskOutcome(work[idx], result=fut.result())
            if timeout is None:
                continue
            now = time.monotonic()
            for fut in list(pending):
                idx = futures[fut]
                begun = started.get(idx)
                if begun is not None and now - begun > timeout:
                    fut.cancel()
                    pending.discard(fut)
                    outcomes[idx] = TaskOutcome(
                        work[idx], error=TimeoutError(f"{label} timed out after {timeout:.1f}s")
                    )
                    abandoned.add(fut)
            abandoned = {f for f in abandoned if not f.done()}
            if len(abandoned) < workers:
                continue
            for fut in list(pending):
                idx = futures[fut]
                if idx not in started and fut.cancel():
                    pending.discard(fut)
                    outcomes[idx] = TaskOutcome(
                        work[idx], error=TimeoutError(f"{label} not started: all workers stuck on timed-out calls")
                    )
    finally:
        pool.shutdown(wait=False, cancel_futures=True)
    return [o for o in outcomes if o is not None]


def call_with_timeout(func: Callable[..., R], *args: Any, timeout: float | None, label: str = "call") -> R:
    """Run a single external call, raising ``UpstreamError`` if it overruns ``timeout``."""
    if timeout is None:
        return func(*args)
    pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"impactlens-{label}")
    try:
        future = pool.submit(func, *args)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError as exc:
            future.cancel()
            raise UpstreamError(f"{label} timed out after {timeout:.1f}s") from exc
    finally:
        pool.shutdown(wait=False)
