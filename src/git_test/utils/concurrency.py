"""Async concurrency primitives used by the runner."""

from __future__ import annotations

import asyncio
import os
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Iterable

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cooperative cancellation token backed by ``asyncio.Event``."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise asyncio.CancelledError("operation cancelled")


@dataclass(slots=True)
class _WorkResult(Generic[R]):
    value: R | None = None
    error: BaseException | None = None


@dataclass(slots=True)
class QueueWorkerPool(Generic[T, R]):
    """Feed items through a job queue to at most ``max_concurrency`` workers.

    Results are yielded in completion order. The first worker exception is
    re-raised to the consumer after the remaining workers are cancelled.
    """

    worker: Callable[[T], Awaitable[R]]
    max_concurrency: int
    cancel_token: CancellationToken | None = None
    _token: CancellationToken = field(init=False, repr=False)
    _active: int = field(init=False, default=0, repr=False)
    _peak: int = field(init=False, default=0, repr=False)

    def __post_init__(self) -> None:
        if self.max_concurrency <= 0:
            raise ValueError("max_concurrency must be > 0")
        self._token = self.cancel_token or CancellationToken()

    @property
    def peak_concurrency(self) -> int:
        return self._peak

    async def map(self, items: Iterable[T]) -> AsyncIterator[R]:
        jobs: asyncio.Queue[T] = asyncio.Queue()
        for item in items:
            jobs.put_nowait(item)
        total = jobs.qsize()
        if total == 0:
            return

        results: asyncio.Queue[_WorkResult[R]] = asyncio.Queue()
        workers = {
            asyncio.create_task(self._work(jobs, results))
            for _ in range(min(self.max_concurrency, total))
        }
        try:
            for _ in range(total):
                self._token.raise_if_cancelled()
                outcome = await results.get()
                if outcome.error is not None:
                    raise outcome.error
                yield outcome.value  # type: ignore[misc]
        finally:
            await self._cancel_all(workers)

    async def _work(self, jobs: asyncio.Queue[T], results: asyncio.Queue[_WorkResult[R]]) -> None:
        while True:
            try:
                item = jobs.get_nowait()
            except asyncio.QueueEmpty:
                return
            if self._token.is_cancelled:
                results.put_nowait(_WorkResult(error=asyncio.CancelledError("operation cancelled")))
                return

            self._active += 1
            self._peak = max(self._peak, self._active)
            try:
                value = await self.worker(item)
            except Exception as exc:  # noqa: BLE001 - surfaced to the consumer.
                results.put_nowait(_WorkResult(error=exc))
            else:
                results.put_nowait(_WorkResult(value=value))
            finally:
                self._active -= 1
                jobs.task_done()

    async def _cancel_all(self, tasks: set[asyncio.Task[None]]) -> None:
        for task in tasks:
            task.cancel()
        if tasks:
            with suppress(Exception):
                await asyncio.gather(*tasks, return_exceptions=True)


def default_concurrency() -> int:
    return max(1, os.cpu_count() or 1)


__all__ = [
    "CancellationToken",
    "QueueWorkerPool",
    "default_concurrency",
]
