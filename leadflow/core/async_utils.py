from __future__ import annotations

import asyncio
from typing import Callable, Coroutine, TypeVar

import anyio

T = TypeVar("T")


def run_async(coro: Coroutine[object, object, T], *, timeout: float | None = None) -> T:
    """
    Run an async coroutine from sync code (CLI, worker threads).

    - In AnyIO worker threads, uses anyio.from_thread.run to execute on the main loop.
    - Falls back to anyio.run when no loop is available (e.g., CLI/tests).
    - Raises if called from an async context in the same thread (use await instead).
    """

    async def _runner() -> T:
        if timeout is not None:
            with anyio.fail_after(timeout):
                return await coro
        return await coro

    try:
        return anyio.from_thread.run(_runner)
    except RuntimeError:
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return anyio.run(_runner)
        raise RuntimeError("run_async called from async context; use await instead")


async def run_blocking(func: Callable[[], T], *, timeout: float | None = None) -> T:
    """
    Run blocking (DB + provider I/O) work in a worker thread.

    On timeout the caller stops waiting and gets TimeoutError; the thread is
    abandoned and finishes on its own, so ``func`` must clean up after itself.
    """
    if timeout is None:
        return await anyio.to_thread.run_sync(func, abandon_on_cancel=True)
    with anyio.fail_after(timeout):
        return await anyio.to_thread.run_sync(func, abandon_on_cancel=True)
