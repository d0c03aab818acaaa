"""
In-flight request registry.

At most one audit runs per ``(address, network, mode)`` key. Concurrent
callers for a key that is already running await the same task and receive
the same report. The key is released when the task finishes, whether it
succeeded, failed or was cancelled.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, Awaitable, Callable, Dict, Tuple

logger = logging.getLogger(__name__)

RequestKey = Tuple[str, str, str]


def request_key(address: str, network: str, multi_source: bool = True) -> RequestKey:
    """Normalize a request key; addresses compare case-insensitively."""
    return (str(address or "").strip().lower(), str(network or "").strip().lower(), "multi" if multi_source else "single")


class InFlightRegistry:
    """Keyed registry of in-flight audit tasks"""

    def __init__(self):
        self._tasks: Dict[RequestKey, "asyncio.Task[Any]"] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, key: RequestKey) -> bool:
        return key in self._tasks

    @asynccontextmanager
    async def _held(self, key: RequestKey):
        try:
            yield
        finally:
            self._tasks.pop(key, None)

    async def _owned(self, key: RequestKey, factory: Callable[[], Awaitable[Any]]) -> Any:
        async with self._held(key):
            return await factory()

    async def run(self, key: RequestKey, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Run ``factory()`` for ``key``, or join the run already in flight.

        Joining callers are shielded: one caller being cancelled does not
        cancel the shared run for the others.
        """
        task = self._tasks.get(key)
        if task is not None and not task.done():
            logger.info(f"Joining in-flight audit for {key}")
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._owned(key, factory))
        self._tasks[key] = task
        return await asyncio.shield(task)
