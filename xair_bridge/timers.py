# xair_bridge/timers.py
from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Generic, Hashable, Iterable, Optional, Set, TypeVar, Union

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)

TimerCallback = Callable[[], Union[None, Awaitable[None]]]


class Timer:
    """
    One-shot cancellable timer on the running loop.

    start() on an armed timer re-arms it (debounce). The callback may be sync
    or async and may re-arm the same timer.
    """

    def __init__(self, delay: float, callback: TimerCallback, name: str = "timer") -> None:
        self.delay = float(delay)
        self.name = name
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, delay: Optional[float] = None) -> None:
        self.cancel()
        d = self.delay if delay is None else float(delay)
        self._task = asyncio.create_task(self._run(d), name=f"xair.{self.name}")

    def cancel(self) -> None:
        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()

    async def _run(self, delay: float) -> None:
        await asyncio.sleep(delay)
        # detach first: the callback is allowed to start() us again
        self._task = None
        try:
            res = self._callback()
            if inspect.isawaitable(res):
                await res
        except Exception:
            logger.exception("Timer %s callback failed", self.name)


class PendingRequests(Generic[K]):
    """
    Outstanding queries keyed by a normalized reply key.

    Replies are matched with resolve(); wait() returns once every key is
    answered or the timeout expires, whichever is first. A timeout is not an
    error: the caller gets whatever was collected.
    """

    def __init__(self, keys: Iterable[K]) -> None:
        self._pending: Set[K] = set(keys)
        self.results: Dict[K, Any] = {}
        self._done = asyncio.Event()
        if not self._pending:
            self._done.set()

    @property
    def complete(self) -> bool:
        return not self._pending

    @property
    def missing(self) -> Set[K]:
        return set(self._pending)

    def expects(self, key: K) -> bool:
        return key in self._pending

    def resolve(self, key: K, value: Any) -> bool:
        if key not in self._pending:
            return False
        self._pending.discard(key)
        self.results[key] = value
        if not self._pending:
            self._done.set()
        return True

    def release(self) -> None:
        """Stop waiting now; keep what has arrived."""
        self._done.set()

    async def wait(self, timeout: float) -> Dict[K, Any]:
        try:
            await asyncio.wait_for(self._done.wait(), timeout)
        except asyncio.TimeoutError:
            pass
        return dict(self.results)
