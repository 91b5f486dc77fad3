from __future__ import annotations

import asyncio
from typing import List, Optional


class Canceled(Exception):
    """Returned by ``RunContext.err`` once the context has been canceled."""

    def __init__(self, message: str = "context canceled") -> None:
        super().__init__(message)


class DeadlineExceeded(Exception):
    """Returned by ``RunContext.err`` once the context timeout has elapsed."""

    def __init__(self, message: str = "context deadline exceeded") -> None:
        super().__init__(message)


class RunContext:
    """Cancellation signal shared between a supervisor and one running integration.

    Cancelling a context cancels every child derived from it. ``err`` stays
    ``None`` while the context is active and reports why it ended afterwards.
    """

    def __init__(
        self, parent: Optional[RunContext] = None, timeout: Optional[float] = None
    ) -> None:
        self._done = asyncio.Event()
        self._err: Optional[Exception] = None
        self._children: List[RunContext] = []
        self._timer: Optional[asyncio.TimerHandle] = None
        if parent is not None:
            parent._children.append(self)
            if parent.err() is not None:
                self._finish(parent.err())
                return
        if timeout is not None:
            loop = asyncio.get_running_loop()
            self._timer = loop.call_later(
                max(timeout, 0), self._finish, DeadlineExceeded()
            )

    def child(self, timeout: Optional[float] = None) -> RunContext:
        return RunContext(parent=self, timeout=timeout)

    def cancel(self) -> None:
        self._finish(Canceled())

    def err(self) -> Optional[Exception]:
        return self._err

    def is_done(self) -> bool:
        return self._done.is_set()

    async def done(self) -> None:
        await self._done.wait()

    async def wait(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds; return True if the context ended."""
        try:
            await asyncio.wait_for(self._done.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    def _finish(self, err: Exception) -> None:
        if self._err is not None:
            return
        self._err = err
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._done.set()
        for child in self._children:
            child._finish(err)
