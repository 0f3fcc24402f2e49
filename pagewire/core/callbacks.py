"""Correlation-id bookkeeping for in-flight commands."""

import asyncio
import itertools
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set

from .errors import OperationTimeoutError, ProtocolViolationError


class Callback:
    """Pending-result slot for one outgoing command."""

    __slots__ = ("id", "method", "session_id", "future", "_timer")

    def __init__(self, callback_id: int, method: str, session_id: Optional[str], future: "asyncio.Future"):
        self.id = callback_id
        self.method = method
        self.session_id = session_id
        self.future = future
        self._timer: Optional[asyncio.TimerHandle] = None

    def resolve(self, value: Any) -> None:
        self._cancel_timer()
        if not self.future.done():
            self.future.set_result(value)

    def reject(self, error: BaseException) -> None:
        self._cancel_timer()
        if not self.future.done():
            self.future.set_exception(error)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class CallbackRegistry:
    """
    Maps correlation ids to pending slots.

    Ids come from a single monotonically increasing counter, so an id is never
    handed out twice for the lifetime of the registry. All mutation happens on
    the event loop thread: inserts from ``create`` and deletes from
    ``resolve``/``reject`` never interleave mid-operation.
    """

    def __init__(self) -> None:
        self._ids: Iterator[int] = itertools.count(1)
        self._callbacks: Dict[int, Callback] = {}

    def next_id(self) -> int:
        return next(self._ids)

    def create(
        self,
        callback_id: int,
        method: str,
        session_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Callback:
        if callback_id in self._callbacks:
            raise ProtocolViolationError(f"correlation id {callback_id} is already pending")
        loop = asyncio.get_running_loop()
        callback = Callback(callback_id, method, session_id, loop.create_future())
        # A rejected slot nobody awaits must not log "exception was never retrieved".
        callback.future.add_done_callback(_consume_exception)
        if timeout:
            callback._timer = loop.call_later(timeout, self._expire, callback_id, timeout)
        self._callbacks[callback_id] = callback
        return callback

    def resolve(self, callback_id: int, value: Any) -> bool:
        callback = self._callbacks.pop(callback_id, None)
        if callback is None:
            return False
        callback.resolve(value)
        return True

    def reject(self, callback_id: int, error: BaseException) -> bool:
        callback = self._callbacks.pop(callback_id, None)
        if callback is None:
            return False
        callback.reject(error)
        return True

    def get(self, callback_id: int) -> Optional[Callback]:
        return self._callbacks.get(callback_id)

    def reject_session(self, session_id: Optional[str], make_error: Callable[[], BaseException]) -> int:
        """Reject every slot issued on ``session_id``; returns how many were rejected."""
        ids = [cid for cid, cb in self._callbacks.items() if cb.session_id == session_id]
        for cid in ids:
            self.reject(cid, make_error())
        return len(ids)

    def reject_all(self, make_error: Callable[[], BaseException]) -> int:
        ids = list(self._callbacks)
        for cid in ids:
            self.reject(cid, make_error())
        return len(ids)

    def pending_ids(self) -> List[int]:
        return sorted(self._callbacks)

    def __len__(self) -> int:
        return len(self._callbacks)

    def _expire(self, callback_id: int, timeout: float) -> None:
        callback = self._callbacks.pop(callback_id, None)
        if callback is not None:
            callback._timer = None
            callback.reject(OperationTimeoutError(callback.method, int(timeout * 1000)))


class PendingOperations:
    """
    A set of waits owned by one scope (an execution context, a frame).

    ``run`` awaits an operation through a scope-owned future so that
    ``fail_all`` can fail the caller immediately when the scope dies, even if
    the underlying protocol command never answers. A result arriving after the
    scope failed is discarded.
    """

    def __init__(self) -> None:
        self._waiters: Set["asyncio.Future"] = set()

    async def run(self, awaitable: Awaitable[Any]) -> Any:
        loop = asyncio.get_running_loop()
        waiter = loop.create_future()
        task = asyncio.ensure_future(awaitable)

        def transfer(done: "asyncio.Future") -> None:
            if done.cancelled():
                if not waiter.done():
                    waiter.cancel()
                return
            error = done.exception()
            if waiter.done():
                return
            if error is not None:
                waiter.set_exception(error)
            else:
                waiter.set_result(done.result())

        task.add_done_callback(transfer)
        self._waiters.add(waiter)
        try:
            return await waiter
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            self._waiters.discard(waiter)

    def fail_all(self, error: BaseException) -> int:
        failed = 0
        for waiter in list(self._waiters):
            if not waiter.done():
                waiter.set_exception(error)
                failed += 1
        self._waiters.clear()
        return failed

    def __len__(self) -> int:
        return len(self._waiters)


def _consume_exception(future: "asyncio.Future") -> None:
    if not future.cancelled():
        future.exception()
