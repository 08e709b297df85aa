# =============================================================================
# success_core/sync/abort.py
# Cooperative cancellation tokens and timeouts
# =============================================================================
"""
Abort/timeout primitives.

Cancellation is cooperative: an AbortSignal is passed explicitly into every
suspending call, and the callee checks it (`throw_if_aborted()`) or waits on
it. Nothing here forcibly kills a running operation.
"""

from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, List, Optional, Set, Tuple, TypeVar
import logging

from success_core.errors import OperationCancelledError, SyncTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

TIMEOUT_REASON = "Timeout"

# Tasks that lost a timeout race keep running; hold references until they finish.
_abandoned: Set[asyncio.Future] = set()


class AbortSignal:
    """Read side of an AbortController."""

    def __init__(self):
        self._aborted = False
        self._reason: Optional[str] = None
        self._listeners: List[Callable[[Optional[str]], None]] = []

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def add_listener(self, callback: Callable[[Optional[str]], None]) -> None:
        """Call `callback(reason)` on abort (immediately if already aborted)."""
        if self._aborted:
            callback(self._reason)
        else:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable[[Optional[str]], None]) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def throw_if_aborted(self) -> None:
        if not self._aborted:
            return
        if self._reason == TIMEOUT_REASON:
            raise SyncTimeoutError()
        raise OperationCancelledError(reason=self._reason)

    async def wait(self) -> Optional[str]:
        """Suspend until the signal is aborted; returns the reason."""
        if self._aborted:
            return self._reason
        future = asyncio.get_running_loop().create_future()

        def _resolve(reason):
            if not future.done():
                future.set_result(reason)

        self.add_listener(_resolve)
        try:
            return await future
        finally:
            self.remove_listener(_resolve)

    def _abort(self, reason: Optional[str]) -> None:
        self._aborted = True
        self._reason = reason
        listeners, self._listeners = self._listeners, []
        for callback in listeners:
            try:
                callback(reason)
            except Exception as e:
                logger.error(f"Error in abort listener: {e}")


class AbortController:
    """Write side: owns a signal and can abort it once."""

    def __init__(self):
        self.signal = AbortSignal()

    def abort(self, reason: Optional[str] = None) -> None:
        if not self.signal.aborted:
            self.signal._abort(reason)


def create_abort_controller() -> Tuple[AbortController, AbortSignal]:
    controller = AbortController()
    return controller, controller.signal


def safe_abort(controller: Optional[AbortController], reason: str = "Operation aborted") -> bool:
    """Abort `controller` if it is live. Never raises; False if None or already aborted."""
    if controller is None:
        return False
    try:
        if controller.signal.aborted:
            return False
        controller.abort(reason)
        return True
    except Exception as e:
        logger.debug(f"Ignoring abort failure: {e}")
        return False


def is_aborted(signal: Optional[AbortSignal]) -> bool:
    return signal is not None and signal.aborted


@dataclass
class TimeoutSignal:
    """A signal that aborts itself with reason "Timeout" unless cleared first."""
    signal: AbortSignal
    controller: AbortController
    _handle: Optional[asyncio.TimerHandle] = None

    def clear(self) -> None:
        """Cancel the pending timeout. Safe to call after it has fired."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def create_timeout_signal(timeout: float) -> TimeoutSignal:
    """Must be called from inside a running event loop."""
    controller, signal = create_abort_controller()
    timeout_signal = TimeoutSignal(signal=signal, controller=controller)

    def _fire() -> None:
        timeout_signal._handle = None
        safe_abort(controller, TIMEOUT_REASON)

    timeout_signal._handle = asyncio.get_running_loop().call_later(timeout, _fire)
    return timeout_signal


def _consume_result(future: asyncio.Future) -> None:
    _abandoned.discard(future)
    if not future.cancelled() and future.exception() is not None:
        logger.debug(f"Abandoned operation failed after timeout: {future.exception()}")


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    message: str = "Operation timed out",
) -> T:
    """
    Race `awaitable` against a timer.

    If the timer wins, SyncTimeoutError is raised at the deadline and the
    operation is abandoned, not cancelled: it keeps running to completion on
    the loop and its result is discarded.
    """
    future = asyncio.ensure_future(awaitable)
    done, _ = await asyncio.wait({future}, timeout=timeout)
    if future in done:
        return future.result()

    _abandoned.add(future)
    future.add_done_callback(_consume_result)
    raise SyncTimeoutError(message, timeout=timeout)


async def race_signal(awaitable: Awaitable[T], signal: Optional[AbortSignal]) -> T:
    """
    Await `awaitable` unless `signal` aborts first.

    On abort the operation is abandoned (left running) and the abort surfaces as
    OperationCancelledError, or SyncTimeoutError for a timeout signal.
    """
    if signal is None:
        return await awaitable
    signal.throw_if_aborted()

    future = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(signal.wait())
    try:
        done, _ = await asyncio.wait({future, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        _abandoned.add(future)
        future.add_done_callback(_consume_result)
        raise
    finally:
        waiter.cancel()

    if future in done:
        return future.result()

    _abandoned.add(future)
    future.add_done_callback(_consume_result)
    signal.throw_if_aborted()
    raise OperationCancelledError(reason=signal.reason)
