# =============================================================================
# tests/unit/test_abort.py
# Unit Tests for abort signals and timeouts
# =============================================================================

import asyncio

import pytest

from success_core.errors import OperationCancelledError, SyncTimeoutError
from success_core.sync.abort import (
    create_abort_controller,
    create_timeout_signal,
    is_aborted,
    race_signal,
    safe_abort,
    with_timeout,
)


class TestAbortController:
    """Controller/signal pairs"""

    def test_abort_sets_reason_and_notifies_listeners(self):
        controller, signal = create_abort_controller()
        reasons = []
        signal.add_listener(reasons.append)

        controller.abort("user left")

        assert signal.aborted
        assert signal.reason == "user left"
        assert reasons == ["user left"]

    def test_listener_added_after_abort_runs_immediately(self):
        controller, signal = create_abort_controller()
        controller.abort("done")
        reasons = []
        signal.add_listener(reasons.append)
        assert reasons == ["done"]

    def test_throw_if_aborted(self):
        controller, signal = create_abort_controller()
        signal.throw_if_aborted()
        controller.abort("stop")
        with pytest.raises(OperationCancelledError):
            signal.throw_if_aborted()


class TestSafeAbort:
    """safe_abort never raises"""

    def test_none_controller(self):
        assert safe_abort(None) is False

    def test_second_abort_is_a_no_op(self):
        controller, signal = create_abort_controller()
        assert safe_abort(controller, "first") is True
        assert safe_abort(controller, "second") is False
        assert signal.reason == "first"

    def test_is_aborted_handles_none(self):
        assert is_aborted(None) is False
        controller, signal = create_abort_controller()
        controller.abort()
        assert is_aborted(signal)


class TestTimeoutSignal:
    """Timeout signals abort with reason 'Timeout'"""

    @pytest.mark.asyncio
    async def test_fires_after_timeout(self):
        timeout = create_timeout_signal(0.01)
        await asyncio.sleep(0.05)
        assert timeout.signal.aborted
        assert timeout.signal.reason == "Timeout"
        with pytest.raises(SyncTimeoutError):
            timeout.signal.throw_if_aborted()

    @pytest.mark.asyncio
    async def test_clear_prevents_abort(self):
        timeout = create_timeout_signal(0.01)
        timeout.clear()
        await asyncio.sleep(0.05)
        assert not timeout.signal.aborted

    @pytest.mark.asyncio
    async def test_clear_after_firing_is_a_no_op(self):
        timeout = create_timeout_signal(0.01)
        await asyncio.sleep(0.05)
        timeout.clear()
        assert timeout.signal.aborted


class TestWithTimeout:
    """Racing an operation against a deadline"""

    @pytest.mark.asyncio
    async def test_fast_operation_wins(self):
        async def quick():
            return "ok"

        assert await with_timeout(quick(), 1.0) == "ok"

    @pytest.mark.asyncio
    async def test_slow_operation_times_out_but_keeps_running(self):
        finished = asyncio.Event()

        async def slow():
            await asyncio.sleep(0.05)
            finished.set()
            return "late"

        with pytest.raises(SyncTimeoutError) as exc_info:
            await with_timeout(slow(), 0.01, "Fetch timed out")

        assert exc_info.value.message == "Fetch timed out"
        assert not finished.is_set()
        await asyncio.wait_for(finished.wait(), timeout=1)

    @pytest.mark.asyncio
    async def test_operation_error_propagates(self):
        async def broken():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            await with_timeout(broken(), 1.0)


class TestRaceSignal:
    """race_signal surfaces aborts while the operation is pending"""

    @pytest.mark.asyncio
    async def test_abort_wins_over_pending_operation(self):
        controller, signal = create_abort_controller()

        async def never():
            await asyncio.sleep(10)

        asyncio.get_running_loop().call_later(0.01, controller.abort, "stopped")
        with pytest.raises(OperationCancelledError):
            await race_signal(never(), signal)

    @pytest.mark.asyncio
    async def test_already_aborted_signal_fails_fast(self):
        controller, signal = create_abort_controller()
        controller.abort()
        coro = asyncio.sleep(0)
        with pytest.raises(OperationCancelledError):
            await race_signal(coro, signal)
        coro.close()

    @pytest.mark.asyncio
    async def test_no_signal_just_awaits(self):
        async def value():
            return 3

        assert await race_signal(value(), None) == 3
