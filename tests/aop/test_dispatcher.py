# Copyright 2026 Firefly Software Solutions Inc.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""Tests for Dispatcher: advice ordering and control flow."""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from pyweave.aop.chain import Chain
from pyweave.aop.dispatcher import Dispatcher
from pyweave.aop.retry import LinearBackoff, RetryPolicy
from pyweave.aop.types import Interceptor, InvocationContext, InvocationState
from pyweave.core.config import Config
from pyweave.kernel.exceptions import AdviceError, InvocationStateError, RetryExhausted

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


class RecordingSleeper:
    """Stands in for asyncio.sleep / time.sleep and records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)

    def sync(self, delay: float) -> None:
        self.delays.append(delay)


class Flaky:
    """Target that fails a fixed number of times before succeeding."""

    def __init__(self, failures: int, result: str = "ok") -> None:
        self.failures = failures
        self.result = result
        self.calls = 0

    def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return self.result


def _context(operation: str = "op", *args: object) -> InvocationContext:
    return InvocationContext("calc.Calculator", operation, args)


async def _pass_through(ctx, proceed):
    return await proceed()


def _recording_advice(calls: list[str]) -> list[Interceptor]:
    async def async_around(ctx, proceed):
        calls.append("around:pre")
        try:
            return await proceed()
        finally:
            calls.append("around:post")

    return [
        Interceptor.after(lambda ctx: calls.append("after")),
        Interceptor.after_returning(lambda ctx, result: calls.append(f"after_returning:{result}")),
        Interceptor.after_throwing(lambda ctx, error: calls.append(f"after_throwing:{error}")),
        Interceptor.before(lambda ctx: calls.append("before")),
        Interceptor.around(async_around, name="outer"),
        Interceptor.around(async_around, name="inner"),
    ]


# ---------------------------------------------------------------------------
# No interceptors
# ---------------------------------------------------------------------------


class TestNoInterceptors:
    @pytest.mark.asyncio
    async def test_result_matches_direct_call(self) -> None:
        dispatcher = Dispatcher()

        async def add(a: int, b: int) -> int:
            return a + b

        assert await dispatcher.invoke("calc.Calculator", "add", add, 2, 3) == 5

    @pytest.mark.asyncio
    async def test_error_is_the_targets_own(self) -> None:
        error = ZeroDivisionError("division by zero")

        def div() -> None:
            raise error

        with pytest.raises(ZeroDivisionError) as info:
            await Dispatcher().invoke("calc.Calculator", "div", div)
        assert info.value is error

    def test_sync_result_and_kwargs(self) -> None:
        def scale(value: int, *, factor: int) -> int:
            return value * factor

        assert Dispatcher().invoke_sync("calc.Calculator", "scale", scale, 4, factor=3) == 12

    def test_matcher_is_consulted_per_call(self) -> None:
        seen: list[tuple[str, str]] = []

        class RecordingMatcher:
            def resolve(self, target_id, operation_name):
                seen.append((target_id, operation_name))
                return []

        dispatcher = Dispatcher(RecordingMatcher())
        dispatcher.invoke_sync("calc.Calculator", "add", lambda: 1)
        dispatcher.invoke_sync("calc.Calculator", "add", lambda: 1)
        assert seen == [("calc.Calculator", "add")] * 2


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


class TestOrdering:
    @pytest.mark.asyncio
    async def test_global_order_on_success(self) -> None:
        calls: list[str] = []

        def target() -> int:
            calls.append("target")
            return 7

        result = await Dispatcher().execute(_context(), Chain.of(target, _recording_advice(calls)))

        assert result == 7
        assert calls == [
            "around:pre",
            "around:pre",
            "before",
            "target",
            "after_returning:7",
            "after",
            "around:post",
            "around:post",
        ]

    @pytest.mark.asyncio
    async def test_global_order_on_failure(self) -> None:
        calls: list[str] = []

        def target() -> int:
            calls.append("target")
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            await Dispatcher().execute(_context(), Chain.of(target, _recording_advice(calls)))

        assert calls == [
            "around:pre",
            "around:pre",
            "before",
            "target",
            "after_throwing:bad",
            "after",
            "around:post",
            "around:post",
        ]

    def test_before_advice_in_registration_order(self) -> None:
        calls: list[str] = []
        chain = Chain.of(
            lambda: calls.append("target"),
            [
                Interceptor.before(lambda ctx: calls.append("A")),
                Interceptor.before(lambda ctx: calls.append("B")),
            ],
        )

        Dispatcher().execute_sync(_context(), chain)

        assert calls == ["A", "B", "target"]

    def test_around_nesting_outermost_first(self) -> None:
        calls: list[str] = []

        def layer(name):
            def around(ctx, proceed):
                calls.append(f"{name}:pre")
                result = proceed()
                calls.append(f"{name}:post")
                return result

            return Interceptor.around(around, name=name)

        chain = Chain.of(lambda: calls.append("target"), [layer("outer"), layer("inner")])
        Dispatcher().execute_sync(_context(), chain)

        assert calls == ["outer:pre", "inner:pre", "target", "inner:post", "outer:post"]

    def test_advice_sees_arguments(self) -> None:
        seen: list[tuple] = []
        chain = Chain.of(lambda a, b: a - b, [Interceptor.before(lambda ctx: seen.append(ctx.args))])

        assert Dispatcher().execute_sync(_context("sub", 9, 4), chain) == 5
        assert seen == [(9, 4)]


# ---------------------------------------------------------------------------
# After / AfterReturning / AfterThrowing guarantees
# ---------------------------------------------------------------------------


class TestAfterGuarantees:
    @pytest.mark.parametrize("fails", [False, True])
    def test_after_fires_exactly_once(self, fails: bool) -> None:
        calls: list[str] = []

        def target() -> str:
            if fails:
                raise RuntimeError("boom")
            return "ok"

        chain = Chain.of(target, [Interceptor.after(lambda ctx: calls.append(ctx.operation_name))])

        if fails:
            with pytest.raises(RuntimeError):
                Dispatcher().execute_sync(_context("run"), chain)
        else:
            Dispatcher().execute_sync(_context("run"), chain)

        assert calls == ["run"]

    @pytest.mark.parametrize("fails", [False, True])
    def test_exactly_one_of_returning_or_throwing(self, fails: bool) -> None:
        calls: list[str] = []

        def target() -> str:
            if fails:
                raise RuntimeError("boom")
            return "ok"

        chain = Chain.of(
            target,
            [
                Interceptor.after_returning(lambda ctx, result: calls.append("returning")),
                Interceptor.after_throwing(lambda ctx, error: calls.append("throwing")),
            ],
        )

        try:
            Dispatcher().execute_sync(_context(), chain)
        except RuntimeError:
            pass

        assert calls == (["throwing"] if fails else ["returning"])

    def test_after_returning_cannot_change_result(self) -> None:
        chain = Chain.of(lambda: "original", [Interceptor.after_returning(lambda ctx, result: "replaced")])
        assert Dispatcher().execute_sync(_context(), chain) == "original"

    def test_after_throwing_rethrows_unchanged(self) -> None:
        error = KeyError("missing")

        def target() -> None:
            raise error

        chain = Chain.of(target, [Interceptor.after_throwing(lambda ctx, exc: None)])

        with pytest.raises(KeyError) as info:
            Dispatcher().execute_sync(_context(), chain)
        assert info.value is error


# ---------------------------------------------------------------------------
# Advice errors
# ---------------------------------------------------------------------------


class TestAdviceErrors:
    def test_before_error_prevents_target(self) -> None:
        calls: list[str] = []

        def reject(ctx):
            raise PermissionError("denied")

        chain = Chain.of(
            lambda: calls.append("target"),
            [
                Interceptor.before(reject, name="guard"),
                Interceptor.after(lambda ctx: calls.append("after")),
            ],
        )

        with pytest.raises(AdviceError) as info:
            Dispatcher().execute_sync(_context(), chain)

        assert "target" not in calls
        assert calls == ["after"]
        assert info.value.kind == "before"
        assert info.value.advice_name == "guard"
        assert isinstance(info.value.__cause__, PermissionError)

    def test_before_error_is_seen_by_after_throwing(self) -> None:
        seen: list[BaseException] = []

        def reject(ctx):
            raise PermissionError("denied")

        chain = Chain.of(
            lambda: None,
            [Interceptor.before(reject), Interceptor.after_throwing(lambda ctx, exc: seen.append(exc))],
        )

        with pytest.raises(AdviceError):
            Dispatcher().execute_sync(_context(), chain)
        assert len(seen) == 1
        assert isinstance(seen[0], AdviceError)

    def test_after_error_replaces_target_error_and_keeps_it(self) -> None:
        target_error = ValueError("target failed")

        def target() -> None:
            raise target_error

        def cleanup(ctx):
            raise OSError("cleanup failed")

        chain = Chain.of(target, [Interceptor.after(cleanup, name="cleanup")])

        with pytest.raises(AdviceError) as info:
            Dispatcher().execute_sync(_context(), chain)

        assert info.value.kind == "after"
        assert info.value.original_error is target_error
        assert isinstance(info.value.__cause__, OSError)

    def test_remaining_after_advice_runs_when_one_fails(self) -> None:
        calls: list[str] = []

        def broken(ctx):
            raise OSError("first after failed")

        chain = Chain.of(
            lambda: "ok",
            [Interceptor.after(broken, name="broken"), Interceptor.after(lambda ctx: calls.append("second"))],
        )

        with pytest.raises(AdviceError) as info:
            Dispatcher().execute_sync(_context(), chain)
        assert calls == ["second"]
        assert info.value.original_error is None

    @pytest.mark.asyncio
    async def test_after_returning_error_fails_call(self) -> None:
        async def audit(ctx, result):
            raise RuntimeError("audit store down")

        chain = Chain.of(lambda: 1, [Interceptor.after_returning(audit, name="audit")])

        with pytest.raises(AdviceError, match="audit store down"):
            await Dispatcher().execute(_context(), chain)

    def test_after_throwing_error_attaches_original(self) -> None:
        target_error = ValueError("target failed")

        def target() -> None:
            raise target_error

        def notify(ctx, exc):
            raise ConnectionError("mailer down")

        chain = Chain.of(target, [Interceptor.after_throwing(notify)])

        with pytest.raises(AdviceError) as info:
            Dispatcher().execute_sync(_context(), chain)
        assert info.value.original_error is target_error


# ---------------------------------------------------------------------------
# Around control flow
# ---------------------------------------------------------------------------


class TestAroundControlFlow:
    @pytest.mark.asyncio
    async def test_short_circuit_skips_target_and_inner_advice(self) -> None:
        calls: list[str] = []

        async def cached(ctx, proceed):
            return "cached"

        def target() -> str:
            calls.append("target")
            return "real"

        chain = Chain.of(
            target,
            [
                Interceptor.around(cached),
                Interceptor.before(lambda ctx: calls.append("before")),
                Interceptor.after(lambda ctx: calls.append("after")),
                Interceptor.after_returning(lambda ctx, result: calls.append("after_returning")),
                Interceptor.after_throwing(lambda ctx, error: calls.append("after_throwing")),
            ],
        )

        assert await Dispatcher().execute(_context(), chain) == "cached"
        assert calls == []

    def test_swallow_returns_default(self) -> None:
        def div(a: int, b: int) -> float:
            return a / b

        def handle(ctx, proceed):
            try:
                return proceed()
            except ZeroDivisionError:
                return 0

        context = _context("div", 10, 0)
        result = Dispatcher().execute_sync(context, Chain.of(div, [Interceptor.around(handle)]))

        assert result == 0
        assert context.state is InvocationState.COMPLETED
        assert context.error is None

    @pytest.mark.asyncio
    async def test_translate_error(self) -> None:
        class ServiceError(Exception):
            pass

        async def target() -> None:
            raise LookupError("row missing")

        async def translate(ctx, proceed):
            try:
                return await proceed()
            except LookupError as exc:
                raise ServiceError("lookup failed") from exc

        with pytest.raises(ServiceError) as info:
            await Dispatcher().execute(_context(), Chain.of(target, [Interceptor.around(translate)]))
        assert isinstance(info.value.__cause__, LookupError)

    def test_proceed_twice_runs_inner_chain_twice(self) -> None:
        calls: list[str] = []

        def twice(ctx, proceed):
            return [proceed(), proceed()]

        chain = Chain.of(
            lambda: calls.append("target") or len(calls),
            [Interceptor.around(twice), Interceptor.before(lambda ctx: calls.append("before"))],
        )

        assert Dispatcher().execute_sync(_context(), chain) == [2, 4]
        assert calls == ["before", "target", "before", "target"]

    def test_sync_path_rejects_coroutine_handler(self) -> None:
        async def around(ctx, proceed):
            return proceed()

        with pytest.raises(TypeError, match="Dispatcher.invoke"):
            Dispatcher().execute_sync(_context(), Chain.of(lambda: 1, [Interceptor.around(around)]))

    @pytest.mark.asyncio
    async def test_async_swallow_returns_default(self) -> None:
        def div(a: int, b: int) -> float:
            return a / b

        async def handle(ctx, proceed):
            try:
                return await proceed()
            except ZeroDivisionError:
                return 0

        context = _context("div", 1, 0)
        result = await Dispatcher().execute(context, Chain.of(div, [Interceptor.around(handle)]))

        assert result == 0
        assert context.state is InvocationState.COMPLETED

    @pytest.mark.asyncio
    async def test_async_post_proceed_sees_inner_result(self) -> None:
        async def scale(ctx, proceed):
            return await proceed() * 10

        assert await Dispatcher().execute(_context(), Chain.of(lambda: 4, [Interceptor.around(scale)])) == 40

    @pytest.mark.asyncio
    async def test_async_path_rejects_plain_around_handler(self) -> None:
        calls: list[str] = []

        def handle(ctx, proceed):
            try:
                return proceed()
            except ZeroDivisionError:
                return 0

        context = _context("div")
        chain = Chain.of(lambda: calls.append("target"), [Interceptor.around(handle, name="swallow")])

        with pytest.raises(TypeError, match="'swallow' must be a coroutine function"):
            await Dispatcher().execute(context, chain)
        assert calls == []
        assert context.state is InvocationState.FAILED

    @pytest.mark.asyncio
    async def test_async_handler_is_used_by_async_path(self) -> None:
        paths: list[str] = []

        def handle(ctx, proceed):
            paths.append("sync")
            return proceed()

        async def handle_async(ctx, proceed):
            paths.append("async")
            return await proceed()

        interceptor = Interceptor.around(handle, async_handler=handle_async)

        assert await Dispatcher().execute(_context(), Chain.of(lambda: 1, [interceptor])) == 1
        assert Dispatcher().execute_sync(_context(), Chain.of(lambda: 2, [interceptor])) == 2
        assert paths == ["async", "sync"]


# ---------------------------------------------------------------------------
# Retry
# ---------------------------------------------------------------------------


class TestRetry:
    @pytest.mark.asyncio
    async def test_succeeds_on_third_attempt_with_increasing_delays(self) -> None:
        sleeper = RecordingSleeper()
        target = Flaky(failures=2)
        policy = RetryPolicy(max_attempts=3, backoff=LinearBackoff(timedelta(milliseconds=100)))
        chain = Chain.of(target, [Interceptor.around(_pass_through, retry_policy=policy)])

        result = await Dispatcher(sleep=sleeper).execute(_context(), chain)

        assert result == "ok"
        assert target.calls == 3
        assert sleeper.delays == [0.1, 0.2]

    def test_exhaustion_after_max_attempts(self) -> None:
        sleeper = RecordingSleeper()
        target = Flaky(failures=10)
        policy = RetryPolicy(max_attempts=2, backoff=LinearBackoff(timedelta(seconds=1)))
        chain = Chain.of(target, [Interceptor.around(lambda ctx, proceed: proceed(), retry_policy=policy)])

        with pytest.raises(RetryExhausted) as info:
            Dispatcher(sync_sleep=sleeper.sync).execute_sync(_context(), chain)

        assert target.calls == 2
        assert sleeper.delays == [1.0]
        assert info.value.attempts == 2
        assert isinstance(info.value.__cause__, ConnectionError)
        assert info.value.last_error is info.value.__cause__

    def test_non_retryable_error_propagates_immediately(self) -> None:
        calls = []

        def target() -> None:
            calls.append(1)
            raise ValueError("not transient")

        policy = RetryPolicy(max_attempts=5, retry_on=(ConnectionError,))
        chain = Chain.of(target, [Interceptor.around(lambda ctx, proceed: proceed(), retry_policy=policy)])

        with pytest.raises(ValueError):
            Dispatcher(sync_sleep=RecordingSleeper().sync).execute_sync(_context(), chain)
        assert calls == [1]

    def test_each_attempt_reruns_inner_advice(self) -> None:
        calls: list[str] = []
        target = Flaky(failures=1)
        policy = RetryPolicy(max_attempts=2)
        chain = Chain.of(
            target,
            [
                Interceptor.around(lambda ctx, proceed: proceed(), retry_policy=policy),
                Interceptor.after_throwing(lambda ctx, error: calls.append("after_throwing")),
                Interceptor.after_returning(lambda ctx, result: calls.append("after_returning")),
                Interceptor.after(lambda ctx: calls.append("after")),
            ],
        )

        Dispatcher(sync_sleep=RecordingSleeper().sync).execute_sync(_context(), chain)

        assert calls == ["after_throwing", "after", "after_returning", "after"]

    @pytest.mark.asyncio
    async def test_attempt_counters_are_per_invocation(self) -> None:
        sleeper = RecordingSleeper()
        policy = RetryPolicy(max_attempts=2, backoff=LinearBackoff(timedelta(seconds=1)))
        retry = Interceptor.around(_pass_through, retry_policy=policy)
        dispatcher = Dispatcher(sleep=sleeper)

        for _ in range(2):
            target = Flaky(failures=1)
            assert await dispatcher.execute(_context(), Chain.of(target, [retry])) == "ok"
            assert target.calls == 2

        assert sleeper.delays == [1.0, 1.0]


# ---------------------------------------------------------------------------
# Cancellation and interrupts
# ---------------------------------------------------------------------------


class TestAbortedInvocations:
    @pytest.mark.asyncio
    async def test_cancelled_target_still_runs_after_advice(self) -> None:
        calls: list[str] = []
        started = asyncio.Event()

        async def target() -> None:
            started.set()
            await asyncio.sleep(10)

        context = _context()
        chain = Chain.of(
            target,
            [
                Interceptor.after(lambda ctx: calls.append("after")),
                Interceptor.after_throwing(lambda ctx, error: calls.append("after_throwing")),
            ],
        )
        task = asyncio.ensure_future(Dispatcher().execute(context, chain))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert calls == ["after"]
        assert context.state is InvocationState.FAILED
        assert isinstance(context.error, asyncio.CancelledError)

    @pytest.mark.asyncio
    async def test_cancellation_is_not_replaced_by_failing_after(self) -> None:
        started = asyncio.Event()

        async def target() -> None:
            started.set()
            await asyncio.sleep(10)

        def broken(ctx):
            raise OSError("cleanup failed")

        task = asyncio.ensure_future(Dispatcher().execute(_context(), Chain.of(target, [Interceptor.after(broken)])))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

    def test_interrupt_runs_after_advice_and_propagates(self) -> None:
        calls: list[str] = []

        def target() -> None:
            raise KeyboardInterrupt

        chain = Chain.of(target, [Interceptor.after(lambda ctx: calls.append("after"))])

        with pytest.raises(KeyboardInterrupt):
            Dispatcher().execute_sync(_context(), chain)
        assert calls == ["after"]

    def test_interrupt_is_not_retried(self) -> None:
        calls: list[str] = []

        def target() -> None:
            calls.append("target")
            raise KeyboardInterrupt

        policy = RetryPolicy(max_attempts=3)
        chain = Chain.of(target, [Interceptor.around(lambda ctx, proceed: proceed(), retry_policy=policy)])

        with pytest.raises(KeyboardInterrupt):
            Dispatcher(sync_sleep=RecordingSleeper().sync).execute_sync(_context(), chain)
        assert calls == ["target"]


# ---------------------------------------------------------------------------
# Invocation state
# ---------------------------------------------------------------------------


class TestInvocationState:
    @pytest.mark.asyncio
    async def test_success_completes_context(self) -> None:
        context = _context()
        await Dispatcher().execute(context, Chain.of(lambda: 42))
        assert context.state is InvocationState.COMPLETED
        assert context.result == 42

    def test_failure_fails_context(self) -> None:
        context = _context()

        def target() -> None:
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            Dispatcher().execute_sync(context, Chain.of(target))
        assert context.state is InvocationState.FAILED
        assert isinstance(context.error, RuntimeError)

    def test_context_cannot_be_executed_twice(self) -> None:
        context = _context()
        dispatcher = Dispatcher()
        dispatcher.execute_sync(context, Chain.of(lambda: 1))

        with pytest.raises(InvocationStateError):
            dispatcher.execute_sync(context, Chain.of(lambda: 2))
        assert context.result == 1


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class TestFromConfig:
    def test_reads_dispatcher_section(self) -> None:
        config = Config({"pyweave": {"dispatcher": {"log_invocations": True}}})
        dispatcher = Dispatcher.from_config(config)
        assert dispatcher._log_invocations is True

    def test_defaults_without_section(self) -> None:
        dispatcher = Dispatcher.from_config(Config({}))
        assert dispatcher._log_invocations is False
        assert dispatcher.invoke_sync("calc.Calculator", "one", lambda: 1) == 1

    def test_logging_port_is_configured_and_supplies_logger(self) -> None:
        class RecordingPort:
            def __init__(self) -> None:
                self.configured: list[Config] = []
                self.events: list[tuple[str, dict]] = []

            def configure(self, config: Config) -> None:
                self.configured.append(config)

            def get_logger(self, name: str):
                port = self

                class _Logger:
                    def warning(self, event, **fields):
                        port.events.append((event, fields))

                    def error(self, event, **fields):
                        port.events.append((event, fields))

                    def debug(self, event, **fields):
                        port.events.append((event, fields))

                return _Logger()

            def set_level(self, name: str, level: str) -> None:
                pass

        port = RecordingPort()
        config = Config({})
        dispatcher = Dispatcher.from_config(config, logging_port=port, sync_sleep=RecordingSleeper().sync)
        policy = RetryPolicy(max_attempts=2, backoff=LinearBackoff(timedelta(seconds=1)))
        chain = Chain.of(Flaky(failures=1), [Interceptor.around(lambda ctx, proceed: proceed(), retry_policy=policy)])

        assert dispatcher.execute_sync(_context(), chain) == "ok"
        assert port.configured == [config]
        assert [event for event, _ in port.events] == ["retry_scheduled"]
        assert port.events[0][1]["delay_seconds"] == 1.0
