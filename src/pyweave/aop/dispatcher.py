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
"""Dispatcher: executes the nested interceptor chain around a target.

Global order of one invocation:

1. around advice up to ``proceed()``, outermost first
2. before advice
3. the target
4. after-returning advice on success, or after-throwing advice on failure
5. after advice, on every exit path
6. around advice after ``proceed()`` returns, innermost first

Steps 2-5 run once per ``proceed()`` call, so an around interceptor that
never proceeds skips them entirely and one that proceeds repeatedly gets an
independent inner run each time.

Two execution paths are provided: :meth:`Dispatcher.execute` for asyncio
callers (targets and non-around advice may be plain or coroutine functions,
around advice must be a coroutine function, retry backoff suspends with
``asyncio.sleep``), and :meth:`Dispatcher.execute_sync` for plain callers
(everything runs in the calling thread, backoff uses ``time.sleep``).
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import structlog

from pyweave.aop.chain import Chain
from pyweave.aop.registry import Matcher
from pyweave.aop.retry import RetryPolicy
from pyweave.aop.types import Interceptor, InvocationContext
from pyweave.core.config import Config, config_properties
from pyweave.kernel.exceptions import AdviceError, RetryExhausted
from pyweave.logging.port import LoggingPort

Proceed = Callable[[], Any]


@config_properties(prefix="pyweave.dispatcher")
@dataclass
class DispatcherProperties:
    """``pyweave.dispatcher`` section."""

    log_invocations: bool = False


class Dispatcher:
    """Runs invocations through the interceptors a :class:`Matcher` selects.

    While an invocation runs, its qualified name is bound as the
    ``invocation`` structlog contextvar, so events logged by the target or
    its advice carry it.

    Args:
        matcher: Resolves interceptors per call; ``None`` means none apply.
        sleep: Async sleeper used between retry attempts.
        sync_sleep: Blocking sleeper used between retry attempts in the sync path.
        log_invocations: Emit a debug event when each invocation starts and ends.
        logger: Structured logger for dispatcher events; defaults to
            ``pyweave.aop.dispatcher``.
    """

    def __init__(
        self,
        matcher: Matcher | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        sync_sleep: Callable[[float], Any] = time.sleep,
        log_invocations: bool = False,
        logger: Any = None,
    ) -> None:
        self._matcher = matcher
        self._sleep = sleep
        self._sync_sleep = sync_sleep
        self._log_invocations = log_invocations
        self._logger = logger if logger is not None else structlog.get_logger("pyweave.aop.dispatcher")

    @classmethod
    def from_config(
        cls,
        config: Config,
        matcher: Matcher | None = None,
        *,
        logging_port: LoggingPort | None = None,
        **kwargs: Any,
    ) -> Dispatcher:
        """Build a dispatcher from the ``pyweave.dispatcher`` section.

        When *logging_port* is given it is configured from ``pyweave.logging``
        and supplies the dispatcher's logger.
        """
        props = config.bind(DispatcherProperties)
        if logging_port is not None:
            logging_port.configure(config)
            kwargs.setdefault("logger", logging_port.get_logger("pyweave.aop.dispatcher"))
        return cls(matcher, log_invocations=props.log_invocations, **kwargs)

    def chain_for(self, target_id: str, operation_name: str, target: Callable[..., Any]) -> Chain:
        """Build the chain for one call from the matcher's current answer."""
        interceptors = self._matcher.resolve(target_id, operation_name) if self._matcher is not None else ()
        return Chain(tuple(interceptors), target)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def invoke(
        self,
        target_id: str,
        operation_name: str,
        target: Callable[..., Any],
        /,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Call ``target(*args, **kwargs)`` through its matching interceptors."""
        context = InvocationContext(target_id, operation_name, args, kwargs, target=_owner(target))
        return await self.execute(context, self.chain_for(target_id, operation_name, target))

    def invoke_sync(
        self,
        target_id: str,
        operation_name: str,
        target: Callable[..., Any],
        /,
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Blocking counterpart of :meth:`invoke` for synchronous targets."""
        context = InvocationContext(target_id, operation_name, args, kwargs, target=_owner(target))
        return self.execute_sync(context, self.chain_for(target_id, operation_name, target))

    async def execute(self, context: InvocationContext, chain: Chain) -> Any:
        """Run *chain* for *context* and record the outcome on the context.

        Raises:
            TypeError: An around handler in *chain* is not a coroutine function.
        """
        context.begin()
        self._log_started(context, chain)
        with structlog.contextvars.bound_contextvars(invocation=context.qualified_name):
            try:
                proceed: Proceed = functools.partial(self._run_core, context, chain)
                for interceptor in reversed(chain.arounds):
                    proceed = self._around_link(interceptor, context, proceed)
                result = await proceed()
            except BaseException as exc:
                context.fail(exc)
                self._log_finished(context)
                raise
        context.complete(result)
        self._log_finished(context)
        return result

    def execute_sync(self, context: InvocationContext, chain: Chain) -> Any:
        """Blocking counterpart of :meth:`execute`; handlers must be synchronous."""
        context.begin()
        self._log_started(context, chain)
        with structlog.contextvars.bound_contextvars(invocation=context.qualified_name):
            try:
                proceed: Proceed = functools.partial(self._run_core_sync, context, chain)
                for interceptor in reversed(chain.arounds):
                    proceed = self._around_link_sync(interceptor, context, proceed)
                result = proceed()
            except BaseException as exc:
                context.fail(exc)
                self._log_finished(context)
                raise
        context.complete(result)
        self._log_finished(context)
        return result

    # ------------------------------------------------------------------
    # Async path
    # ------------------------------------------------------------------

    def _around_link(self, interceptor: Interceptor, context: InvocationContext, inner: Proceed) -> Proceed:
        handler = interceptor.async_handler or interceptor.handler
        if not _is_coroutine_function(handler):
            raise TypeError(
                f"around advice '{interceptor.name}' must be a coroutine function to run in "
                "Dispatcher.invoke(); declare it 'async def' or give it an async_handler"
            )
        if interceptor.retry_policy is not None:
            inner = self._retrying(interceptor, interceptor.retry_policy, context, inner)
        return functools.partial(handler, context, inner)

    def _retrying(
        self,
        interceptor: Interceptor,
        policy: RetryPolicy,
        context: InvocationContext,
        inner: Proceed,
    ) -> Proceed:
        async def proceed() -> Any:
            attempt = 1
            while True:
                try:
                    return await inner()
                except Exception as exc:
                    if not isinstance(exc, policy.retry_on):
                        raise
                    if attempt >= policy.max_attempts:
                        raise self._exhausted(interceptor, context, attempt, exc) from exc
                    await self._sleep(self._schedule_retry(interceptor, policy, context, attempt, exc))
                    attempt += 1

        return proceed

    async def _run_core(self, context: InvocationContext, chain: Chain) -> Any:
        try:
            result = await self._join_point(context, chain)
        except Exception as exc:
            await self._run_afters(context, chain, exc)
            raise
        except BaseException as exc:
            try:
                await self._run_afters(context, chain, exc)
            except AdviceError as advice_exc:
                self._log_masked(context, exc, advice_exc)
            raise
        await self._run_afters(context, chain, None)
        return result

    async def _join_point(self, context: InvocationContext, chain: Chain) -> Any:
        try:
            for interceptor in chain.befores:
                await self._call_advice(interceptor, context)
            result = chain.target(*context.args, **context.kwargs)
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            for interceptor in chain.after_throwings:
                await self._call_advice(interceptor, context, exc, in_flight=exc)
            raise
        for interceptor in chain.after_returnings:
            await self._call_advice(interceptor, context, result)
        return result

    async def _run_afters(self, context: InvocationContext, chain: Chain, in_flight: BaseException | None) -> None:
        failure: AdviceError | None = None
        for interceptor in chain.afters:
            try:
                await self._call_advice(interceptor, context, in_flight=failure or in_flight)
            except AdviceError as exc:
                failure = exc
        if failure is not None:
            raise failure

    async def _call_advice(
        self,
        interceptor: Interceptor,
        context: InvocationContext,
        *args: Any,
        in_flight: BaseException | None = None,
    ) -> None:
        try:
            result = interceptor.handler(context, *args)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            raise self._advice_error(interceptor, context, exc, in_flight) from exc

    # ------------------------------------------------------------------
    # Sync path
    # ------------------------------------------------------------------

    def _around_link_sync(self, interceptor: Interceptor, context: InvocationContext, inner: Proceed) -> Proceed:
        if interceptor.retry_policy is not None:
            inner = self._retrying_sync(interceptor, interceptor.retry_policy, context, inner)

        def link() -> Any:
            return _reject_awaitable(interceptor.handler(context, inner), interceptor.name)

        return link

    def _retrying_sync(
        self,
        interceptor: Interceptor,
        policy: RetryPolicy,
        context: InvocationContext,
        inner: Proceed,
    ) -> Proceed:
        def proceed() -> Any:
            attempt = 1
            while True:
                try:
                    return inner()
                except Exception as exc:
                    if not isinstance(exc, policy.retry_on):
                        raise
                    if attempt >= policy.max_attempts:
                        raise self._exhausted(interceptor, context, attempt, exc) from exc
                    self._sync_sleep(self._schedule_retry(interceptor, policy, context, attempt, exc))
                    attempt += 1

        return proceed

    def _run_core_sync(self, context: InvocationContext, chain: Chain) -> Any:
        try:
            result = self._join_point_sync(context, chain)
        except Exception as exc:
            self._run_afters_sync(context, chain, exc)
            raise
        except BaseException as exc:
            try:
                self._run_afters_sync(context, chain, exc)
            except AdviceError as advice_exc:
                self._log_masked(context, exc, advice_exc)
            raise
        self._run_afters_sync(context, chain, None)
        return result

    def _join_point_sync(self, context: InvocationContext, chain: Chain) -> Any:
        try:
            for interceptor in chain.befores:
                self._call_advice_sync(interceptor, context)
            result = _reject_awaitable(chain.target(*context.args, **context.kwargs), context.qualified_name)
        except Exception as exc:
            for interceptor in chain.after_throwings:
                self._call_advice_sync(interceptor, context, exc, in_flight=exc)
            raise
        for interceptor in chain.after_returnings:
            self._call_advice_sync(interceptor, context, result)
        return result

    def _run_afters_sync(self, context: InvocationContext, chain: Chain, in_flight: BaseException | None) -> None:
        failure: AdviceError | None = None
        for interceptor in chain.afters:
            try:
                self._call_advice_sync(interceptor, context, in_flight=failure or in_flight)
            except AdviceError as exc:
                failure = exc
        if failure is not None:
            raise failure

    def _call_advice_sync(
        self,
        interceptor: Interceptor,
        context: InvocationContext,
        *args: Any,
        in_flight: BaseException | None = None,
    ) -> None:
        try:
            result = interceptor.handler(context, *args)
        except Exception as exc:
            raise self._advice_error(interceptor, context, exc, in_flight) from exc
        _reject_awaitable(result, interceptor.name)

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------

    def _advice_error(
        self,
        interceptor: Interceptor,
        context: InvocationContext,
        exc: Exception,
        in_flight: BaseException | None,
    ) -> AdviceError:
        kind = interceptor.kind.value
        self._logger.debug(
            "advice_failed",
            kind=kind,
            advice=interceptor.name,
            operation=context.qualified_name,
            error=repr(exc),
        )
        return AdviceError(
            f"{kind} advice '{interceptor.name}' failed on {context.qualified_name}: {exc}",
            kind=kind,
            advice_name=interceptor.name,
            original_error=in_flight,
        )

    def _log_masked(self, context: InvocationContext, abort: BaseException, exc: AdviceError) -> None:
        # Cancellation and interrupts stay the outcome; the after failure is only reported.
        self._logger.warning(
            "after_advice_failed_during_abort",
            operation=context.qualified_name,
            advice=exc.advice_name,
            abort=type(abort).__name__,
            error=repr(exc.__cause__),
        )

    def _schedule_retry(
        self,
        interceptor: Interceptor,
        policy: RetryPolicy,
        context: InvocationContext,
        attempt: int,
        exc: Exception,
    ) -> float:
        delay = policy.delay_for(attempt)
        self._logger.warning(
            "retry_scheduled",
            operation=context.qualified_name,
            advice=interceptor.name,
            attempt=attempt,
            max_attempts=policy.max_attempts,
            delay_seconds=delay,
            error=repr(exc),
        )
        return delay

    def _exhausted(
        self,
        interceptor: Interceptor,
        context: InvocationContext,
        attempts: int,
        exc: Exception,
    ) -> RetryExhausted:
        self._logger.error(
            "retry_exhausted",
            operation=context.qualified_name,
            advice=interceptor.name,
            attempts=attempts,
            error=repr(exc),
        )
        return RetryExhausted(
            f"{context.qualified_name} failed after {attempts} attempt(s): {exc}",
            attempts=attempts,
            last_error=exc,
        )

    def _log_started(self, context: InvocationContext, chain: Chain) -> None:
        if self._log_invocations:
            self._logger.debug(
                "invocation_started",
                operation=context.qualified_name,
                interceptors=[i.name for i in chain.interceptors],
            )

    def _log_finished(self, context: InvocationContext) -> None:
        if self._log_invocations:
            self._logger.debug(
                "invocation_finished",
                operation=context.qualified_name,
                state=context.state.value,
                error=repr(context.error) if context.error is not None else None,
            )


def _is_coroutine_function(handler: Callable[..., Any]) -> bool:
    return inspect.iscoroutinefunction(handler) or inspect.iscoroutinefunction(getattr(handler, "__call__", None))


def _reject_awaitable(value: Any, where: str) -> Any:
    if inspect.isawaitable(value):
        if inspect.iscoroutine(value):
            value.close()
        raise TypeError(f"'{where}' returned an awaitable in a synchronous invocation; use Dispatcher.invoke()")
    return value


def _owner(target: Callable[..., Any]) -> Any:
    return target.__self__ if inspect.ismethod(target) else None
