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
"""Error-handling advice: fallback values and exception translation."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from pyweave.aop.types import Interceptor, InvocationContext

logger = structlog.get_logger("pyweave.interceptors.errors")


def fallback_interceptor(
    *,
    fallback_value: Any = None,
    fallback_method: Callable[[InvocationContext, Exception], Any] | None = None,
    on: tuple[type[Exception], ...] = (Exception,),
    order: int = 0,
) -> Interceptor:
    """Around advice that swallows matching errors and returns a default.

    When *fallback_method* is given it receives the context and the error and
    its return value (awaited if needed) is used; otherwise *fallback_value*
    is returned. Errors not matching *on* propagate unchanged.

    Args:
        fallback_value: Value returned in place of the error.
        fallback_method: Callable ``(context, error) -> value`` computing the default.
        on: Exception types to catch (default: all exceptions).
    """

    def recover(context: InvocationContext, exc: Exception) -> Any:
        logger.warning(
            "fallback_applied",
            operation=context.qualified_name,
            args=list(context.args),
            error_type=type(exc).__name__,
            error=str(exc),
        )
        if fallback_method is not None:
            return fallback_method(context, exc)
        return fallback_value

    def handle(context: InvocationContext, proceed: Callable[[], Any]) -> Any:
        try:
            return proceed()
        except on as exc:
            return recover(context, exc)

    async def handle_async(context: InvocationContext, proceed: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await proceed()
        except on as exc:
            result = recover(context, exc)
            if inspect.isawaitable(result):
                result = await result
            return result

    return Interceptor.around(handle, async_handler=handle_async, name="fallback", order=order)


def translating_interceptor(
    translator: Callable[[Exception], Exception],
    *,
    on: tuple[type[Exception], ...] = (Exception,),
    order: int = 0,
) -> Interceptor:
    """Around advice that rethrows matching errors as ``translator(error)``.

    The translated error is chained to the original (``raise ... from``).
    """

    def translated(exc: Exception) -> Exception:
        replacement = translator(exc)
        logger.debug("error_translated", source=type(exc).__name__, target=type(replacement).__name__)
        return replacement

    def handle(context: InvocationContext, proceed: Callable[[], Any]) -> Any:
        try:
            return proceed()
        except on as exc:
            raise translated(exc) from exc

    async def handle_async(context: InvocationContext, proceed: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await proceed()
        except on as exc:
            raise translated(exc) from exc

    return Interceptor.around(handle, async_handler=handle_async, name="translate", order=order)
