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
"""Timing advice: measures how long the wrapped operation takes."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from pyweave.aop.types import Interceptor, InvocationContext


def timing_interceptor(
    *,
    logger: Any = None,
    clock: Callable[[], int] = time.perf_counter_ns,
    order: int = 0,
) -> Interceptor:
    """Around advice logging elapsed time in ms and ns, on success and failure.

    Register it with a low *order* to include the other advice in the figure.
    """
    log = logger or structlog.get_logger("pyweave.interceptors.timing")

    def record(context: InvocationContext, started: int, outcome: str) -> None:
        elapsed_ns = clock() - started
        log.info(
            "operation_timed",
            operation=context.qualified_name,
            outcome=outcome,
            elapsed_ms=elapsed_ns // 1_000_000,
            elapsed_ns=elapsed_ns,
        )

    def measure(context: InvocationContext, proceed: Callable[[], Any]) -> Any:
        started = clock()
        try:
            result = proceed()
        except Exception:
            record(context, started, "failed")
            raise
        record(context, started, "completed")
        return result

    async def measure_async(context: InvocationContext, proceed: Callable[[], Awaitable[Any]]) -> Any:
        started = clock()
        try:
            result = await proceed()
        except Exception:
            record(context, started, "failed")
            raise
        record(context, started, "completed")
        return result

    return Interceptor.around(measure, async_handler=measure_async, name="timing", order=order)
