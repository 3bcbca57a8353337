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
"""Logging advice: records calls, results and errors of intercepted operations."""

from __future__ import annotations

from typing import Any

import structlog

from pyweave.aop.types import Interceptor, InvocationContext


def logging_interceptors(*, logger: Any = None, order: int = 0) -> list[Interceptor]:
    """Build before/after/after-returning/after-throwing logging advice.

    Register all four under one pointcut::

        registry.register_interceptors("billing.*.*", logging_interceptors())
    """
    log = logger or structlog.get_logger("pyweave.interceptors.logging")

    def log_before(context: InvocationContext) -> None:
        log.info(
            "operation_called",
            operation=context.qualified_name,
            args=list(context.args),
            kwargs=dict(context.kwargs),
        )

    def log_after_returning(context: InvocationContext, result: Any) -> None:
        log.info("operation_returned", operation=context.qualified_name, result=result)

    def log_after_throwing(context: InvocationContext, error: BaseException) -> None:
        log.error(
            "operation_raised",
            operation=context.qualified_name,
            error_type=type(error).__name__,
            error=str(error),
        )

    def log_after(context: InvocationContext) -> None:
        log.info("operation_finished", operation=context.qualified_name)

    return [
        Interceptor.before(log_before, name="logging.before", order=order),
        Interceptor.after_returning(log_after_returning, name="logging.after_returning", order=order),
        Interceptor.after_throwing(log_after_throwing, name="logging.after_throwing", order=order),
        Interceptor.after(log_after, name="logging.after", order=order),
    ]
