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
"""Retry advice: re-runs the inner chain under a RetryPolicy."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from pyweave.aop.retry import RetryPolicy
from pyweave.aop.types import Interceptor, InvocationContext


def retry_interceptor(policy: RetryPolicy | None = None, *, order: int = 0) -> Interceptor:
    """Around advice that only proceeds; the dispatcher retries it under *policy*.

    Once the policy's attempts are used up the caller receives
    :class:`~pyweave.kernel.exceptions.RetryExhausted`.
    """

    def proceed_with_retry(context: InvocationContext, proceed: Callable[[], Any]) -> Any:
        return proceed()

    async def proceed_with_retry_async(context: InvocationContext, proceed: Callable[[], Awaitable[Any]]) -> Any:
        return await proceed()

    return Interceptor.around(
        proceed_with_retry,
        async_handler=proceed_with_retry_async,
        name="retry",
        order=order,
        retry_policy=policy or RetryPolicy(),
    )
