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
"""AOP weaver: routes public methods of an object through the dispatcher."""

from __future__ import annotations

import functools
import inspect
from typing import Any

from pyweave.aop.dispatcher import Dispatcher
from pyweave.aop.registry import AspectRegistry


def weave_bean(
    bean: Any,
    qualified_prefix: str,
    registry: AspectRegistry,
    dispatcher: Dispatcher | None = None,
) -> list[str]:
    """Weave advice into public methods of *bean*.

    For each public method (name not starting with ``_``), ask the
    *registry* whether any interceptors match ``f"{qualified_prefix}.{name}"``.
    If so, replace the method on the instance with a wrapper that sends every
    call through the dispatcher, so calls made via ``self`` inside the bean
    are intercepted as well.

    Coroutine methods are dispatched with :meth:`Dispatcher.invoke`, plain
    methods with :meth:`Dispatcher.invoke_sync`. Interceptors are resolved
    again on every call.

    Returns the names of the woven methods.
    """
    dispatcher = dispatcher or Dispatcher(registry)
    woven: list[str] = []

    for attr_name in dir(bean):
        if attr_name.startswith("_"):
            continue

        attr = getattr(bean, attr_name, None)
        if attr is None or not callable(attr) or inspect.isclass(attr):
            continue

        if not registry.resolve(qualified_prefix, attr_name):
            continue

        if inspect.iscoroutinefunction(attr):
            wrapper = _build_async_wrapper(dispatcher, qualified_prefix, attr_name, attr)
        else:
            wrapper = _build_sync_wrapper(dispatcher, qualified_prefix, attr_name, attr)

        setattr(bean, attr_name, wrapper)
        woven.append(attr_name)

    return woven


def _build_async_wrapper(dispatcher: Dispatcher, target_id: str, method_name: str, original: Any) -> Any:
    @functools.wraps(original)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        return await dispatcher.invoke(target_id, method_name, original, *args, **kwargs)

    wrapper.__pyweave_woven__ = True  # type: ignore[attr-defined]
    return wrapper


def _build_sync_wrapper(dispatcher: Dispatcher, target_id: str, method_name: str, original: Any) -> Any:
    @functools.wraps(original)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        return dispatcher.invoke_sync(target_id, method_name, original, *args, **kwargs)

    wrapper.__pyweave_woven__ = True  # type: ignore[attr-defined]
    return wrapper
