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
"""AOP core types: InvocationContext, Interceptor and the advice kinds."""

from __future__ import annotations

import enum
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pyweave.aop.retry import RetryPolicy
from pyweave.kernel.exceptions import InvocationStateError


class AdviceKind(str, enum.Enum):
    """The five kinds of advice an interceptor can implement."""

    BEFORE = "before"
    AFTER = "after"
    AFTER_RETURNING = "after_returning"
    AFTER_THROWING = "after_throwing"
    AROUND = "around"


class InvocationState(str, enum.Enum):
    PENDING = "pending"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, eq=False)
class InvocationContext:
    """Per-call descriptor of an intercepted invocation (the join point).

    The descriptive fields are read-only: advice can observe the arguments
    but cannot rebind or mutate what the target receives. The outcome is
    written exactly once by the dispatcher when the invocation completes;
    until then :attr:`result` and :attr:`error` are ``None``.

    Attributes:
        target_id: Identity of the intercepted target, e.g. ``"billing.Invoice"``.
        operation_name: Name of the operation being called.
        args: Positional arguments passed to the target.
        kwargs: Keyword arguments passed to the target (a read-only mapping).
        target: The object owning the operation, when there is one.
    """

    target_id: str
    operation_name: str
    args: tuple = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)
    target: Any = None
    _state: InvocationState = field(default=InvocationState.PENDING, init=False, repr=False)
    _result: Any = field(default=None, init=False, repr=False)
    _error: BaseException | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "kwargs", MappingProxyType(dict(self.kwargs)))

    @property
    def qualified_name(self) -> str:
        return f"{self.target_id}.{self.operation_name}"

    @property
    def state(self) -> InvocationState:
        return self._state

    @property
    def result(self) -> Any:
        return self._result

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def done(self) -> bool:
        return self._state in (InvocationState.COMPLETED, InvocationState.FAILED)

    def begin(self) -> None:
        if self._state is not InvocationState.PENDING:
            raise InvocationStateError(
                f"Invocation {self.qualified_name} cannot start from state '{self._state.value}'"
            )
        object.__setattr__(self, "_state", InvocationState.EXECUTING)

    def complete(self, result: Any) -> None:
        self._finish(InvocationState.COMPLETED)
        object.__setattr__(self, "_result", result)

    def fail(self, error: BaseException) -> None:
        self._finish(InvocationState.FAILED)
        object.__setattr__(self, "_error", error)

    def _finish(self, state: InvocationState) -> None:
        if self._state is not InvocationState.EXECUTING:
            raise InvocationStateError(
                f"Invocation {self.qualified_name} cannot move to '{state.value}' "
                f"from state '{self._state.value}'"
            )
        object.__setattr__(self, "_state", state)


@dataclass(frozen=True)
class Interceptor:
    """One unit of advice: a kind plus the callable implementing it.

    Handler signatures by kind:

    * ``BEFORE``, ``AFTER``: ``handler(context)``
    * ``AFTER_RETURNING``: ``handler(context, result)``
    * ``AFTER_THROWING``: ``handler(context, error)``
    * ``AROUND``: ``handler(context, proceed)``

    Around advice runs on both dispatcher paths, which hand it different
    ``proceed`` callables: a plain one in :meth:`Dispatcher.execute_sync` and
    a coroutine function in :meth:`Dispatcher.execute`. An around handler used
    with ``execute`` must therefore be a coroutine function that awaits
    ``proceed()``. Advice meant for both paths passes a plain *handler* plus an
    *async_handler* for the async path.

    Interceptors are immutable and may be shared by any number of targets
    and concurrent invocations.

    Attributes:
        kind: The advice kind.
        handler: Callable implementing the advice; may be a coroutine function.
        name: Display name used in logs and :class:`AdviceError`.
        order: Precedence, lower first.
        retry_policy: Only for ``AROUND``; makes ``proceed`` retry the inner chain.
        async_handler: Only for ``AROUND``; coroutine function used in place of
            *handler* by :meth:`Dispatcher.execute`.
    """

    kind: AdviceKind
    handler: Callable[..., Any]
    name: str = ""
    order: int = 0
    retry_policy: RetryPolicy | None = None
    async_handler: Callable[..., Any] | None = None

    def __post_init__(self) -> None:
        if self.kind is not AdviceKind.AROUND:
            if self.retry_policy is not None:
                raise ValueError(f"retry_policy is only supported on around advice, not '{self.kind.value}'")
            if self.async_handler is not None:
                raise ValueError(f"async_handler is only supported on around advice, not '{self.kind.value}'")
        if not self.name:
            object.__setattr__(self, "name", getattr(self.handler, "__qualname__", repr(self.handler)))

    @classmethod
    def before(cls, handler: Callable[..., Any], **kwargs: Any) -> Interceptor:
        return cls(AdviceKind.BEFORE, handler, **kwargs)

    @classmethod
    def after(cls, handler: Callable[..., Any], **kwargs: Any) -> Interceptor:
        return cls(AdviceKind.AFTER, handler, **kwargs)

    @classmethod
    def after_returning(cls, handler: Callable[..., Any], **kwargs: Any) -> Interceptor:
        return cls(AdviceKind.AFTER_RETURNING, handler, **kwargs)

    @classmethod
    def after_throwing(cls, handler: Callable[..., Any], **kwargs: Any) -> Interceptor:
        return cls(AdviceKind.AFTER_THROWING, handler, **kwargs)

    @classmethod
    def around(cls, handler: Callable[..., Any], **kwargs: Any) -> Interceptor:
        return cls(AdviceKind.AROUND, handler, **kwargs)
