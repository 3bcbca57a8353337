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
"""AOP decorators: @aspect and advice annotations."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, TypeVar

from pyweave.aop.retry import RetryPolicy
from pyweave.aop.types import AdviceKind

T = TypeVar("T", bound=type)
F = TypeVar("F", bound=Callable[..., Any])


# ---------------------------------------------------------------------------
# @aspect: marks a class as an aspect
# ---------------------------------------------------------------------------


def aspect(cls: T) -> T:
    """Mark a class as a PyWeave aspect.

    Only instances of ``@aspect`` classes are accepted by
    :meth:`AspectRegistry.register`.
    """
    cls.__pyweave_aspect__ = True  # type: ignore[attr-defined]
    return cls


def is_aspect(obj: Any) -> bool:
    return bool(getattr(obj if isinstance(obj, type) else type(obj), "__pyweave_aspect__", False))


# ---------------------------------------------------------------------------
# Advice decorators: @before, @after_returning, @after_throwing, @after, @around
# ---------------------------------------------------------------------------


def _make_advice(kind: AdviceKind) -> Callable[[str], Callable[[F], F]]:
    """Create an advice decorator factory for the given *kind*.

    The returned factory takes a pointcut pattern string and returns a
    decorator that annotates the wrapped method with:

    * ``__pyweave_advice_kind__``: an :class:`AdviceKind`
    * ``__pyweave_pointcut__``: the pointcut expression string
    """

    def factory(pointcut: str) -> Callable[[F], F]:
        def decorator(fn: F) -> F:
            fn.__pyweave_advice_kind__ = kind  # type: ignore[attr-defined]
            fn.__pyweave_pointcut__ = pointcut  # type: ignore[attr-defined]
            return fn

        return decorator

    return factory


before = _make_advice(AdviceKind.BEFORE)
after_returning = _make_advice(AdviceKind.AFTER_RETURNING)
after_throwing = _make_advice(AdviceKind.AFTER_THROWING)
after = _make_advice(AdviceKind.AFTER)

_around = _make_advice(AdviceKind.AROUND)


def around(pointcut: str, *, retry: RetryPolicy | None = None) -> Callable[[F], F]:
    """Mark a method as around advice, optionally retrying ``proceed`` under *retry*."""

    def decorator(fn: F) -> F:
        fn = _around(pointcut)(fn)
        fn.__pyweave_retry_policy__ = retry  # type: ignore[attr-defined]
        return fn

    return decorator
