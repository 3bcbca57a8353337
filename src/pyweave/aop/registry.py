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
"""AspectRegistry: collects advice bindings and resolves them per call."""

from __future__ import annotations

import inspect
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from pyweave.aop.decorators import is_aspect
from pyweave.aop.ordering import get_order
from pyweave.aop.pointcut import matches_pointcut
from pyweave.aop.types import Interceptor
from pyweave.kernel.exceptions import RegistryFrozenError


@runtime_checkable
class Matcher(Protocol):
    """Selects the ordered interceptors that apply to one call site."""

    def resolve(self, target_id: str, operation_name: str) -> Sequence[Interceptor]: ...


@dataclass(frozen=True)
class AdviceBinding:
    """A single interceptor bound to a pointcut."""

    pointcut: str
    interceptor: Interceptor


class AspectRegistry:
    """Pointcut-based :class:`Matcher` fed from ``@aspect`` instances.

    Bindings are kept sorted by interceptor order; equal orders keep
    registration order. Once :meth:`freeze` is called the registry is
    read-only and safe to share between threads.

    Usage::

        registry = AspectRegistry()
        registry.register(LoggingAspect())
        registry.register_interceptor("billing.*.*", timing_interceptor())
        registry.freeze()

        interceptors = registry.resolve("billing.Invoice", "total")
    """

    def __init__(self) -> None:
        self._bindings: list[AdviceBinding] = []
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def register(self, aspect_instance: Any) -> None:
        """Extract advice methods from an ``@aspect`` instance and store bindings."""
        if not is_aspect(aspect_instance):
            raise TypeError(f"{type(aspect_instance).__name__} is not decorated with @aspect")
        self._check_mutable(type(aspect_instance).__name__)

        aspect_cls = type(aspect_instance)
        order = get_order(aspect_cls)
        bindings: list[AdviceBinding] = []

        for name, method in inspect.getmembers(aspect_instance, predicate=inspect.ismethod):
            kind = getattr(method, "__pyweave_advice_kind__", None)
            pointcut = getattr(method, "__pyweave_pointcut__", None)
            if kind is None or pointcut is None:
                continue
            interceptor = Interceptor(
                kind=kind,
                handler=method,
                name=f"{aspect_cls.__name__}.{name}",
                order=order,
                retry_policy=getattr(method, "__pyweave_retry_policy__", None),
            )
            bindings.append(AdviceBinding(pointcut, interceptor))

        # getmembers() sorts by name; restore declaration order.
        bindings.sort(key=lambda b: _definition_line(b.interceptor.handler))
        self._add(bindings)

    def register_interceptor(self, pointcut: str, interceptor: Interceptor) -> None:
        self.register_interceptors(pointcut, [interceptor])

    def register_interceptors(self, pointcut: str, interceptors: Iterable[Interceptor]) -> None:
        self._check_mutable(pointcut)
        self._add([AdviceBinding(pointcut, i) for i in interceptors])

    def get_all_bindings(self) -> list[AdviceBinding]:
        return list(self._bindings)

    def get_matching(self, qualified_name: str) -> list[AdviceBinding]:
        """Return bindings whose pointcut matches *qualified_name*."""
        return [b for b in self._bindings if matches_pointcut(b.pointcut, qualified_name)]

    def resolve(self, target_id: str, operation_name: str) -> list[Interceptor]:
        return [b.interceptor for b in self.get_matching(f"{target_id}.{operation_name}")]

    def _add(self, bindings: list[AdviceBinding]) -> None:
        self._bindings.extend(bindings)
        self._bindings.sort(key=lambda b: b.interceptor.order)

    def _check_mutable(self, what: str) -> None:
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register '{what}': registry is frozen", registering=what)


def _definition_line(handler: Any) -> int:
    code = getattr(inspect.unwrap(getattr(handler, "__func__", handler)), "__code__", None)
    return code.co_firstlineno if code is not None else 0
