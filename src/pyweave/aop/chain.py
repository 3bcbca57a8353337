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
"""Chain: the interceptors of one invocation plus its terminal target."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from pyweave.aop.types import AdviceKind, Interceptor


@dataclass(frozen=True)
class Chain:
    """Immutable ordered interceptor list wrapped around a target callable.

    Interceptors are partitioned by kind once, keeping their relative order.
    Around interceptors always form the outer layers, first one outermost,
    whatever their position in the list.
    """

    interceptors: tuple[Interceptor, ...]
    target: Callable[..., Any]
    _by_kind: dict[AdviceKind, tuple[Interceptor, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        interceptors = tuple(self.interceptors)
        object.__setattr__(self, "interceptors", interceptors)
        object.__setattr__(
            self,
            "_by_kind",
            {kind: tuple(i for i in interceptors if i.kind is kind) for kind in AdviceKind},
        )

    @classmethod
    def of(cls, target: Callable[..., Any], interceptors: Iterable[Interceptor] = ()) -> Chain:
        return cls(tuple(interceptors), target)

    @property
    def arounds(self) -> tuple[Interceptor, ...]:
        return self._by_kind[AdviceKind.AROUND]

    @property
    def befores(self) -> tuple[Interceptor, ...]:
        return self._by_kind[AdviceKind.BEFORE]

    @property
    def after_returnings(self) -> tuple[Interceptor, ...]:
        return self._by_kind[AdviceKind.AFTER_RETURNING]

    @property
    def after_throwings(self) -> tuple[Interceptor, ...]:
        return self._by_kind[AdviceKind.AFTER_THROWING]

    @property
    def afters(self) -> tuple[Interceptor, ...]:
        return self._by_kind[AdviceKind.AFTER]
