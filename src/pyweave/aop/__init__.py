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
"""Aspect-Oriented Programming support for PyWeave."""

from pyweave.aop.chain import Chain
from pyweave.aop.decorators import after, after_returning, after_throwing, around, aspect, before
from pyweave.aop.dispatcher import Dispatcher, DispatcherProperties
from pyweave.aop.ordering import HIGHEST_PRECEDENCE, LOWEST_PRECEDENCE, order
from pyweave.aop.pointcut import matches_pointcut
from pyweave.aop.registry import AdviceBinding, AspectRegistry, Matcher
from pyweave.aop.retry import (
    ExponentialBackoff,
    FixedBackoff,
    LinearBackoff,
    RetryPolicy,
    RetryProperties,
)
from pyweave.aop.types import AdviceKind, Interceptor, InvocationContext, InvocationState
from pyweave.aop.weaver import weave_bean

__all__ = [
    "HIGHEST_PRECEDENCE",
    "LOWEST_PRECEDENCE",
    "AdviceBinding",
    "AdviceKind",
    "AspectRegistry",
    "Chain",
    "Dispatcher",
    "DispatcherProperties",
    "ExponentialBackoff",
    "FixedBackoff",
    "Interceptor",
    "InvocationContext",
    "InvocationState",
    "LinearBackoff",
    "Matcher",
    "RetryPolicy",
    "RetryProperties",
    "after",
    "after_returning",
    "after_throwing",
    "around",
    "aspect",
    "before",
    "matches_pointcut",
    "order",
    "weave_bean",
]
