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
"""Retry policy for around interceptors: attempt bound and backoff strategies."""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Literal

from pydantic import BaseModel, Field

from pyweave.core.config import Config, config_properties

Backoff = Callable[[int], timedelta]


@dataclass(frozen=True)
class FixedBackoff:
    """Same delay before every retry."""

    delay: timedelta

    def __call__(self, attempt: int) -> timedelta:
        return self.delay


@dataclass(frozen=True)
class LinearBackoff:
    """``attempt * base_delay``: 1s, 2s, 3s... for a one second base."""

    base_delay: timedelta

    def __call__(self, attempt: int) -> timedelta:
        return self.base_delay * attempt


@dataclass(frozen=True)
class ExponentialBackoff:
    """``base_delay * multiplier ** (attempt - 1)``, capped at *max_delay*."""

    base_delay: timedelta
    multiplier: float = 2.0
    max_delay: timedelta | None = None

    def __call__(self, attempt: int) -> timedelta:
        try:
            seconds = self.base_delay.total_seconds() * self.multiplier ** (attempt - 1)
        except OverflowError:
            seconds = math.inf
        if self.max_delay is not None and seconds > self.max_delay.total_seconds():
            return self.max_delay
        return timedelta(seconds=seconds)


@dataclass(frozen=True)
class RetryPolicy:
    """Bounds how often a retrying around interceptor re-runs its inner chain.

    Attempt 1 runs immediately. Before attempt ``n + 1`` the dispatcher
    sleeps ``backoff(n)``, where ``n`` is the number of the attempt that
    just failed. Only errors matching *retry_on* are retried; anything else
    propagates straight away.

    Attributes:
        max_attempts: Total number of attempts, including the first one.
        backoff: Maps a failed attempt number to the delay before the next.
        retry_on: Exception types that trigger another attempt.
    """

    max_attempts: int = 3
    backoff: Backoff = field(default_factory=lambda: LinearBackoff(timedelta(seconds=1)))
    retry_on: tuple[type[Exception], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after *attempt* failed."""
        delay = self.backoff(attempt)
        if isinstance(delay, timedelta):
            return delay.total_seconds()
        return float(delay)

    @classmethod
    def linear(cls, max_attempts: int, base_delay: timedelta) -> RetryPolicy:
        return cls(max_attempts=max_attempts, backoff=LinearBackoff(base_delay))

    @classmethod
    def from_config(cls, config: Config) -> RetryPolicy:
        return cls.from_properties(config.bind(RetryProperties))

    @classmethod
    def from_properties(cls, props: RetryProperties) -> RetryPolicy:
        """Build a policy from bound ``pyweave.retry`` configuration."""
        base = timedelta(seconds=props.base_delay)
        backoff: Backoff
        if props.strategy == "fixed":
            backoff = FixedBackoff(base)
        elif props.strategy == "exponential":
            max_delay = timedelta(seconds=props.max_delay) if props.max_delay is not None else None
            backoff = ExponentialBackoff(base, props.multiplier, max_delay)
        else:
            backoff = LinearBackoff(base)
        return cls(max_attempts=props.max_attempts, backoff=backoff)


@config_properties(prefix="pyweave.retry")
class RetryProperties(BaseModel):
    """``pyweave.retry`` section: defaults for configured retry policies."""

    max_attempts: int = Field(default=3, ge=1)
    strategy: Literal["fixed", "linear", "exponential"] = "linear"
    base_delay: float = Field(default=1.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)
    max_delay: float | None = Field(default=30.0, ge=0)
