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
"""Unified exception hierarchy for PyWeave.

All framework exceptions inherit from PyWeaveException, enabling unified
error handling across modules.

Categories:
- DomainError: Errors raised by intercepted targets
- AdviceError: Failures inside Before/After/AfterReturning/AfterThrowing advice
- RetryExhausted: A retrying around interceptor ran out of attempts
- InvocationStateError, RegistryFrozenError: Misuse of the runtime itself
"""

from __future__ import annotations

from typing import Any


# =============================================================================
# Base Exception
# =============================================================================


class PyWeaveException(Exception):
    """Base exception for all PyWeave errors.

    Carries an optional error code and context dict for structured error data.

    Args:
        message: Human-readable error description.
        code: Machine-readable error code (e.g. "ADVICE_001").
        context: Arbitrary key-value pairs for error context and debugging.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        context: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.context: dict = context if context is not None else {}


# =============================================================================
# Domain Exceptions
# =============================================================================


class DomainError(PyWeaveException):
    """Convenience base for errors raised by intercepted targets.

    Targets may raise any exception; the dispatcher never wraps them.
    Subclassing this is optional.
    """


# =============================================================================
# Advice Exceptions
# =============================================================================


class AdviceError(PyWeaveException):
    """An exception escaped a non-around advice body.

    The body's exception is available as ``__cause__``. When the failure
    happened while another error was already propagating (an ``@after``
    advice failing after the target raised), that error is kept in
    :attr:`original_error`.

    Args:
        kind: The advice kind value, e.g. ``"before"``.
        advice_name: Name of the failing interceptor.
    """

    def __init__(
        self,
        message: str,
        kind: str,
        advice_name: str,
        original_error: BaseException | None = None,
    ) -> None:
        super().__init__(
            message,
            code="ADVICE_FAILED",
            context={"kind": kind, "advice": advice_name},
        )
        self.kind = kind
        self.advice_name = advice_name
        self.original_error = original_error


class RetryExhausted(PyWeaveException):
    """All attempts allowed by a retry policy failed.

    The last attempt's error is ``__cause__`` and :attr:`last_error`.
    """

    def __init__(self, message: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(message, code="RETRY_EXHAUSTED", context={"attempts": attempts})
        self.attempts = attempts
        self.last_error = last_error


# =============================================================================
# Runtime Exceptions
# =============================================================================


class InvocationStateError(PyWeaveException):
    """An invocation context was moved through an illegal state transition."""


class RegistryFrozenError(PyWeaveException):
    """Registration was attempted on a frozen registry."""

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message, code="REGISTRY_FROZEN", context=context)
