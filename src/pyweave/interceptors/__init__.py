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
"""Ready-made interceptors for common cross-cutting concerns."""

from pyweave.interceptors.errors import fallback_interceptor, translating_interceptor
from pyweave.interceptors.logging import logging_interceptors
from pyweave.interceptors.retry import retry_interceptor
from pyweave.interceptors.timing import timing_interceptor

__all__ = [
    "fallback_interceptor",
    "logging_interceptors",
    "retry_interceptor",
    "timing_interceptor",
    "translating_interceptor",
]
