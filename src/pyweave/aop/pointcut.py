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
"""Pointcut expression matching for advice targeting."""

from __future__ import annotations

import functools
import re


def matches_pointcut(pattern: str, qualified_name: str) -> bool:
    """Check whether *qualified_name* matches a pointcut *pattern*.

    Pattern syntax
    --------------
    * ``*`` : matches exactly one dot-separated segment.
    * ``**``: matches one or more segments (crosses dots).
    * Partial globs use ``*`` and ``?`` within a segment,
      e.g. ``get_*`` matches ``get_order``.

    Examples
    --------
    >>> matches_pointcut("calculator.*", "calculator.div")
    True
    >>> matches_pointcut("**.*Service.*", "a.b.c.OrderService.create")
    True
    >>> matches_pointcut("billing.Invoice.get_*", "billing.Invoice.get_total")
    True
    >>> matches_pointcut("*.div", "a.b.Calculator.div")
    False
    """
    return _compile(pattern).fullmatch(qualified_name) is not None


def _segment_to_regex(seg: str) -> str:
    if seg == "**":
        return r"(?:[^.]+\.)*[^.]+"
    if seg == "*":
        return r"[^.]+"

    parts: list[str] = []
    for ch in seg:
        if ch == "*":
            parts.append("[^.]*")
        elif ch == "?":
            parts.append("[^.]")
        else:
            parts.append(re.escape(ch))
    return "".join(parts)


@functools.lru_cache(maxsize=256)
def _compile(pattern: str) -> re.Pattern[str]:
    """Convert a pointcut pattern string into a compiled regex."""
    return re.compile(r"\.".join(_segment_to_regex(seg) for seg in pattern.split(".")))
