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
"""Logging contract for the interception runtime and its ``pyweave.logging`` section."""

from __future__ import annotations

from typing import Any, Literal, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from pyweave.core.config import Config, config_properties


@config_properties(prefix="pyweave.logging")
class LoggingProperties(BaseModel):
    """``pyweave.logging`` section.

    ``level`` maps logger names to level names; the ``root`` entry sets the
    default, every other entry (e.g. ``pyweave.aop.dispatcher``) overrides
    one logger.
    """

    format: Literal["console", "json"] = "console"
    level: dict[str, str] = Field(default_factory=lambda: {"root": "INFO"})

    @property
    def root_level(self) -> str:
        return self.level.get("root", "INFO").upper()

    @property
    def module_levels(self) -> dict[str, str]:
        return {name: value.upper() for name, value in self.level.items() if name != "root"}


@runtime_checkable
class LoggingPort(Protocol):
    """What the dispatcher and built-in interceptors need from a logging backend.

    ``get_logger`` must return an object accepting structured calls such as
    ``logger.warning("retry_scheduled", attempt=2)``.
    """

    def configure(self, config: Config) -> None: ...

    def get_logger(self, name: str) -> Any: ...

    def set_level(self, name: str, level: str) -> None: ...
