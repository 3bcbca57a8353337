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
"""Structlog-backed :class:`~pyweave.logging.port.LoggingPort`."""

from __future__ import annotations

import logging
import sys
from typing import Any

import structlog

from pyweave.core.config import Config
from pyweave.logging.port import LoggingPort, LoggingProperties

# Shared by both renderers; the dispatcher binds ``invocation`` as a
# contextvar, so merge_contextvars tags every event logged inside a call.
_BASE_PROCESSORS: tuple[structlog.types.Processor, ...] = (
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
)


def _renderers(fmt: str) -> list[structlog.types.Processor]:
    if fmt == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer()]


class StructlogAdapter:
    """Routes pyweave's structured events through structlog onto stdlib logging.

    Configuration comes from the ``pyweave.logging`` section, bound to
    :class:`~pyweave.logging.port.LoggingProperties`.
    """

    def __init__(self, stream: Any = None) -> None:
        self._stream = stream or sys.stdout
        self._properties = LoggingProperties()

    @property
    def properties(self) -> LoggingProperties:
        return self._properties

    def configure(self, config: Config) -> None:
        self._properties = config.bind(LoggingProperties)
        structlog.configure(
            processors=[*_BASE_PROCESSORS, *_renderers(self._properties.format)],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        logging.basicConfig(
            format="%(message)s",
            stream=self._stream,
            level=_level(self._properties.root_level),
            force=True,
        )
        for name, level in self._properties.module_levels.items():
            self.set_level(name, level)

    def get_logger(self, name: str) -> Any:
        return structlog.get_logger(name)

    def set_level(self, name: str, level: str) -> None:
        logging.getLogger(name).setLevel(_level(level))


def _level(name: str) -> int:
    return logging.getLevelNamesMapping().get(name.upper(), logging.INFO)


def configure_logging(config: Config, port: LoggingPort | None = None) -> LoggingPort:
    """Apply ``pyweave.logging`` to *port* (a new :class:`StructlogAdapter` by default)."""
    port = port or StructlogAdapter()
    port.configure(config)
    return port
