#!/usr/bin/env python3

# termrelay - Chat relay for long-lived interactive terminal programs
# Copyright (C) 2025 Robert Macrae
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""Error kinds and operation results shared by the process handle, the sinks and the session pipeline."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    """Failure categories surfaced by relay operations"""
    PROCESS_UNAVAILABLE = "process-unavailable"
    SINK_DELIVERY = "sink-delivery-failure"
    SHUTDOWN_SIGNAL = "shutdown-signal-failure"
    FILTER_INPUT = "filter-malformed-input"


@dataclass(frozen=True)
class OpResult:
    """Outcome of a write, kill, resize, edit or send call.

    Callers log a failed result and carry on; nothing in the tick loop raises on a bad result.
    """
    ok: bool
    kind: Optional[ErrorKind] = None
    detail: str = ""

    @classmethod
    def success(cls, detail: str = "") -> 'OpResult':
        return cls(True, None, detail)

    @classmethod
    def failure(cls, kind: ErrorKind, detail: str = "") -> 'OpResult':
        return cls(False, kind, detail)

    def __bool__(self) -> bool:
        return self.ok


class TermrelayError(Exception):
    """Base class for termrelay errors"""


class ProcessUnavailableError(TermrelayError):
    """The interactive program could not be spawned or is no longer running"""

    kind = ErrorKind.PROCESS_UNAVAILABLE
