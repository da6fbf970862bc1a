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

"""termrelay - Runs an interactive terminal program per conversation and relays its cleaned screen into chat."""

from .__version__ import __version__, __author__, __license__

# Errors
from .errors import ErrorKind, OpResult, ProcessUnavailableError, TermrelayError

# Pipeline
from .filters import filter_frame, explain_frame, skip_reason, split_to_chunks, strip_ansi
from .ingest import OutputIngestor
from .window import RollingTranscript, StreamTicker
from .finalizer import IdleFinalizer, chunk_final_answer

# Sessions
from .config import RelayConfig, SessionConfig, get_config
from .storage import ConfigStore
from .session import RelaySession, SessionState
from .manager import SessionManager

__all__ = [
    '__version__',
    '__author__',
    '__license__',
    'ErrorKind',
    'OpResult',
    'ProcessUnavailableError',
    'TermrelayError',
    'filter_frame',
    'explain_frame',
    'skip_reason',
    'split_to_chunks',
    'strip_ansi',
    'OutputIngestor',
    'RollingTranscript',
    'StreamTicker',
    'IdleFinalizer',
    'chunk_final_answer',
    'RelayConfig',
    'SessionConfig',
    'get_config',
    'ConfigStore',
    'RelaySession',
    'SessionState',
    'SessionManager',
]
