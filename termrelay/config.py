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

"""
config.py - Centralized configuration management for termrelay
SessionConfig is the per-conversation document the store persists;
RelayConfig holds the process-wide tuning read from the environment.
"""

import os
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Dict, Any

from dotenv import load_dotenv

from .filters import DEFAULT_CHUNK_LIMIT
from .finalizer import IDLE_FINALIZE_SECONDS, MAX_FINAL_CHUNKS
from .window import STREAM_MAX_LIFETIME, TICK_INTERVAL, TRANSCRIPT_MAX_CHARS

# Load .env first (takes precedence), then .termrelay.env (won't override existing vars)
load_dotenv()
load_dotenv('.termrelay.env')

DEFAULT_BINARY = "auggie"
DEFAULT_IDLE_TIMEOUT_SECS = 45 * 60
DEFAULT_COLS = 120
DEFAULT_ROWS = 30


@dataclass
class SessionConfig:
    """Per-conversation settings for the interactive program"""
    root_path: Optional[str] = None
    model: Optional[str] = None
    rules: Optional[str] = None
    binary: Optional[str] = None
    enhancer_default: bool = True
    ephemeral_default: bool = True
    idle_timeout_secs: Optional[int] = DEFAULT_IDLE_TIMEOUT_SECS
    cols: Optional[int] = DEFAULT_COLS
    rows: Optional[int] = DEFAULT_ROWS

    @classmethod
    def from_dict(cls, data: Dict[str, Any], defaults: Optional['SessionConfig'] = None) -> 'SessionConfig':
        """Build a config from a persisted document laid over defaults; unknown keys are ignored"""
        base = defaults.to_dict() if defaults else {}
        known = {f.name for f in fields(cls)}
        base.update({k: v for k, v in data.items() if k in known})
        return cls(**base)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def copy(self, **changes) -> 'SessionConfig':
        return replace(self, **changes)

    @property
    def size(self) -> Dict[str, int]:
        return {'cols': self.cols or DEFAULT_COLS, 'rows': self.rows or DEFAULT_ROWS}

    def build_args(self) -> list:
        """Command-line flags for the interactive program"""
        args = []
        if self.root_path:
            args.extend(['--workspace-root', self.root_path])
        if self.rules:
            args.extend(['--rules', self.rules])
        if self.model:
            args.extend(['--model', self.model])
        return args


@dataclass
class RelayConfig:
    """Process-wide configuration for the relay"""

    # Core settings
    data_dir: str = "data"
    log_file: Optional[str] = None
    verbosity: int = 0
    binary: Optional[str] = None

    # Slack settings
    slack_bot_token: Optional[str] = None
    slack_app_token: Optional[str] = None

    # Pipeline tuning
    tick_interval: float = TICK_INTERVAL
    idle_finalize_seconds: float = IDLE_FINALIZE_SECONDS
    transcript_max_chars: int = TRANSCRIPT_MAX_CHARS
    chunk_limit: int = DEFAULT_CHUNK_LIMIT
    max_final_chunks: int = MAX_FINAL_CHUNKS
    stream_max_lifetime: float = STREAM_MAX_LIFETIME
    stop_grace_seconds: float = 0.75
    submit_delay_seconds: float = 0.6

    # Defaults applied to sessions without a persisted document
    session_defaults: SessionConfig = field(default_factory=SessionConfig)

    @classmethod
    def from_env(cls) -> 'RelayConfig':
        """Create configuration from environment variables"""
        config = cls()

        config.data_dir = os.environ.get('TERMRELAY_DATA_DIR', 'data')
        config.log_file = os.environ.get('TERMRELAY_LOG_FILE')
        config.verbosity = int(os.environ.get('TERMRELAY_VERBOSITY', '0'))
        config.binary = os.environ.get('TERMRELAY_BIN') or os.environ.get('AUGGIE_BIN')

        config.slack_bot_token = os.environ.get('SLACK_BOT_TOKEN')
        config.slack_app_token = os.environ.get('SLACK_APP_TOKEN')

        config.tick_interval = float(os.environ.get('TERMRELAY_TICK_INTERVAL', str(TICK_INTERVAL)))
        config.idle_finalize_seconds = float(os.environ.get('TERMRELAY_IDLE_FINALIZE', str(IDLE_FINALIZE_SECONDS)))
        config.transcript_max_chars = int(os.environ.get('TERMRELAY_TRANSCRIPT_MAX', str(TRANSCRIPT_MAX_CHARS)))
        config.chunk_limit = int(os.environ.get('TERMRELAY_CHUNK_LIMIT', str(DEFAULT_CHUNK_LIMIT)))
        config.max_final_chunks = int(os.environ.get('TERMRELAY_MAX_FINAL_CHUNKS', str(MAX_FINAL_CHUNKS)))
        config.stream_max_lifetime = float(os.environ.get('TERMRELAY_STREAM_LIFETIME', str(STREAM_MAX_LIFETIME)))
        config.stop_grace_seconds = float(os.environ.get('TERMRELAY_STOP_GRACE', '0.75'))
        config.submit_delay_seconds = float(os.environ.get('TERMRELAY_SUBMIT_DELAY', '0.6'))

        idle_timeout = os.environ.get('TERMRELAY_IDLE_TIMEOUT')
        if idle_timeout:
            config.session_defaults = config.session_defaults.copy(idle_timeout_secs=int(idle_timeout))
        enhancer = os.environ.get('TERMRELAY_ENHANCER_DEFAULT')
        if enhancer:
            config.session_defaults = config.session_defaults.copy(enhancer_default=enhancer.lower() == 'true')

        return config

    def merge_with_args(self, args: Any) -> None:
        """Merge command-line arguments with configuration"""
        if getattr(args, 'log_file', None):
            self.log_file = args.log_file

        if getattr(args, 'verbose', None):
            self.verbosity = args.verbose

        if getattr(args, 'data_dir', None):
            self.data_dir = args.data_dir

        if getattr(args, 'binary', None):
            self.binary = args.binary

        if getattr(args, 'tick_interval', None):
            self.tick_interval = args.tick_interval

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary with tokens redacted"""
        data = {k: v for k, v in self.__dict__.items() if not k.startswith('_')}
        data['session_defaults'] = self.session_defaults.to_dict()
        for key in ('slack_bot_token', 'slack_app_token'):
            if data.get(key):
                data[key] = '***'
        return data


# Global configuration instance
_config: Optional[RelayConfig] = None


def get_config() -> RelayConfig:
    """Get the global configuration instance"""
    global _config
    if _config is None:
        _config = RelayConfig.from_env()
    return _config


def reload_config() -> RelayConfig:
    """Reload configuration from environment"""
    global _config
    _config = RelayConfig.from_env()
    return _config


def set_config(config: RelayConfig) -> None:
    """Set the global configuration instance"""
    global _config
    _config = config
