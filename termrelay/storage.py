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

"""Per-session persistence - config documents, plain environment overrides and the secret store.

Layout under the data directory:

    sessions/<id>.json         SessionConfig document
    sessions/<id>.env.json     plain environment overrides
    secrets/<id>.env           secret overrides (dotenv format, mode 0600)
"""

import json
import os
import re
import threading
from pathlib import Path
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from dotenv import dotenv_values, set_key, unset_key

from .config import SessionConfig
from .logs import log_message

# Built-in environment for every spawned program, below any per-session override
BUILTIN_ENV = {
    'AUGMENT_DISABLE_AUTO_UPDATE': '1',
    'TERM': 'xterm-color',
}

SENSITIVE_KEY_PATTERN = re.compile(r'TOKEN|SECRET|KEY|PASSWORD', re.IGNORECASE)
SAFE_ID_PATTERN = re.compile(r'[^A-Za-z0-9_.-]')


def is_sensitive(key: str) -> bool:
    """Keys that look like credentials always go to the secret store"""
    return bool(SENSITIVE_KEY_PATTERN.search(key))


def redact(value: str) -> str:
    if len(value) <= 6:
        return '*' * len(value)
    return f"{value[:2]}***{value[-2:]}"


class ConfigStore:
    """File-backed store for session configuration and environment overrides"""

    def __init__(self, data_dir: str = "data"):
        self.data_dir = Path(data_dir)
        self.sessions_dir = self.data_dir / "sessions"
        self.secrets_dir = self.data_dir / "secrets"
        self._lock = threading.RLock()

    def ensure_store(self) -> None:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)
        self.secrets_dir.mkdir(parents=True, exist_ok=True)
        try:
            os.chmod(self.secrets_dir, 0o700)
        except OSError as e:
            log_message("WARNING", f"Could not restrict permissions on {self.secrets_dir}: {e}")

    def _safe_id(self, session_id: str) -> str:
        return SAFE_ID_PATTERN.sub('_', session_id)

    def config_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{self._safe_id(session_id)}.json"

    def plain_env_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{self._safe_id(session_id)}.env.json"

    def secret_env_path(self, session_id: str) -> Path:
        return self.secrets_dir / f"{self._safe_id(session_id)}.env"

    # Session configuration

    def load(self, session_id: str, defaults: SessionConfig) -> SessionConfig:
        """Persisted configuration merged over defaults"""
        path = self.config_path(session_id)
        with self._lock:
            if not path.exists():
                return defaults.copy()
            try:
                data = json.loads(path.read_text(encoding='utf-8'))
            except (OSError, json.JSONDecodeError) as e:
                log_message("WARNING", f"Ignoring unreadable session config {path}: {e}")
                return defaults.copy()
        if not isinstance(data, dict):
            log_message("WARNING", f"Ignoring session config {path}: not a JSON object")
            return defaults.copy()
        return SessionConfig.from_dict(data, defaults)

    def persist(self, session_id: str, config: SessionConfig) -> None:
        self.ensure_store()
        path = self.config_path(session_id)
        with self._lock:
            path.write_text(json.dumps(config.to_dict(), indent=2), encoding='utf-8')
        log_message("DEBUG", f"Persisted session config for {session_id}")

    def list_sessions(self) -> List[str]:
        """Identifiers of every session with a persisted config"""
        if not self.sessions_dir.exists():
            return []
        return sorted(p.name[:-len('.json')] for p in self.sessions_dir.glob('*.json')
                      if not p.name.endswith('.env.json'))

    # Environment overrides

    def read_plain_env(self, session_id: str) -> Dict[str, str]:
        path = self.plain_env_path(session_id)
        with self._lock:
            if not path.exists():
                return {}
            try:
                data = json.loads(path.read_text(encoding='utf-8'))
            except (OSError, json.JSONDecodeError) as e:
                log_message("WARNING", f"Ignoring unreadable env overrides {path}: {e}")
                return {}
        return {str(k): str(v) for k, v in data.items()} if isinstance(data, dict) else {}

    def _write_plain_env(self, session_id: str, env: Dict[str, str]) -> None:
        self.ensure_store()
        with self._lock:
            self.plain_env_path(session_id).write_text(json.dumps(env, indent=2), encoding='utf-8')

    def read_secret_env(self, session_id: str) -> Dict[str, str]:
        path = self.secret_env_path(session_id)
        with self._lock:
            if not path.exists():
                return {}
            values = dotenv_values(path)
        return {k: v for k, v in values.items() if v is not None}

    def set_env(self, session_id: str, key: str, value: str, secret: bool = False) -> bool:
        """Store an override; returns True when it went to the secret store"""
        with self._lock:
            plain = self.read_plain_env(session_id)
            if secret or is_sensitive(key):
                self.ensure_store()
                path = self.secret_env_path(session_id)
                path.touch(mode=0o600, exist_ok=True)
                set_key(str(path), key, value, quote_mode='always')
                plain.pop(key, None)
                self._write_plain_env(session_id, plain)
                log_message("INFO", f"Stored secret {key} for {session_id}")
                return True
            plain[key] = value
            self._write_plain_env(session_id, plain)
            log_message("INFO", f"Stored env override {key} for {session_id}")
            return False

    def unset_env(self, session_id: str, key: str) -> None:
        with self._lock:
            path = self.secret_env_path(session_id)
            if path.exists() and key in self.read_secret_env(session_id):
                unset_key(str(path), key)
            plain = self.read_plain_env(session_id)
            if key in plain:
                del plain[key]
                self._write_plain_env(session_id, plain)
        log_message("INFO", f"Unset env override {key} for {session_id}")

    def list_env(self, session_id: str) -> List[Tuple[str, str]]:
        """Every override as (key, redacted value), plain first then secrets"""
        plain = self.read_plain_env(session_id)
        secrets = self.read_secret_env(session_id)
        listed = [(k, redact(v)) for k, v in plain.items()]
        listed.extend((k, redact(v)) for k, v in secrets.items())
        return listed

    def build_environment(self, session_id: str, base: Optional[Mapping[str, str]] = None) -> Mapping[str, str]:
        """Environment for the spawned program, merged in order and returned read-only.

        ambient process environment < built-in defaults < plain overrides < secret overrides
        """
        env: Dict[str, str] = dict(os.environ if base is None else base)
        env.update(BUILTIN_ENV)
        env.update(self.read_plain_env(session_id))
        env.update(self.read_secret_env(session_id))
        return MappingProxyType(env)
