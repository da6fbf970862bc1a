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

"""Registry of live relay sessions, one per conversation, with idle shutdown."""

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from .config import RelayConfig
from .errors import ProcessUnavailableError
from .logs import log_message
from .pty_process import PtyProcess
from .session import RelaySession
from .storage import ConfigStore


class SessionManager:
    """Creates, looks up and stops sessions keyed by conversation identifier.

    At most one live session exists per identifier. A session whose program exits
    on its own is dropped from the registry so the next message starts a fresh one.
    """

    def __init__(self, store: Optional[ConfigStore] = None, relay_config: Optional[RelayConfig] = None,
                 process_factory: Callable[..., Any] = PtyProcess,
                 session_factory: Callable[..., RelaySession] = RelaySession):
        self.relay_config = relay_config or RelayConfig()
        self.store = store or ConfigStore(self.relay_config.data_dir)
        self.defaults = self.relay_config.session_defaults
        self._process_factory = process_factory
        self._session_factory = session_factory
        self._sessions: Dict[str, RelaySession] = {}
        self._idle_timers: Dict[str, threading.Timer] = {}
        self._lock = threading.RLock()

    def get_or_start(self, session_id: str) -> RelaySession:
        """The live session for session_id, creating and starting it if needed"""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is not None:
                if not session.is_running():
                    session.start()
                return session

            config = self.store.load(session_id, self.defaults)
            session = self._session_factory(
                session_id,
                config,
                store=self.store,
                relay_config=self.relay_config,
                process_factory=self._process_factory,
            )
            session.on_unexpected_exit(self._on_session_exit)
            self._sessions[session_id] = session
            self._arm_idle_timer(session_id, config.idle_timeout_secs)
            try:
                session.start()
            except ProcessUnavailableError:
                self._sessions.pop(session_id, None)
                self._cancel_idle_timer(session_id)
                raise
            log_message("INFO", f"Started session {session_id}")
            return session

    def start(self, session_id: str) -> RelaySession:
        return self.get_or_start(session_id)

    def peek(self, session_id: str) -> Optional[RelaySession]:
        """The live session if there is one; never starts anything"""
        with self._lock:
            return self._sessions.get(session_id)

    def sessions(self) -> List[str]:
        with self._lock:
            return list(self._sessions)

    def stop(self, session_id: str) -> bool:
        """Stop and forget a session; False when none was live"""
        with self._lock:
            session = self._sessions.pop(session_id, None)
            self._cancel_idle_timer(session_id)
        if session is None:
            return False
        session.cancel_streaming()
        session.stop()
        log_message("INFO", f"Stopped session {session_id}")
        return True

    def stop_all(self) -> None:
        for session_id in self.sessions():
            try:
                self.stop(session_id)
            except Exception as e:
                log_message("ERROR", f"Failed to stop session {session_id}: {type(e).__name__}: {e}")

    def info(self, session_id: str) -> Dict[str, Any]:
        """Live info when running, otherwise the persisted configuration"""
        session = self.peek(session_id)
        if session is not None:
            return session.info()
        config = self.store.load(session_id, self.defaults)
        return {
            'pid': None,
            'state': 'absent',
            'rootPath': config.root_path,
            'model': config.model,
            'rules': config.rules,
            'enhancerDefault': config.enhancer_default,
            'idleTimeoutSecs': config.idle_timeout_secs,
            'size': config.size,
            'lastActivity': None,
        }

    def persist(self, session_id: str) -> None:
        session = self.peek(session_id)
        if session is not None:
            session.persist()

    # Environment overrides

    def set_env(self, session_id: str, key: str, value: str, secret: bool = False) -> bool:
        """Store an override; a live session is restarted so the program sees it"""
        stored_secret = self.store.set_env(session_id, key, value, secret=secret)
        self._restart_if_live(session_id)
        return stored_secret

    def unset_env(self, session_id: str, key: str) -> None:
        self.store.unset_env(session_id, key)
        self._restart_if_live(session_id)

    def list_env(self, session_id: str) -> List[Tuple[str, str]]:
        return self.store.list_env(session_id)

    def _restart_if_live(self, session_id: str) -> None:
        session = self.peek(session_id)
        if session is not None:
            session.restart()

    # Idle shutdown

    def _arm_idle_timer(self, session_id: str, seconds: Optional[int]) -> None:
        if not seconds or seconds <= 0:
            return
        timer = threading.Timer(seconds, self._idle_expired, args=(session_id,))
        timer.daemon = True
        timer.name = f"termrelay-idle-{session_id}"
        self._idle_timers[session_id] = timer
        timer.start()

    def _cancel_idle_timer(self, session_id: str) -> None:
        timer = self._idle_timers.pop(session_id, None)
        if timer is not None:
            timer.cancel()

    def _idle_expired(self, session_id: str) -> None:
        log_message("INFO", f"Session {session_id} reached its idle timeout")
        self.stop(session_id)

    def _on_session_exit(self, session: RelaySession, code: Optional[int]) -> None:
        with self._lock:
            if self._sessions.get(session.session_id) is not session:
                return
            del self._sessions[session.session_id]
            self._cancel_idle_timer(session.session_id)
        log_message("WARNING", f"Session {session.session_id} dropped after its program exited ({code})")
