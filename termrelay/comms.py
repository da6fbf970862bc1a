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

"""Presentation sinks and the Slack front end that feeds direct messages into relay sessions."""

import threading
import time
import traceback
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Optional, TYPE_CHECKING

from slack_sdk import WebClient as SlackClient
from slack_sdk.errors import SlackApiError
from slack_sdk.socket_mode import SocketModeClient
from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse

from .errors import ErrorKind, OpResult
from .logs import log_message

if TYPE_CHECKING:
    from .manager import SessionManager

WORKING_TEXT = "Working…"


class PresentationSink(ABC):
    """Where a session's output goes: one live message edited in place, plus durable messages"""

    @abstractmethod
    def edit(self, content: str) -> OpResult:
        """Replace the live streaming message with content"""

    @abstractmethod
    def send(self, content: str) -> OpResult:
        """Post content as a new, permanent message"""


def prep_for_slack(s: str) -> str:
    """Escape the characters Slack treats as markup in message text"""
    return s.replace('&', '&amp;').replace('<', '&lt;').replace('>', '&gt;')


@dataclass
class RateLimit:
    """Shared rate-limit window for every sink using one Slack client"""
    until: float = 0.0
    lock: threading.Lock = field(default_factory=threading.Lock)

    def active(self) -> bool:
        with self.lock:
            return time.time() < self.until

    def hit(self, retry_after: float) -> None:
        with self.lock:
            self.until = max(self.until, time.time() + retry_after)


class SlackMessageSink(PresentationSink):
    """Streams into one Slack message (chat.update) and posts finals to its channel (chat.postMessage)"""

    def __init__(self, client: SlackClient, channel: str, ts: str, thread_ts: Optional[str] = None,
                 rate_limit: Optional[RateLimit] = None):
        self.client = client
        self.channel = channel
        self.ts = ts
        self.thread_ts = thread_ts
        self.rate_limit = rate_limit or RateLimit()

    def edit(self, content: str) -> OpResult:
        return self._call("chat_update", channel=self.channel, ts=self.ts, text=prep_for_slack(content))

    def send(self, content: str) -> OpResult:
        return self._call("chat_postMessage", channel=self.channel, text=prep_for_slack(content),
                          thread_ts=self.thread_ts)

    def _call(self, method: str, **kwargs) -> OpResult:
        if self.rate_limit.active():
            log_message("WARNING", f"Slack is rate limited until {time.ctime(self.rate_limit.until)}, skipping {method}")
            return OpResult.failure(ErrorKind.SINK_DELIVERY, "ratelimited")
        try:
            result = getattr(self.client, method)(**kwargs)
        except SlackApiError as e:
            error_code = e.response.get('error', '') if e.response is not None else ''
            if error_code == 'ratelimited':
                retry_after = float(e.response.headers.get('Retry-After', 60)) if e.response.headers else 60.0
                self.rate_limit.hit(retry_after)
                log_message("ERROR", f"Slack rate limited! Pausing delivery for {retry_after:.0f} seconds")
            elif error_code == 'not_in_channel':
                log_message("ERROR", f"Bot is not in channel {self.channel}. Invite the bot to the channel first")
            elif error_code == 'channel_not_found':
                log_message("ERROR", f"Channel {self.channel} not found")
            else:
                log_message("WARNING", f"Slack {method} failed: {error_code or e}")
            return OpResult.failure(ErrorKind.SINK_DELIVERY, error_code or str(e))
        except Exception as e:
            log_message("ERROR", f"Unexpected error in Slack {method}: {type(e).__name__}: {e}")
            log_message("DEBUG", f"Traceback: {traceback.format_exc()}")
            return OpResult.failure(ErrorKind.SINK_DELIVERY, str(e))

        if not result.get("ok", False):
            return OpResult.failure(ErrorKind.SINK_DELIVERY, str(result.get("error", "not ok")))
        log_message("DEBUG", f"Slack {method} ok for {self.channel}")
        return OpResult.success(str(result.get("ts", "")))


class SlackRelay:
    """Slack front end: every direct message becomes a turn in that conversation's session.

    Command routing is left to the host application; messages starting with '/' are ignored.
    """

    def __init__(self, manager: 'SessionManager', bot_token: str, app_token: Optional[str] = None,
                 client: Optional[SlackClient] = None, socket_client: Optional[SocketModeClient] = None,
                 max_workers: int = 4):
        if not bot_token and client is None:
            raise ValueError("Slack bot token not configured")
        self.manager = manager
        self.client = client or SlackClient(token=bot_token)
        self.socket_client = socket_client
        if self.socket_client is None and app_token:
            self.socket_client = SocketModeClient(app_token=app_token, web_client=self.client)
        self.rate_limit = RateLimit()
        self.connected_event = threading.Event()
        self.active = False
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='termrelay-slack')

    def start(self) -> None:
        """Connect Socket Mode and start handling direct messages"""
        if self.socket_client is None:
            raise ValueError("Slack app token not configured; Socket Mode is required to receive messages")
        self.active = True
        self.socket_client.socket_mode_request_listeners.append(self._process_slack_event)
        try:
            self.socket_client.connect()
        except Exception as e:
            log_message("ERROR", f"Slack Socket Mode error: {e}")
            self.connected_event.set()  # Also set on error to unblock waiters
            raise
        self.connected_event.set()
        log_message("INFO", "Slack Socket Mode connected")

    def wait_for_connection(self, timeout: float = 5.0) -> bool:
        return self.connected_event.wait(timeout)

    def stop(self) -> None:
        self.active = False
        if self.socket_client is not None:
            try:
                self.socket_client.close()
                log_message("INFO", "Slack Socket Mode disconnected")
            except Exception as e:
                log_message("WARNING", f"Error closing Slack Socket Mode: {e}")
        self._executor.shutdown(wait=False)
        self.manager.stop_all()

    def _process_slack_event(self, client: SocketModeClient, req: SocketModeRequest) -> None:
        """Acknowledge the envelope and hand direct messages to a worker thread"""
        if req.type != "events_api":
            return
        client.send_socket_mode_response(SocketModeResponse(envelope_id=req.envelope_id))

        event = req.payload.get("event", {})
        if event.get("type") != "message":
            return
        # Ignore bot messages (including our own) and edits/joins to prevent loops
        if event.get("bot_id") or event.get("subtype"):
            return
        if event.get("channel_type") != "im":
            log_message("DEBUG", f"Ignoring message outside a DM in {event.get('channel')}")
            return

        text = (event.get("text") or "").strip()
        if not text or text.startswith('/'):
            return
        self._executor.submit(self.handle_message, event.get("channel", ""), text)

    def handle_message(self, channel: str, text: str) -> bool:
        """Relay one user message: post a placeholder, stream into it, then type the text"""
        if not self.active:
            return False
        try:
            session = self.manager.get_or_start(channel)
            reply = self.client.chat_postMessage(channel=channel, text=WORKING_TEXT)
            sink = SlackMessageSink(self.client, channel, reply["ts"], rate_limit=self.rate_limit)
            session.attach_streaming(sink)
            result = session.send(text)
            if not result.ok:
                sink.edit(f"Could not reach the program: {result.detail}")
                return False
            log_message("DEBUG", f"Relayed Slack message in {channel}: {text[:50]}...")
            return True
        except Exception as e:
            log_message("ERROR", f"Failed to relay Slack message in {channel}: {type(e).__name__}: {e}")
            log_message("DEBUG", f"Traceback: {traceback.format_exc()}")
            return False
