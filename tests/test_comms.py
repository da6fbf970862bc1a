#!/usr/bin/env python3
"""
Tests for the Slack sink and relay. slack_sdk clients are replaced with mocks.
"""

from unittest.mock import MagicMock

import pytest
from slack_sdk.errors import SlackApiError

from termrelay.comms import SlackMessageSink, SlackRelay, WORKING_TEXT, prep_for_slack
from termrelay.errors import ErrorKind, OpResult


class FakeSlackResponse(dict):
    """Enough of SlackResponse for error handling: dict access plus headers"""

    def __init__(self, data, headers=None):
        super().__init__(data)
        self.headers = headers or {}


def slack_error(code, headers=None):
    return SlackApiError(f"The request failed: {code}", FakeSlackResponse({"ok": False, "error": code}, headers))


@pytest.fixture
def client():
    client = MagicMock()
    client.chat_update.return_value = {"ok": True, "ts": "100.1"}
    client.chat_postMessage.return_value = {"ok": True, "ts": "200.2"}
    return client


class TestSlackMessageSink:

    def test_edit_updates_message(self, client):
        sink = SlackMessageSink(client, "D1", "100.1")
        result = sink.edit("a < b & c")
        assert result.ok
        client.chat_update.assert_called_once_with(channel="D1", ts="100.1", text="a &lt; b &amp; c")

    def test_send_posts_new_message(self, client):
        sink = SlackMessageSink(client, "D1", "100.1", thread_ts="99.9")
        result = sink.send("final")
        assert result.ok
        assert result.detail == "200.2"
        client.chat_postMessage.assert_called_once_with(channel="D1", text="final", thread_ts="99.9")

    @pytest.mark.parametrize("code", ["not_in_channel", "channel_not_found", "msg_too_long"])
    def test_api_errors_become_delivery_failures(self, client, code):
        client.chat_update.side_effect = slack_error(code)
        result = SlackMessageSink(client, "D1", "100.1").edit("x")
        assert not result.ok
        assert result.kind == ErrorKind.SINK_DELIVERY
        assert result.detail == code

    def test_rate_limit_pauses_delivery(self, client):
        client.chat_update.side_effect = slack_error("ratelimited", {"Retry-After": "30"})
        sink = SlackMessageSink(client, "D1", "100.1")
        assert sink.edit("x").detail == "ratelimited"
        assert sink.rate_limit.active()

        assert not sink.send("y").ok
        assert client.chat_postMessage.call_count == 0

    def test_unexpected_exception_is_contained(self, client):
        client.chat_postMessage.side_effect = ConnectionError("reset by peer")
        result = SlackMessageSink(client, "D1", "100.1").send("x")
        assert result.kind == ErrorKind.SINK_DELIVERY

    def test_not_ok_response(self, client):
        client.chat_update.return_value = {"ok": False, "error": "cant_update_message"}
        assert SlackMessageSink(client, "D1", "100.1").edit("x").detail == "cant_update_message"

    def test_prep_for_slack(self):
        assert prep_for_slack("<@U1> & co") == "&lt;@U1&gt; &amp; co"


class TestSlackRelay:

    @pytest.fixture
    def relay(self, client):
        manager = MagicMock()
        relay = SlackRelay(manager, "xoxb-test", client=client, socket_client=MagicMock())
        relay._executor.shutdown(wait=False)
        relay._executor = MagicMock()
        return relay

    def make_request(self, **event):
        event.setdefault("type", "message")
        event.setdefault("channel_type", "im")
        event.setdefault("channel", "D1")
        return MagicMock(type="events_api", envelope_id="env-1", payload={"event": event})

    def test_requires_a_token(self):
        with pytest.raises(ValueError):
            SlackRelay(MagicMock(), "")

    def test_start_requires_socket_mode(self, client):
        relay = SlackRelay(MagicMock(), "xoxb-test", client=client)
        with pytest.raises(ValueError):
            relay.start()

    def test_start_connects(self, relay):
        relay.socket_client.socket_mode_request_listeners = []
        relay.start()
        relay.socket_client.connect.assert_called_once()
        assert relay.wait_for_connection(0.1)
        assert relay.socket_client.socket_mode_request_listeners == [relay._process_slack_event]

    def test_direct_message_is_dispatched(self, relay):
        socket = MagicMock()
        relay._process_slack_event(socket, self.make_request(text="  fix the tests  "))
        socket.send_socket_mode_response.assert_called_once()
        relay._executor.submit.assert_called_once_with(relay.handle_message, "D1", "fix the tests")

    @pytest.mark.parametrize("event", [
        {"text": "hi", "bot_id": "B1"},
        {"text": "hi", "subtype": "message_changed"},
        {"text": "hi", "channel_type": "channel"},
        {"text": "/model fast"},
        {"text": "   "},
    ])
    def test_ignored_messages(self, relay, event):
        relay._process_slack_event(MagicMock(), self.make_request(**event))
        relay._executor.submit.assert_not_called()

    def test_non_event_requests_are_ignored(self, relay):
        socket = MagicMock()
        relay._process_slack_event(socket, MagicMock(type="slash_commands"))
        socket.send_socket_mode_response.assert_not_called()

    def test_handle_message_streams_into_placeholder(self, relay, client):
        session = MagicMock()
        session.send.return_value = OpResult.success()
        relay.manager.get_or_start.return_value = session
        relay.active = True

        assert relay.handle_message("D1", "hello") is True

        client.chat_postMessage.assert_called_once_with(channel="D1", text=WORKING_TEXT)
        sink = session.attach_streaming.call_args[0][0]
        assert isinstance(sink, SlackMessageSink)
        assert (sink.channel, sink.ts) == ("D1", "200.2")
        assert sink.rate_limit is relay.rate_limit
        session.send.assert_called_once_with("hello")

    def test_handle_message_reports_start_failure(self, relay, client):
        relay.manager.get_or_start.side_effect = RuntimeError("no binary")
        relay.active = True
        assert relay.handle_message("D1", "hello") is False
        client.chat_postMessage.assert_not_called()

    def test_handle_message_when_stopped(self, relay):
        assert relay.handle_message("D1", "hello") is False
        relay.manager.get_or_start.assert_not_called()

    def test_stop_closes_and_stops_sessions(self, relay):
        executor = relay._executor
        relay.stop()
        relay.socket_client.close.assert_called_once()
        executor.shutdown.assert_called_once_with(wait=False)
        relay.manager.stop_all.assert_called_once()
