"""
Unit tests for the Session loop and its state machine.

The channel is an AsyncMock, so every read, decode and write failure can be
driven directly.
"""

import asyncio
import json
import uuid

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK
from websockets.frames import Close

from relay.errors import DecodeError, FrameReadError, FrameWriteError, InvalidTransition
from relay.session import Session
from relay.session_states import SessionState


def frame(content, timestamp=1000, kind="client_msg"):
    return json.dumps({"string": kind, "content": content, "timestamp": timestamp})


def clean_close():
    return ConnectionClosedOK(Close(1000, ""), Close(1000, ""), True)


def abrupt_close():
    return ConnectionClosedError(None, None)


def sent_payloads(mock_ws):
    return [json.loads(call.args[0]) for call in mock_ws.send.await_args_list]


class TestSessionStates:

    def test_allowed_transitions(self):
        assert SessionState.AWAITING_FRAME.can_transition_to(SessionState.DECODING)
        assert SessionState.DECODING.can_transition_to(SessionState.RESPONDING)
        assert SessionState.RESPONDING.can_transition_to(SessionState.AWAITING_FRAME)
        for state in (SessionState.AWAITING_FRAME, SessionState.DECODING, SessionState.RESPONDING):
            assert state.can_transition_to(SessionState.TERMINATED)

    def test_disallowed_transitions(self):
        assert not SessionState.AWAITING_FRAME.can_transition_to(SessionState.RESPONDING)
        assert not SessionState.DECODING.can_transition_to(SessionState.AWAITING_FRAME)
        assert not SessionState.RESPONDING.can_transition_to(SessionState.DECODING)

    def test_terminated_is_final(self):
        assert SessionState.TERMINATED.is_terminal
        for state in SessionState:
            assert not SessionState.TERMINATED.can_transition_to(state)

    def test_states_read_as_their_values(self):
        assert str(SessionState.DECODING) == "decoding"
        assert f"{SessionState.TERMINATED}" == "terminated"


class TestSessionLoop:

    @pytest.mark.asyncio
    async def test_responds_to_each_message_in_order(self, mock_websocket_connection, relay_config):
        mock_websocket_connection.recv.side_effect = [
            frame("hello", 1000),
            frame("", 0),
            clean_close(),
        ]
        session = Session(mock_websocket_connection, relay_config)

        await session.run()

        assert sent_payloads(mock_websocket_connection) == [
            {"string": "server_response",
             "content": "You said: hello. Thanks for the message! - server.",
             "timestamp": 1000},
            {"string": "server_response",
             "content": "You said: . Thanks for the message! - server.",
             "timestamp": 0},
        ]
        assert session.messages_handled == 2
        assert session.state is SessionState.TERMINATED

    @pytest.mark.asyncio
    async def test_clean_peer_close(self, mock_websocket_connection, relay_config):
        mock_websocket_connection.recv.side_effect = [clean_close()]
        session = Session(mock_websocket_connection, relay_config)

        await session.run()

        assert isinstance(session.error, FrameReadError)
        assert session.error.clean
        assert session.failed_in is SessionState.AWAITING_FRAME
        mock_websocket_connection.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_abrupt_disconnect(self, mock_websocket_connection, relay_config):
        mock_websocket_connection.recv.side_effect = [frame("hi"), abrupt_close()]
        session = Session(mock_websocket_connection, relay_config)

        await session.run()

        assert isinstance(session.error, FrameReadError)
        assert not session.error.clean
        assert session.messages_handled == 1
        assert session.state is SessionState.TERMINATED
        mock_websocket_connection.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_transport_error_on_read(self, mock_websocket_connection, relay_config):
        mock_websocket_connection.recv.side_effect = [ConnectionResetError("reset by peer")]
        session = Session(mock_websocket_connection, relay_config)

        await session.run()

        assert isinstance(session.error, FrameReadError)
        assert isinstance(session.error.cause, ConnectionResetError)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_frame", [
        "not json",
        b"\x00\x01\x02",
        '{"string":"client_msg","content":"hello"}',
        '{"string":"client_msg","content":5,"timestamp":1}',
        '{"string":"client_msg","content":"big","timestamp":' + "1" * 5000 + '}',
    ])
    async def test_decode_failure_sends_nothing(self, mock_websocket_connection, relay_config, bad_frame):
        mock_websocket_connection.recv.side_effect = [bad_frame, frame("never read")]
        session = Session(mock_websocket_connection, relay_config)

        await session.run()

        assert isinstance(session.error, DecodeError)
        assert session.failed_in is SessionState.DECODING
        assert session.state is SessionState.TERMINATED
        mock_websocket_connection.send.assert_not_awaited()
        mock_websocket_connection.close.assert_awaited_once()
        assert mock_websocket_connection.recv.await_count == 1

    @pytest.mark.asyncio
    async def test_decode_failure_after_valid_messages(self, mock_websocket_connection, relay_config):
        mock_websocket_connection.recv.side_effect = [frame("one"), frame("two"), "garbage"]
        session = Session(mock_websocket_connection, relay_config)

        await session.run()

        assert session.messages_handled == 2
        assert mock_websocket_connection.send.await_count == 2
        assert isinstance(session.error, DecodeError)

    @pytest.mark.asyncio
    async def test_write_failure(self, mock_websocket_connection, relay_config):
        mock_websocket_connection.recv.side_effect = [frame("hello"), frame("never read")]
        mock_websocket_connection.send.side_effect = abrupt_close()
        session = Session(mock_websocket_connection, relay_config)

        await session.run()

        assert isinstance(session.error, FrameWriteError)
        assert session.failed_in is SessionState.RESPONDING
        assert session.messages_handled == 0
        assert mock_websocket_connection.recv.await_count == 1
        mock_websocket_connection.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_idle_timeout(self, mock_websocket_connection, relay_config):
        async def never_arrives():
            await asyncio.sleep(10)

        mock_websocket_connection.recv.side_effect = never_arrives
        session = Session(mock_websocket_connection, relay_config.replace(idle_timeout=0.05))

        await asyncio.wait_for(session.run(), timeout=2)

        assert isinstance(session.error, FrameReadError)
        assert "no frame received" in str(session.error)
        assert not session.error.clean

    @pytest.mark.asyncio
    async def test_unexpected_error_does_not_propagate(self, mock_websocket_connection, relay_config, caplog):
        mock_websocket_connection.recv.side_effect = [RuntimeError("boom")]
        session = Session(mock_websocket_connection, relay_config)

        with caplog.at_level("ERROR", logger="relay.session"):
            await session.run()

        assert session.state is SessionState.TERMINATED
        assert session.error is None
        assert "Unexpected error in session" in caplog.text
        mock_websocket_connection.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failures_are_logged(self, mock_websocket_connection, relay_config, caplog):
        mock_websocket_connection.recv.side_effect = ["{broken"]
        session = Session(mock_websocket_connection, relay_config)

        with caplog.at_level("WARNING", logger="relay.session"):
            await session.run()

        assert "DecodeError" in caplog.text
        assert "decoding" in caplog.text

    @pytest.mark.asyncio
    async def test_terminate_closes_channel_once(self, mock_websocket_connection, relay_config):
        session = Session(mock_websocket_connection, relay_config)

        await session.terminate()
        await session.terminate()

        assert session.state is SessionState.TERMINATED
        mock_websocket_connection.close.assert_awaited_once()

    def test_id_is_full_connection_uuid(self, mock_websocket_connection, relay_config):
        connection_id = uuid.uuid4()
        mock_websocket_connection.id = connection_id
        session = Session(mock_websocket_connection, relay_config)

        assert session.id == str(connection_id)
        assert session.short_id == str(connection_id)[:8]

    @pytest.mark.asyncio
    async def test_lone_surrogate_is_acknowledged(self, mock_websocket_connection, relay_config):
        mock_websocket_connection.recv.side_effect = [
            '{"string":"client_msg","content":"\\ud800","timestamp":5}',
            clean_close(),
        ]
        session = Session(mock_websocket_connection, relay_config)

        await session.run()

        assert sent_payloads(mock_websocket_connection) == [
            {"string": "server_response",
             "content": "You said: \ufffd. Thanks for the message! - server.",
             "timestamp": 5},
        ]
        assert session.messages_handled == 1
        assert session.error.clean

    def test_illegal_transition_raises(self, mock_websocket_connection, relay_config):
        session = Session(mock_websocket_connection, relay_config)

        with pytest.raises(InvalidTransition):
            session._transition(SessionState.RESPONDING)
        assert session.state is SessionState.AWAITING_FRAME

    @pytest.mark.asyncio
    async def test_custom_kind_key(self, mock_websocket_connection, relay_config):
        mock_websocket_connection.recv.side_effect = [
            json.dumps({"type": "client_msg", "content": "x", "timestamp": 9}),
            clean_close(),
        ]
        session = Session(mock_websocket_connection, relay_config.replace(kind_key="type"))

        await session.run()

        assert sent_payloads(mock_websocket_connection) == [
            {"type": "server_response",
             "content": "You said: x. Thanks for the message! - server.",
             "timestamp": 9},
        ]
