# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
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

"""
Unit tests for log stream sessions.
"""
import threading

import pytest

from dockpit.ENGINE.errors import EngineUnreachableError, EntityNotFoundError
from dockpit.MANAGERS.log_session import LogSessionState, LogStreamSession

from conftest import FeedableChunks, wait_until


class TestLogStreamSession:
    """Tests for LogStreamSession."""

    def test_lines_in_delivery_order(self, gateway):
        gateway.sources["c2"] = FeedableChunks("one", "two", "three")
        session = LogStreamSession(gateway, "c2")
        assert session.open()
        assert session.state == LogSessionState.STREAMING
        assert wait_until(lambda: len(session.lines) == 3)
        assert session.lines == ["one", "two", "three"]
        session.close()

    def test_on_line_callback(self, gateway):
        seen = []
        gateway.sources["c2"] = FeedableChunks("hello")
        session = LogStreamSession(gateway, "c2", on_line=seen.append)
        session.open()
        assert wait_until(lambda: seen == ["hello"])
        session.close()

    def test_close_releases_subscription(self, gateway):
        session = LogStreamSession(gateway, "c2")
        session.open()
        assert session.subscribed
        assert len(gateway.open_streams) == 1

        session.close()

        assert session.state == LogSessionState.CLOSED
        assert not session.subscribed
        assert gateway.open_streams == []
        assert gateway.streams[0].source.closed

    def test_close_is_idempotent(self, gateway):
        session = LogStreamSession(gateway, "c2")
        session.close()
        session.close()
        assert session.state == LogSessionState.CLOSED

    def test_no_lines_after_close(self, gateway):
        source = gateway.sources["c2"] = FeedableChunks("a", "b")
        session = LogStreamSession(gateway, "c2")
        session.open()
        assert wait_until(lambda: len(session.lines) == 2)
        session.close()

        source.feed("c")
        assert session.lines == ["a", "b"]

    def test_reopen_starts_with_empty_buffer(self, gateway):
        gateway.sources["c2"] = FeedableChunks("a", "b")
        first = LogStreamSession(gateway, "c2")
        first.open()
        assert wait_until(lambda: first.lines == ["a", "b"])
        first.close()

        second_source = gateway.sources["c2"] = FeedableChunks()
        second = LogStreamSession(gateway, "c2")
        second.open()
        second_source.feed("c")
        assert wait_until(lambda: second.lines == ["c"])
        assert first.lines == ["a", "b"]
        second.close()
        assert gateway.open_streams == []

    def test_session_is_single_use(self, gateway):
        session = LogStreamSession(gateway, "c2")
        session.open()
        session.close()
        with pytest.raises(RuntimeError):
            session.open()

    def test_open_failure_is_terminal(self, gateway):
        errors = []
        gateway.errors["open_log_stream"] = EntityNotFoundError("No such container: c9", entity_id="c9")
        session = LogStreamSession(gateway, "c9", on_error=errors.append)

        assert not session.open()
        assert session.state == LogSessionState.FAILED
        assert isinstance(session.error, EntityNotFoundError)
        assert errors == [session.error]
        assert gateway.count("open_log_stream") == 1

        session.close()
        assert session.state == LogSessionState.FAILED
        assert gateway.count("open_log_stream") == 1

    def test_engine_ending_stream_closes_session(self, gateway):
        source = gateway.sources["c2"] = FeedableChunks("last words")
        session = LogStreamSession(gateway, "c2")
        session.open()
        source.end()
        assert wait_until(lambda: session.state == LogSessionState.CLOSED)
        assert session.lines == ["last words"]
        assert not session.subscribed

    def test_broken_stream_fails_session(self, gateway):
        errors = []

        def broken():
            yield b"partial\n"
            raise EngineUnreachableError("connection reset")

        session = LogStreamSession(gateway, "c2", on_error=errors.append)
        stream = gateway.open_log_stream("c2")
        stream._chunks = broken()
        gateway.open_log_stream = lambda container_id: stream

        session.open()
        assert wait_until(lambda: session.state == LogSessionState.FAILED)
        assert session.lines == ["partial"]
        assert isinstance(errors[0], EngineUnreachableError)
        assert stream.closed

    def test_close_waits_for_slow_consumer(self, gateway):
        entered = threading.Event()
        delivered = []

        def slow_consumer(line):
            entered.set()
            threading.Event().wait(0.3)
            delivered.append(line)

        source = gateway.sources["c2"] = FeedableChunks("a")
        session = LogStreamSession(gateway, "c2", on_line=slow_consumer)
        session.open()
        assert entered.wait(2)

        session.close()

        assert delivered == ["a"]
        source.feed("b")
        threading.Event().wait(0.05)
        assert delivered == ["a"]
        assert session.lines == ["a"]

    def test_close_from_callback(self, gateway):
        gateway.sources["c2"] = FeedableChunks("a", "b")
        holder = {}

        def close_on_first(line):
            holder["session"].close()

        session = holder["session"] = LogStreamSession(gateway, "c2", on_line=close_on_first)
        session.open()
        assert wait_until(lambda: session.state == LogSessionState.CLOSED)
        assert session.lines == ["a"]
        assert gateway.open_streams == []
