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
Per-container log stream sessions.
"""
import logging
import threading
from enum import Enum
from typing import Callable, List, Optional

from ..ENGINE.errors import EngineError
from ..ENGINE.gateway import EngineGateway
from ..ENGINE.log_stream import LogStream

logger = logging.getLogger(__name__)


class LogSessionState(str, Enum):
    """Lifecycle of a log stream session."""

    IDLE = "idle"
    OPENING = "opening"
    STREAMING = "streaming"
    CLOSED = "closed"
    FAILED = "failed"


class LogStreamSession:
    """
    Follows one container's log output for the lifetime of one observation.

    Lines are appended to the buffer in the order the engine delivers them;
    none is ever reordered, merged or removed. A session is single use:
    once closed or failed it stays that way, and watching the same container
    again means opening a new session with an empty buffer.
    """

    def __init__(
        self,
        gateway: EngineGateway,
        container_id: str,
        on_line: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[EngineError], None]] = None,
    ):
        """
        :param gateway: Engine gateway used to open the stream.
        :param container_id: Container to follow.
        :param on_line: Called from the reader thread with every new line.
        :param on_error: Called if the stream fails to open or breaks.
        """
        self.gateway = gateway
        self.container_id = container_id
        self.on_line = on_line
        self.on_error = on_error

        self._lock = threading.Lock()
        # Held while a callback runs; close() waits on it
        self._delivery = threading.RLock()
        self._lines: List[str] = []
        self._state = LogSessionState.IDLE
        self._stream: Optional[LogStream] = None
        self._reader: Optional[threading.Thread] = None
        self.error: Optional[EngineError] = None

    @property
    def state(self) -> LogSessionState:
        return self._state

    @property
    def lines(self) -> List[str]:
        """A copy of the lines received so far."""
        with self._lock:
            return list(self._lines)

    @property
    def subscribed(self) -> bool:
        """True while an engine stream is held open by this session."""
        with self._lock:
            return self._stream is not None and not self._stream.closed

    def open(self) -> bool:
        """
        Opens the engine stream and starts reading it.

        :return: True if streaming, False if the stream could not be opened.
        """
        with self._lock:
            if self._state != LogSessionState.IDLE:
                raise RuntimeError(
                    f"Log session for {self.container_id} cannot be opened from state {self._state.value}"
                )
            self._state = LogSessionState.OPENING

        try:
            stream = self.gateway.open_log_stream(self.container_id)
        except EngineError as e:
            logger.warning("Could not open log stream for %s: %s", self.container_id, e)
            with self._lock:
                self._state = LogSessionState.FAILED
                self.error = e
            if self.on_error:
                self.on_error(e)
            return False

        with self._lock:
            # Closed while the open request was outstanding
            if self._state != LogSessionState.OPENING:
                stream.close()
                return False
            self._stream = stream
            self._state = LogSessionState.STREAMING
            self._reader = threading.Thread(
                target=self._read, args=(stream,), name=f"logs-{self.container_id}", daemon=True
            )
            self._reader.start()
        return True

    def close(self) -> None:
        """
        Ends the session and releases the engine stream. Safe to call in any
        state and more than once. No line is appended and no callback runs
        after this returns.
        """
        with self._lock:
            if self._state not in (LogSessionState.CLOSED, LogSessionState.FAILED):
                self._state = LogSessionState.CLOSED
            stream, self._stream = self._stream, None
            reader = self._reader

        if stream is not None:
            stream.close()
        # Wait out a callback already in progress; later ones see CLOSED
        with self._delivery:
            pass
        if reader is not None and reader is not threading.current_thread():
            # The stream is closed so the reader returns promptly; a reader
            # stuck in a blocking read cannot deliver anyway once closed
            reader.join(timeout=1.0)

    def _read(self, stream: LogStream) -> None:
        try:
            for line in stream:
                with self._delivery:
                    with self._lock:
                        if self._state != LogSessionState.STREAMING:
                            return
                        self._lines.append(line)
                    if self.on_line:
                        self.on_line(line)
        except EngineError as e:
            self._fail(stream, e)
            return
        except Exception as e:
            if stream.closed:
                return
            logger.exception("Log reader for %s crashed", self.container_id)
            self._fail(stream, EngineError(str(e), operation="read_log_stream", entity_id=self.container_id))
            return

        with self._lock:
            if self._state != LogSessionState.STREAMING:
                return
            # The engine ended the stream, e.g. the container stopped
            logger.info("Log stream for %s ended", self.container_id)
            self._state = LogSessionState.CLOSED
            self._stream = None
        stream.close()

    def _fail(self, stream: LogStream, error: EngineError) -> None:
        with self._delivery:
            with self._lock:
                if self._state != LogSessionState.STREAMING:
                    return
                logger.warning("Log stream for %s broke: %s", self.container_id, error)
                self._state = LogSessionState.FAILED
                self.error = error
                self._stream = None
            stream.close()
            if self.on_error:
                self.on_error(error)
