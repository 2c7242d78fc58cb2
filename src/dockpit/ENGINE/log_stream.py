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
Line framing over the engine's log byte stream.
"""
import codecs
import threading
from typing import Callable, Iterable, Iterator, Optional, Union

Chunk = Union[bytes, str]


class LogStream:
    """
    An open, cancellable subscription to a container's log output.

    The engine delivers log output in frames that do not necessarily line
    up with line boundaries. Iterating a LogStream yields complete text
    lines in delivery order; a partial last line is yielded when the
    underlying stream ends.
    """

    def __init__(
        self,
        container_id: str,
        chunks: Iterable[Chunk],
        on_close: Optional[Callable[[], None]] = None,
    ):
        """
        :param container_id: Container the stream belongs to.
        :param chunks: Raw output chunks from the engine.
        :param on_close: Releases the underlying connection.
        """
        self.container_id = container_id
        self._chunks = chunks
        self._on_close = on_close
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """
        Releases the subscription. Safe to call more than once and from a
        thread other than the one iterating.
        """
        if self._closed.is_set():
            return
        self._closed.set()
        if self._on_close:
            self._on_close()

    def __iter__(self) -> Iterator[str]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        for chunk in self._chunks:
            if self._closed.is_set():
                return
            if isinstance(chunk, bytes):
                chunk = decoder.decode(chunk)
            pending += chunk
            while "\n" in pending:
                line, pending = pending.split("\n", 1)
                yield line.rstrip()
        pending += decoder.decode(b"", final=True)
        if pending and not self._closed.is_set():
            yield pending.rstrip()

    def __enter__(self) -> "LogStream":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
