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
Shared fakes: an in-memory engine gateway and manually fired timers.
"""
import queue
import threading
import time
from typing import Callable, Dict, List, Optional

import pytest

from dockpit.ENGINE.errors import EntityNotFoundError
from dockpit.ENGINE.log_stream import LogStream
from dockpit.MODELS.details import ContainerDetail, ContainerStats
from dockpit.MODELS.entities import ContainerRecord, ImageRecord, NetworkRecord

_END = object()


class FeedableChunks:
    """A log source that blocks until lines are fed or it is closed."""

    def __init__(self, *lines: str):
        self._queue = queue.Queue()
        self.closed = False
        self.feed(*lines)

    def feed(self, *lines: str) -> None:
        for line in lines:
            self._queue.put((line + "\n").encode())

    def end(self) -> None:
        self._queue.put(_END)

    def close(self) -> None:
        self.closed = True
        self._queue.put(_END)

    def __iter__(self):
        while True:
            item = self._queue.get()
            if item is _END:
                return
            yield item


class FakeGateway:
    """
    In-memory stand-in for EngineGateway. Mutations change container state
    the way the engine would, so the next listing reflects them.
    """

    def __init__(self, containers: Optional[List[ContainerRecord]] = None):
        self.containers: List[ContainerRecord] = list(containers or [])
        self.images: List[ImageRecord] = []
        self.networks: List[NetworkRecord] = []
        self.details: Dict[str, ContainerDetail] = {}
        self.stats = ContainerStats(cpu_percentage=12.5, memory_usage=1024, memory_limit=4096, memory_percentage=25.0)
        self.errors: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self.sources: Dict[str, FeedableChunks] = {}
        self.streams: List[LogStream] = []
        self.closed = False

    def _call(self, operation: str, entity_id: Optional[str] = None) -> None:
        self.calls.append((operation, entity_id))
        error = self.errors.get(operation)
        if error is not None:
            raise error

    def count(self, operation: str) -> int:
        return sum(1 for op, _ in self.calls if op == operation)

    def _set_state(self, container_id: str, state: str) -> None:
        for i, c in enumerate(self.containers):
            if c.id == container_id:
                self.containers[i] = c.model_copy(update={"state": state})
                return
        raise EntityNotFoundError(f"No such container: {container_id}", entity_id=container_id)

    def list_containers(self):
        self._call("list_containers")
        return list(self.containers)

    def list_images(self):
        self._call("list_images")
        return list(self.images)

    def list_networks(self):
        self._call("list_networks")
        return list(self.networks)

    def get_container_detail(self, container_id):
        self._call("get_container_detail", container_id)
        return self.details.get(container_id, ContainerDetail(hostname=container_id))

    def get_container_stats(self, container_id):
        self._call("get_container_stats", container_id)
        return self.stats

    def start_container(self, container_id):
        self._call("start_container", container_id)
        self._set_state(container_id, "running")

    def stop_container(self, container_id):
        self._call("stop_container", container_id)
        self._set_state(container_id, "exited")

    def restart_container(self, container_id):
        self._call("restart_container", container_id)
        self._set_state(container_id, "running")

    def remove_container(self, container_id):
        self._call("remove_container", container_id)
        self.containers = [c for c in self.containers if c.id != container_id]

    def open_log_stream(self, container_id):
        self._call("open_log_stream", container_id)
        source = self.sources.setdefault(container_id, FeedableChunks())
        # Each stream gets the source current at open time; later opens get a new one
        del self.sources[container_id]
        stream = LogStream(container_id, source, on_close=source.close)
        stream.source = source
        self.streams.append(stream)
        return stream

    @property
    def open_streams(self) -> List[LogStream]:
        return [s for s in self.streams if not s.closed]

    def close(self):
        self.closed = True


class ManualTimer:
    """Timer that only fires when the test says so."""

    def __init__(self, interval: float, callback: Callable[[], None], name: Optional[str] = None,
                 fire_immediately: bool = False):
        self.interval = interval
        self.callback = callback
        self.name = name
        self.fire_immediately = fire_immediately
        self.started = False
        self.cancelled = False

    @property
    def active(self) -> bool:
        return self.started and not self.cancelled

    def start(self) -> None:
        self.started = True
        if self.fire_immediately:
            self.fire()

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        if self.active:
            self.callback()


class TimerRecorder:
    """Timer factory that keeps every timer it creates."""

    def __init__(self):
        self.timers: List[ManualTimer] = []

    def __call__(self, interval, callback, name=None, fire_immediately=False) -> ManualTimer:
        timer = ManualTimer(interval, callback, name=name, fire_immediately=fire_immediately)
        self.timers.append(timer)
        return timer

    @property
    def last(self) -> ManualTimer:
        return self.timers[-1]

    @property
    def active(self) -> List[ManualTimer]:
        return [t for t in self.timers if t.active]


def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def container(container_id: str = "c1", state: str = "running", name: Optional[str] = None) -> ContainerRecord:
    return ContainerRecord(
        id=container_id,
        name=name or f"{container_id}-name",
        image="nginx:latest",
        state=state,
        status="Up 2 minutes" if state == "running" else "Exited (0) 1 minute ago",
    )


@pytest.fixture
def gateway():
    return FakeGateway([container("c1", "exited"), container("c2", "running")])


@pytest.fixture
def timers():
    return TimerRecorder()
