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
Observation sessions: everything that lives only while one container is
being watched.
"""
import logging
import threading
from typing import Callable, Optional

from ..ENGINE.errors import EngineError
from ..ENGINE.gateway import EngineGateway
from ..MODELS.details import ContainerDetail, ContainerStats
from ..MODELS.entities import ContainerRecord, EntityClass
from ..MODELS.settings import MonitorSettings
from ..UTILS.interval_timer import IntervalTimer
from .log_session import LogStreamSession
from .metrics_sampler import MetricsSampler
from .snapshot_store import Snapshot, SnapshotStore

logger = logging.getLogger(__name__)

# State reported to the sampler once the container drops out of the listing
REMOVED = "removed"


class ObservationSession:
    """
    Watches one container: its inspection details, its log stream and its
    resource usage.

    The session owns one LogStreamSession and one MetricsSampler and keeps
    the sampler informed of the container's state as container snapshots
    arrive. Closing the session closes the stream, stops the sampler and
    unsubscribes from the store before returning.
    """

    def __init__(
        self,
        gateway: EngineGateway,
        store: SnapshotStore,
        container: ContainerRecord,
        settings: Optional[MonitorSettings] = None,
        follow_logs: bool = True,
        sample_stats: bool = True,
        timer_factory: Callable[..., IntervalTimer] = IntervalTimer,
        on_line: Optional[Callable[[str], None]] = None,
        on_sample: Optional[Callable[[ContainerStats], None]] = None,
        on_error: Optional[Callable[[EngineError], None]] = None,
    ):
        """
        :param gateway: Engine gateway.
        :param store: Snapshot store to watch for state changes of the container.
        :param container: The container as last seen in the snapshot.
        :param settings: Stats interval.
        :param follow_logs: Open a log stream session.
        :param sample_stats: Run a metrics sampler.
        :param timer_factory: Timer factory handed to the sampler.
        :param on_line: Forwarded to the log session.
        :param on_sample: Forwarded to the sampler.
        :param on_error: Called with detail, log and sampling failures.
        """
        self.gateway = gateway
        self.store = store
        self.container = container
        self.settings = settings or MonitorSettings()
        self.on_error = on_error

        self.detail: Optional[ContainerDetail] = None
        self.detail_error: Optional[EngineError] = None

        self.logs: Optional[LogStreamSession] = None
        if follow_logs:
            self.logs = LogStreamSession(gateway, container.id, on_line=on_line, on_error=on_error)

        self.sampler: Optional[MetricsSampler] = None
        if sample_stats:
            self.sampler = MetricsSampler(
                gateway,
                container.id,
                container.state,
                interval=self.settings.stats_interval,
                timer_factory=timer_factory,
                on_sample=on_sample,
                on_error=on_error,
            )

        self._lock = threading.Lock()
        self._opened = False
        self._closed = False
        self._unsubscribe: Optional[Callable[[], None]] = None

    @property
    def container_id(self) -> str:
        return self.container.id

    @property
    def is_open(self) -> bool:
        return self._opened and not self._closed

    def open(self) -> None:
        """
        Fetches the container's details, opens the log stream and starts the
        sampler. A failure in one of them does not prevent the others.
        """
        with self._lock:
            if self._opened:
                raise RuntimeError(f"Observation of {self.container_id} already opened")
            self._opened = True

        try:
            self.detail = self.gateway.get_container_detail(self.container_id)
        except EngineError as e:
            logger.warning("Could not inspect %s: %s", self.container_id, e)
            self.detail_error = e
            if self.on_error:
                self.on_error(e)

        self._unsubscribe = self.store.subscribe(self._on_snapshot)
        if self.logs is not None:
            self.logs.open()
        if self.sampler is not None:
            self.sampler.start()

    def close(self) -> None:
        """
        Releases everything the session owns. Safe to call more than once.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.sampler is not None:
            self.sampler.stop()
        if self.logs is not None:
            self.logs.close()
        logger.debug("Closed observation of %s", self.container_id)

    def _on_snapshot(self, snapshot: Snapshot) -> None:
        if snapshot.entity_class != EntityClass.CONTAINER or self._closed:
            return
        record = snapshot.find(self.container_id)
        if record is None:
            # Removed or renamed away; nothing left to sample
            if self.sampler is not None:
                self.sampler.update_state(REMOVED)
            return
        self.container = record
        if self.sampler is not None:
            self.sampler.update_state(record.state)

    def __enter__(self) -> "ObservationSession":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
