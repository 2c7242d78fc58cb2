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
The monitor ties the gateway, snapshot store, refresh scheduler, action gate
and the current observation session together.
"""
import logging
from typing import Callable, Optional

from ..ENGINE.errors import EngineError, EntityNotFoundError
from ..ENGINE.gateway import EngineGateway
from ..MODELS.details import ContainerStats
from ..MODELS.entities import ContainerRecord, EntityClass
from ..MODELS.settings import MonitorSettings
from ..UTILS.interval_timer import IntervalTimer
from .action_gate import ActionGate, ActionOutcome, ContainerAction
from .observation import ObservationSession
from .refresh_scheduler import RefreshOutcome, RefreshScheduler
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class Monitor:
    """
    Entry point for a consumer (CLI or UI) of the live engine view.

    At most one container is observed at a time: observing another one
    closes the previous observation first.
    """

    def __init__(
        self,
        gateway: EngineGateway,
        settings: Optional[MonitorSettings] = None,
        timer_factory: Callable[..., IntervalTimer] = IntervalTimer,
        on_refresh_error: Optional[Callable[[EntityClass, EngineError], None]] = None,
        on_action_error: Optional[Callable[[ActionOutcome], None]] = None,
    ):
        """
        :param gateway: Engine gateway.
        :param settings: Intervals and streaming settings.
        :param timer_factory: Timer factory for refresh and sampling intervals.
        :param on_refresh_error: Notified of background refresh failures.
        :param on_action_error: Notified of failed user actions.
        """
        self.gateway = gateway
        self.settings = settings or MonitorSettings()
        self.timer_factory = timer_factory
        self.store = SnapshotStore()
        self.scheduler = RefreshScheduler(
            gateway,
            self.store,
            self.settings,
            timer_factory=timer_factory,
            on_error=on_refresh_error,
        )
        self.gate = ActionGate(gateway, self.scheduler, on_error=on_action_error)
        self.observation: Optional[ObservationSession] = None

    def activate(self, entity_class: EntityClass) -> RefreshOutcome:
        return self.scheduler.activate(entity_class)

    def refresh(self) -> Optional[RefreshOutcome]:
        return self.scheduler.refresh_active()

    def find_container(self, container_id: str) -> Optional[ContainerRecord]:
        """
        Looks a container up in the current snapshot by id or name.
        """
        for record in self.store.records(EntityClass.CONTAINER):
            if record.id == container_id or record.name == container_id:
                return record
        return None

    def require_container(self, container_id: str) -> ContainerRecord:
        record = self.find_container(container_id)
        if record is None:
            raise EntityNotFoundError(
                f"No such container: {container_id}", entity_id=container_id
            )
        return record

    def dispatch(self, container_id: str, action: ContainerAction) -> ActionOutcome:
        """
        Dispatches an action using the container's state from the current
        snapshot.
        """
        record = self.require_container(container_id)
        return self.gate.dispatch(record.id, action, record.state)

    def observe(
        self,
        container_id: str,
        follow_logs: bool = True,
        sample_stats: bool = True,
        on_line: Optional[Callable[[str], None]] = None,
        on_sample: Optional[Callable[[ContainerStats], None]] = None,
        on_error: Optional[Callable[[EngineError], None]] = None,
    ) -> ObservationSession:
        """
        Opens an observation session for a container, closing any previous one.
        """
        record = self.require_container(container_id)
        self.close_observation()
        session = ObservationSession(
            self.gateway,
            self.store,
            record,
            settings=self.settings,
            follow_logs=follow_logs,
            sample_stats=sample_stats,
            timer_factory=self.timer_factory,
            on_line=on_line,
            on_sample=on_sample,
            on_error=on_error,
        )
        self.observation = session
        session.open()
        return session

    def close_observation(self) -> None:
        if self.observation is not None:
            self.observation.close()
            self.observation = None

    def shutdown(self) -> None:
        """
        Closes the observation and stops periodic refresh.
        """
        self.close_observation()
        self.scheduler.stop()

    def __enter__(self) -> "Monitor":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
