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
Periodic and on-demand refresh of the snapshot for the active entity class.
"""
import itertools
import logging
import threading
from enum import Enum
from typing import Callable, Dict, Optional, Sequence, Set

from ..ENGINE.errors import EngineError
from ..ENGINE.gateway import EngineGateway
from ..MODELS.entities import EntityClass
from ..MODELS.settings import MonitorSettings
from ..UTILS.interval_timer import IntervalTimer
from .snapshot_store import SnapshotStore

logger = logging.getLogger(__name__)


class RefreshTrigger(str, Enum):
    """Why a refresh was requested."""

    ACTIVATION = "activation"
    PERIODIC = "periodic"
    MANUAL = "manual"
    ACTION = "action"


class RefreshOutcome(str, Enum):
    """What became of a refresh request."""

    APPLIED = "applied"
    STALE = "stale"  # fetched, but a newer snapshot was already applied
    FAILED = "failed"
    DROPPED = "dropped"  # periodic tick while a refresh was in flight
    COALESCED = "coalesced"  # answered by an in-flight refresh or its follow-up


class RefreshScheduler:
    """
    Keeps the snapshot of the active entity class fresh.

    Exactly one class is active at a time. Activating a class refreshes it
    immediately and then once per interval until another class is activated
    or the scheduler is stopped.

    At most one refresh per class is outstanding. A periodic tick that finds
    a refresh in flight is dropped. A manual or activation request that finds
    one in flight coincides with it and is answered by that fetch. A
    post-action request is folded into a single follow-up refresh issued
    once the in-flight one completes, so the mutation is always seen by a
    fetch issued after it.
    """

    def __init__(
        self,
        gateway: EngineGateway,
        store: SnapshotStore,
        settings: Optional[MonitorSettings] = None,
        timer_factory: Callable[..., IntervalTimer] = IntervalTimer,
        on_error: Optional[Callable[[EntityClass, EngineError], None]] = None,
    ):
        """
        Initializes the scheduler. Nothing is fetched until a class is activated.

        :param gateway: Engine gateway used for list operations.
        :param store: Store receiving the fetched snapshots.
        :param settings: Poll intervals per class.
        :param timer_factory: Creates the periodic timer; called as
            ``timer_factory(interval, callback, name=...)``.
        :param on_error: Called with the class and error when a refresh fails.
        """
        self.gateway = gateway
        self.store = store
        self.settings = settings or MonitorSettings()
        self.timer_factory = timer_factory
        self.on_error = on_error

        self._fetchers: Dict[EntityClass, Callable[[], Sequence]] = {
            EntityClass.CONTAINER: gateway.list_containers,
            EntityClass.IMAGE: gateway.list_images,
            EntityClass.NETWORK: gateway.list_networks,
        }

        self._lock = threading.Lock()
        self._sequence = itertools.count(1)
        self._in_flight: Set[EntityClass] = set()
        self._follow_up: Set[EntityClass] = set()

        # Serializes activate/stop so only one timer ever exists
        self._scope_lock = threading.RLock()
        self._active: Optional[EntityClass] = None
        self._timer: Optional[IntervalTimer] = None

    @property
    def active_class(self) -> Optional[EntityClass]:
        return self._active

    def is_in_flight(self, entity_class: EntityClass) -> bool:
        with self._lock:
            return entity_class in self._in_flight

    def activate(self, entity_class: EntityClass) -> RefreshOutcome:
        """
        Makes a class the active one: cancels the previous interval, refreshes
        the class right away and starts its interval.

        :param entity_class: Class to activate.
        :return: Outcome of the immediate refresh.
        """
        with self._scope_lock:
            self._cancel_timer()
            self._active = entity_class
            logger.debug("Activating %s view", entity_class.value)
            outcome = self.refresh(entity_class, RefreshTrigger.ACTIVATION)

            interval = self.settings.refresh_interval(entity_class)
            self._timer = self.timer_factory(
                interval,
                lambda: self._tick(entity_class),
                name=f"refresh-{entity_class.value}",
            )
            self._timer.start()
        return outcome

    def refresh_active(self) -> Optional[RefreshOutcome]:
        """
        Manual refresh of the active class. Does nothing if no class is active.
        """
        active = self._active
        if active is None:
            return None
        return self.refresh(active, RefreshTrigger.MANUAL)

    def stop(self) -> None:
        """
        Cancels the periodic refresh. No tick fires after this returns.
        """
        with self._scope_lock:
            self._cancel_timer()
            self._active = None

    def refresh(self, entity_class: EntityClass, trigger: RefreshTrigger = RefreshTrigger.MANUAL) -> RefreshOutcome:
        """
        Fetches the class and replaces its snapshot.

        Failures never raise: the previous snapshot is kept, the failure is
        recorded in the store and reported to ``on_error``.

        :param entity_class: Class to refresh.
        :param trigger: Why the refresh was requested.
        :return: What happened to the request.
        """
        with self._lock:
            if entity_class in self._in_flight:
                if trigger == RefreshTrigger.PERIODIC:
                    logger.debug("Dropping %s tick, refresh in flight", entity_class.value)
                    return RefreshOutcome.DROPPED
                if trigger == RefreshTrigger.ACTION:
                    self._follow_up.add(entity_class)
                return RefreshOutcome.COALESCED
            self._in_flight.add(entity_class)
            sequence = next(self._sequence)

        try:
            outcome = self._fetch_and_apply(entity_class, sequence)
            sequence = self._next_follow_up(entity_class)
            while sequence is not None:
                outcome = self._fetch_and_apply(entity_class, sequence)
                sequence = self._next_follow_up(entity_class)
        except BaseException:
            with self._lock:
                self._in_flight.discard(entity_class)
                self._follow_up.discard(entity_class)
            raise
        return outcome

    def _next_follow_up(self, entity_class: EntityClass) -> Optional[int]:
        # Clearing the in-flight flag happens under the same lock as the
        # follow-up check so a request arriving in between is never lost
        with self._lock:
            if entity_class in self._follow_up:
                self._follow_up.discard(entity_class)
                return next(self._sequence)
            self._in_flight.discard(entity_class)
            return None

    def _fetch_and_apply(self, entity_class: EntityClass, sequence: int) -> RefreshOutcome:
        try:
            records = self._fetchers[entity_class]()
        except EngineError as e:
            logger.warning("Refresh of %s list failed: %s", entity_class.value, e)
            self.store.record_failure(entity_class, e, sequence)
            if self.on_error:
                self.on_error(entity_class, e)
            return RefreshOutcome.FAILED

        if self.store.replace(entity_class, records, sequence):
            return RefreshOutcome.APPLIED
        return RefreshOutcome.STALE

    def _tick(self, entity_class: EntityClass) -> None:
        if self._active != entity_class:
            return
        self.refresh(entity_class, RefreshTrigger.PERIODIC)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
