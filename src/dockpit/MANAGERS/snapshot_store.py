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
The entity snapshot store: the last-known list of containers, images and
networks, and the single source of truth for anything rendering them.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from ..MODELS.entities import ContainerRecord, EntityClass
from ..ENGINE.errors import EngineError

logger = logging.getLogger(__name__)

SnapshotListener = Callable[["Snapshot"], None]


@dataclass(frozen=True)
class Snapshot:
    """A complete list of records for one entity class."""

    entity_class: EntityClass
    records: Tuple = ()
    sequence: int = 0
    fetched_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def find(self, entity_id: str):
        for record in self.records:
            if record.id == entity_id:
                return record
        return None


@dataclass(frozen=True)
class RefreshFailure:
    """The most recent failed refresh of an entity class."""

    entity_class: EntityClass
    error: EngineError
    sequence: int
    failed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class SnapshotStore:
    """
    Holds at most one snapshot per entity class.

    Snapshots are replaced whole, never merged. Every replacement carries the
    sequence number of the request that produced it, and a response older
    than the one already applied is discarded.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._snapshots: Dict[EntityClass, Snapshot] = {}
        self._failures: Dict[EntityClass, RefreshFailure] = {}
        self._listeners: List[SnapshotListener] = []

    def get(self, entity_class: EntityClass) -> Optional[Snapshot]:
        """
        Returns the current snapshot for a class, or None if it has never
        been fetched.
        """
        with self._lock:
            return self._snapshots.get(entity_class)

    def records(self, entity_class: EntityClass) -> Tuple:
        snapshot = self.get(entity_class)
        return snapshot.records if snapshot else ()

    def find_container(self, container_id: str) -> Optional[ContainerRecord]:
        snapshot = self.get(EntityClass.CONTAINER)
        return snapshot.find(container_id) if snapshot else None

    def last_applied(self, entity_class: EntityClass) -> int:
        snapshot = self.get(entity_class)
        return snapshot.sequence if snapshot else 0

    def last_failure(self, entity_class: EntityClass) -> Optional[RefreshFailure]:
        """
        Returns the failure of the latest refresh attempt, or None if the
        latest attempt succeeded.
        """
        with self._lock:
            return self._failures.get(entity_class)

    def replace(self, entity_class: EntityClass, records: Sequence, sequence: int) -> bool:
        """
        Atomically replaces the snapshot of a class.

        :param entity_class: Class the records belong to.
        :param records: The full list returned by the engine.
        :param sequence: Sequence number of the request that fetched it.
        :return: True if applied, False if a newer snapshot was already in place.
        """
        with self._lock:
            current = self._snapshots.get(entity_class)
            if current is not None and sequence <= current.sequence:
                logger.debug(
                    "Discarding stale %s snapshot #%d (have #%d)",
                    entity_class.value, sequence, current.sequence,
                )
                return False
            snapshot = Snapshot(entity_class, tuple(records), sequence)
            self._snapshots[entity_class] = snapshot
            failure = self._failures.get(entity_class)
            if failure is not None and failure.sequence <= sequence:
                del self._failures[entity_class]
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Snapshot listener failed for %s", entity_class.value)
        return True

    def record_failure(self, entity_class: EntityClass, error: EngineError, sequence: int) -> None:
        """
        Records a failed refresh. The existing snapshot is left untouched.
        """
        with self._lock:
            if sequence <= self._last_applied_locked(entity_class):
                return
            self._failures[entity_class] = RefreshFailure(entity_class, error, sequence)

    def _last_applied_locked(self, entity_class: EntityClass) -> int:
        snapshot = self._snapshots.get(entity_class)
        return snapshot.sequence if snapshot else 0

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Registers a function called with every applied snapshot.

        :return: A function that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe():
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)
