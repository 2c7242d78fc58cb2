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
State-gated dispatch of container lifecycle actions.

Deciding whether an action is allowed is a pure table lookup
(``is_permitted``); dispatching it is the effectful part (``ActionGate``).
The gate only decides what to offer the user. The engine has the final
say on every transition.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..ENGINE.errors import EngineError
from ..ENGINE.gateway import EngineGateway
from ..MODELS.entities import ContainerState, EntityClass
from .refresh_scheduler import RefreshScheduler, RefreshTrigger

logger = logging.getLogger(__name__)


class ContainerAction(str, Enum):
    """Lifecycle actions a user can request on a container."""

    START = "start"
    STOP = "stop"
    RESTART = "restart"
    REMOVE = "remove"


# Removing only exited containers is our own policy; the engine would also
# remove created or dead ones.
_RULES: Dict[ContainerAction, Callable[[str], bool]] = {
    ContainerAction.START: lambda state: state != ContainerState.RUNNING,
    ContainerAction.STOP: lambda state: state == ContainerState.RUNNING,
    ContainerAction.RESTART: lambda state: state != ContainerState.CREATED,
    ContainerAction.REMOVE: lambda state: state == ContainerState.EXITED,
}

_REQUIREMENTS: Dict[ContainerAction, str] = {
    ContainerAction.START: "is already running",
    ContainerAction.STOP: "is not running",
    ContainerAction.RESTART: "has never been started",
    ContainerAction.REMOVE: "has not exited",
}


def is_permitted(action: ContainerAction, state: str) -> bool:
    """
    Checks whether an action may be dispatched for a container in ``state``.

    :param action: Requested action.
    :param state: Last-known lifecycle state of the container.
    :return: True if the action should be sent to the engine.
    """
    return _RULES[ContainerAction(action)](state)


def permitted_actions(state: str) -> List[ContainerAction]:
    """Actions to offer for a container in ``state``."""
    return [action for action in ContainerAction if is_permitted(action, state)]


class ActionStatus(str, Enum):
    REJECTED = "rejected"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class ActionOutcome:
    """Result of one dispatch request."""

    entity_id: str
    action: ContainerAction
    status: ActionStatus
    message: str = ""
    error: Optional[EngineError] = None

    @property
    def dispatched(self) -> bool:
        return self.status != ActionStatus.REJECTED

    @property
    def ok(self) -> bool:
        return self.status == ActionStatus.SUCCEEDED


class ActionGate:
    """
    Validates lifecycle actions against the container's state and sends the
    permitted ones to the engine.

    Every dispatched action is followed by exactly one refresh of the
    container snapshot, whether it succeeded or not: after a failure the
    container's real state may differ from what was assumed.

    ``remove`` must be confirmed by the user before calling dispatch; the
    gate does not ask.
    """

    def __init__(
        self,
        gateway: EngineGateway,
        scheduler: RefreshScheduler,
        on_error: Optional[Callable[[ActionOutcome], None]] = None,
    ):
        """
        :param gateway: Engine gateway used for mutations.
        :param scheduler: Scheduler asked to re-sync containers after each action.
        :param on_error: Called with the outcome of every failed action.
        """
        self.gateway = gateway
        self.scheduler = scheduler
        self.on_error = on_error
        self._mutations: Dict[ContainerAction, Callable[[str], None]] = {
            ContainerAction.START: gateway.start_container,
            ContainerAction.STOP: gateway.stop_container,
            ContainerAction.RESTART: gateway.restart_container,
            ContainerAction.REMOVE: gateway.remove_container,
        }

    def dispatch(self, entity_id: str, action: ContainerAction, current_state: str) -> ActionOutcome:
        """
        Dispatches an action if the container's state permits it.

        :param entity_id: Target container.
        :param action: Requested action.
        :param current_state: Container state from the latest snapshot.
        :return: The outcome. Rejected actions never reach the engine.
        """
        action = ContainerAction(action)
        if not is_permitted(action, current_state):
            message = (
                f"Cannot {action.value} container {entity_id}: "
                f"it {_REQUIREMENTS[action]} (state: {current_state})"
            )
            logger.debug(message)
            return ActionOutcome(entity_id, action, ActionStatus.REJECTED, message)

        logger.info("Dispatching %s to container %s", action.value, entity_id)
        try:
            self._mutations[action](entity_id)
        except EngineError as e:
            outcome = ActionOutcome(
                entity_id,
                action,
                ActionStatus.FAILED,
                f"Failed to {action.value} container {entity_id}: {e}",
                error=e,
            )
            logger.error(outcome.message)
        else:
            outcome = ActionOutcome(
                entity_id,
                action,
                ActionStatus.SUCCEEDED,
                f"Container {entity_id}: {action.value} succeeded",
            )
        finally:
            self.scheduler.refresh(EntityClass.CONTAINER, RefreshTrigger.ACTION)

        if not outcome.ok and self.on_error:
            self.on_error(outcome)
        return outcome
