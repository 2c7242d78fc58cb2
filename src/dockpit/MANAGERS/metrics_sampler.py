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
Periodic resource sampling for an observed container.
"""
import logging
import threading
from enum import Enum
from typing import Callable, Optional

from ..ENGINE.errors import EngineError
from ..ENGINE.gateway import EngineGateway
from ..MODELS.details import ContainerStats
from ..MODELS.entities import ContainerState
from ..UTILS.interval_timer import IntervalTimer

logger = logging.getLogger(__name__)


class SamplerState(str, Enum):
    """Whether the sampler is producing samples."""

    UNAVAILABLE = "unavailable"  # container not running, nothing is sampled
    SAMPLING = "sampling"
    STOPPED = "stopped"


class MetricsSampler:
    """
    Samples a container's resource usage while it is running.

    Sampling starts with one immediate sample and repeats every ``interval``
    seconds until the sampler is stopped. Each sample replaces the previous
    one. A failed sample is reported but the next tick still fires.

    If the container's last-known state is anything other than running the
    sampler stays inert and reports itself unavailable.
    """

    def __init__(
        self,
        gateway: EngineGateway,
        container_id: str,
        container_state: str,
        interval: float = 2.0,
        timer_factory: Callable[..., IntervalTimer] = IntervalTimer,
        on_sample: Optional[Callable[[ContainerStats], None]] = None,
        on_error: Optional[Callable[[EngineError], None]] = None,
    ):
        """
        :param gateway: Engine gateway used for stats requests.
        :param container_id: Container to sample.
        :param container_state: Last-known lifecycle state of the container.
        :param interval: Seconds between samples.
        :param timer_factory: Creates the sampling timer; called as
            ``timer_factory(interval, callback, name=..., fire_immediately=True)``.
        :param on_sample: Called with every new sample.
        :param on_error: Called with every failed sample.
        """
        self.gateway = gateway
        self.container_id = container_id
        self.interval = interval
        self.timer_factory = timer_factory
        self.on_sample = on_sample
        self.on_error = on_error

        self._lock = threading.Lock()
        self._container_state = container_state
        self._started = False
        self._stopped = False
        self._timer: Optional[IntervalTimer] = None
        self._latest: Optional[ContainerStats] = None
        self.last_error: Optional[EngineError] = None
        self.sample_count = 0

    @property
    def state(self) -> SamplerState:
        if self._stopped:
            return SamplerState.STOPPED
        if self._timer is not None:
            return SamplerState.SAMPLING
        return SamplerState.UNAVAILABLE

    @property
    def available(self) -> bool:
        return self.state == SamplerState.SAMPLING

    @property
    def latest(self) -> Optional[ContainerStats]:
        """The most recent sample, or None if unavailable or not sampled yet."""
        with self._lock:
            return self._latest if self._timer is not None else None

    def start(self) -> None:
        """
        Starts sampling if the container is running; otherwise the sampler
        stays unavailable.
        """
        with self._lock:
            if self._stopped:
                raise RuntimeError(f"Sampler for {self.container_id} already stopped")
            self._started = True
        self._apply_state()

    def update_state(self, container_state: str) -> None:
        """
        Tells the sampler the container's latest state. Leaving running
        stops sampling; entering running resumes it.
        """
        with self._lock:
            if container_state == self._container_state:
                return
            self._container_state = container_state
        self._apply_state()

    def stop(self) -> None:
        """
        Stops sampling for good. No sample request is issued after this returns.
        """
        with self._lock:
            self._stopped = True
            timer, self._timer = self._timer, None
            self._latest = None
        if timer is not None:
            timer.cancel()

    def _apply_state(self) -> None:
        with self._lock:
            if self._stopped or not self._started:
                return
            running = self._container_state == ContainerState.RUNNING
            if running and self._timer is None:
                timer = self._timer = self.timer_factory(
                    self.interval,
                    self._sample,
                    name=f"stats-{self.container_id}",
                    fire_immediately=True,
                )
                starting = True
            elif not running and self._timer is not None:
                timer, self._timer = self._timer, None
                self._latest = None
                starting = False
            else:
                return

        # Timers are started and cancelled outside the lock: a tick takes it
        if starting:
            logger.debug("Sampling stats for %s every %.1fs", self.container_id, self.interval)
            timer.start()
        else:
            logger.debug("Container %s left running, stats unavailable", self.container_id)
            timer.cancel()

    def _sample(self) -> None:
        with self._lock:
            if self._stopped or self._timer is None:
                return
        try:
            stats = self.gateway.get_container_stats(self.container_id)
        except EngineError as e:
            logger.warning("Stats sample for %s failed: %s", self.container_id, e)
            self.last_error = e
            if self.on_error:
                self.on_error(e)
            return

        with self._lock:
            if self._stopped or self._timer is None:
                return
            self._latest = stats
            self.sample_count += 1
            self.last_error = None
        if self.on_sample:
            self.on_sample(stats)
