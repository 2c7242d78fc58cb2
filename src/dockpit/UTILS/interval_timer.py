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
Owned, cancellable interval timers.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class IntervalTimer:
    """
    Calls a function every ``interval`` seconds on a background thread until
    cancelled.

    The timer is an explicit handle: whoever creates it owns it and must
    cancel it. ``cancel()`` waits for a callback that is already running to
    finish, so once it returns the callback will not run again.
    """

    def __init__(
        self,
        interval: float,
        callback: Callable[[], None],
        name: Optional[str] = None,
        fire_immediately: bool = False,
    ):
        """
        Initializes the timer. It does not run until start() is called.

        :param interval: Seconds between calls.
        :param callback: Function to call on each tick.
        :param name: Thread name, for debugging.
        :param fire_immediately: Call once right away instead of waiting a full interval first.
        """
        if interval <= 0:
            raise ValueError("interval must be greater than zero")
        self.interval = interval
        self.callback = callback
        self.name = name or "interval-timer"
        self.fire_immediately = fire_immediately
        self._cancelled = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def active(self) -> bool:
        return self._thread is not None and not self._cancelled.is_set()

    def start(self) -> None:
        """
        Starts the timer thread.
        """
        if self._thread is not None:
            raise RuntimeError(f"Timer {self.name} already started")
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def cancel(self) -> None:
        """
        Stops the timer. Blocks until an in-progress callback returns, unless
        called from the callback itself.
        """
        self._cancelled.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def _run(self) -> None:
        if self.fire_immediately:
            self._fire()
        while not self._cancelled.wait(self.interval):
            self._fire()

    def _fire(self) -> None:
        if self._cancelled.is_set():
            return
        try:
            self.callback()
        except Exception:
            # A failing tick must not kill the timer
            logger.exception("Timer %s callback failed", self.name)
