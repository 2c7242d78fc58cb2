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
Unit tests for interval timers and display helpers.
"""
import threading

import pytest

from dockpit.UTILS.formatting import format_bytes, format_table, format_timestamp
from dockpit.UTILS.interval_timer import IntervalTimer

from conftest import wait_until


class TestIntervalTimer:
    """Tests for IntervalTimer."""

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValueError):
            IntervalTimer(0, lambda: None)

    def test_ticks_until_cancelled(self):
        ticks = []
        timer = IntervalTimer(0.01, lambda: ticks.append(1), name="test-ticks")
        timer.start()
        assert timer.active
        assert wait_until(lambda: len(ticks) >= 3)
        timer.cancel()
        assert not timer.active
        count = len(ticks)
        threading.Event().wait(0.05)
        assert len(ticks) == count

    def test_fire_immediately(self):
        fired = threading.Event()
        timer = IntervalTimer(60, fired.set, fire_immediately=True)
        timer.start()
        assert fired.wait(1)
        timer.cancel()

    def test_waits_a_full_interval_by_default(self):
        fired = threading.Event()
        timer = IntervalTimer(60, fired.set)
        timer.start()
        assert not fired.wait(0.05)
        timer.cancel()

    def test_cancel_waits_for_running_callback(self):
        entered = threading.Event()
        finished = []

        def slow():
            entered.set()
            threading.Event().wait(0.1)
            finished.append(True)

        timer = IntervalTimer(60, slow, fire_immediately=True)
        timer.start()
        assert entered.wait(1)
        timer.cancel()
        assert finished == [True]

    def test_cancel_from_callback(self):
        holder = {}
        ticks = []

        def once():
            ticks.append(1)
            holder["timer"].cancel()

        holder["timer"] = IntervalTimer(0.01, once)
        holder["timer"].start()
        assert wait_until(lambda: ticks == [1])
        threading.Event().wait(0.05)
        assert ticks == [1]

    def test_failing_callback_keeps_ticking(self):
        ticks = []

        def flaky():
            ticks.append(1)
            raise RuntimeError("tick failed")

        timer = IntervalTimer(0.01, flaky)
        timer.start()
        assert wait_until(lambda: len(ticks) >= 2)
        timer.cancel()

    def test_cancel_before_start(self):
        timer = IntervalTimer(1, lambda: None)
        timer.cancel()
        assert not timer.active

    def test_double_start(self):
        timer = IntervalTimer(60, lambda: None)
        timer.start()
        with pytest.raises(RuntimeError):
            timer.start()
        timer.cancel()


@pytest.mark.parametrize("size, expected", [
    (0, "0 B"),
    (512, "512.00 B"),
    (1536, "1.50 KB"),
    (1024 ** 2 * 5, "5.00 MB"),
    (int(1024 ** 3 * 1.25), "1.25 GB"),
    (1024 ** 5, "1024.00 TB"),
])
def test_format_bytes(size, expected):
    assert format_bytes(size) == expected


def test_format_timestamp():
    assert format_timestamp(0) == "1970-01-01 00:00:00"
    assert format_timestamp(1700000000) == "2023-11-14 22:13:20"


def test_format_table():
    table = format_table(["ID", "NAME"], [["abc", "web"], ["d", "database"]])
    assert table.splitlines() == [
        "ID   NAME",
        "-------------",
        "abc  web",
        "d    database",
    ]
