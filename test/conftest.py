# Copyright 2021 Open Source Robotics Foundation, Inc.
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

import logging

from collections import namedtuple

import pytest

from fleet_driver_adapter.estimation import VehicleTraits
from fleet_driver_adapter.interfaces import CommandTransport
from fleet_driver_adapter.interfaces import FleetPlanner
from fleet_driver_adapter.interfaces import RobotUpdater
from fleet_driver_adapter.interfaces import ScheduleParticipant
from fleet_driver_adapter.messages import Location
from fleet_driver_adapter.messages import RobotMode
from fleet_driver_adapter.messages import RobotState
from fleet_driver_adapter.nav_graph import Dock
from fleet_driver_adapter.nav_graph import NavigationGraph
from fleet_driver_adapter.RobotCommandHandle import RobotCommandHandle


MAP = "L1"

# Stand-in for the waypoints the planner hands to follow_new_path
PlanWp = namedtuple(
    'PlanWp', ['position', 'time', 'graph_index', 'approach_lanes'])


# ------------------------------------------------------------------------------
# Fakes
# ------------------------------------------------------------------------------


class FakeNode:
    def __init__(self):
        self._logger = logging.getLogger("fleet_driver_adapter.test")

    def get_logger(self):
        return self._logger


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, dt):
        self.now += dt


class FakeTransport(CommandTransport):
    def __init__(self):
        self.paths = []
        self.modes = []

    def send_path_command(self, robot_name, command_id, path):
        self.paths.append((robot_name, command_id, path))

    def send_mode_command(self, robot_name, command_id, mode, parameters):
        self.modes.append((robot_name, command_id, mode, parameters))


class FakeParticipant(ScheduleParticipant):
    def __init__(self):
        self.routes = []

    def set_route(self, map_name, trajectory):
        self.routes.append((map_name, trajectory))


class FakeUpdater(RobotUpdater):
    def __init__(self):
        self.calls = []
        self.participant = FakeParticipant()

    def calls_to(self, name):
        return [args for call, args in self.calls if call == name]

    def interrupted(self):
        self.calls.append(('interrupted', ()))

    def update_battery_soc(self, battery_soc):
        self.calls.append(('update_battery_soc', (battery_soc,)))

    def update_current_waypoint(self, waypoint_index, orientation):
        self.calls.append(
            ('update_current_waypoint', (waypoint_index, orientation)))

    def update_current_lanes(self, position, lanes):
        self.calls.append(
            ('update_current_lanes', (list(position), list(lanes))))

    def update_off_grid_position(self, position, target_waypoint):
        self.calls.append(
            ('update_off_grid_position', (list(position), target_waypoint)))

    def update_lost_position(self, map_name, position,
                             max_merge_waypoint_distance,
                             max_merge_lane_distance):
        self.calls.append(('update_lost_position', (map_name, list(position))))

    def get_participant(self):
        return self.participant


class FakePlanner(FleetPlanner):
    def __init__(self, auto_ready=True):
        self.auto_ready = auto_ready
        self.added = []
        self.pending = {}
        self.updaters = {}
        self.opened = []
        self.closed = []

    def add_robot(self, command_handle, robot_name, starts, ready_callback):
        self.added.append((robot_name, starts))
        if self.auto_ready:
            self.ready(robot_name, ready_callback)
        else:
            self.pending[robot_name] = ready_callback

    def ready(self, robot_name, ready_callback=None):
        if ready_callback is None:
            ready_callback = self.pending.pop(robot_name)
        updater = FakeUpdater()
        self.updaters[robot_name] = updater
        ready_callback(updater)

    def open_lanes(self, lanes):
        self.opened.append(list(lanes))

    def close_lanes(self, lanes):
        self.closed.append(list(lanes))


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------


def make_state(task_id="", x=0.0, y=0.0, yaw=0.0, path=(),
               mode=RobotMode.MODE_MOVING, battery_percent=100.0,
               name="robot1", level_name=MAP):
    return RobotState(
        name=name,
        model="tinyRobot",
        task_id=task_id,
        mode=mode,
        battery_percent=battery_percent,
        location=Location(t=0.0, x=x, y=y, yaw=yaw, level_name=level_name),
        path=[Location(x=p[0], y=p[1], level_name=level_name) for p in path])


# ------------------------------------------------------------------------------
# Fixtures
# ------------------------------------------------------------------------------


@pytest.fixture
def node():
    return FakeNode()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def updater():
    return FakeUpdater()


@pytest.fixture
def traits():
    return VehicleTraits()


@pytest.fixture
def one_way_graph():
    # A --> B
    graph = NavigationGraph()
    graph.add_waypoint(MAP, (0.0, 0.0), name="A")
    graph.add_waypoint(MAP, (10.0, 0.0), name="B")
    graph.add_lane(0, 1)
    return graph


@pytest.fixture
def two_way_graph():
    # A <-> B, lane 0 is A->B and lane 1 is B->A
    graph = NavigationGraph()
    graph.add_waypoint(MAP, (0.0, 0.0), name="A")
    graph.add_waypoint(MAP, (10.0, 0.0), name="B")
    graph.add_lane(0, 1)
    graph.add_lane(1, 0)
    return graph


@pytest.fixture
def corridor_graph():
    # A <-> B <-> C with the forward lanes first
    graph = NavigationGraph()
    graph.add_waypoint(MAP, (0.0, 0.0), name="A")
    graph.add_waypoint(MAP, (10.0, 0.0), name="B")
    graph.add_waypoint(MAP, (20.0, 0.0), name="C")
    graph.add_lane(0, 1)
    graph.add_lane(1, 2)
    graph.add_lane(1, 0)
    graph.add_lane(2, 1)
    return graph


@pytest.fixture
def dock_graph():
    # The lane from "charger_entry" into "charger_spot" docks into "charger"
    graph = NavigationGraph()
    graph.add_waypoint(MAP, (0.0, 0.0), name="charger_entry")
    graph.add_waypoint(MAP, (2.0, 0.0), name="charger_spot",
                       is_charger=True)
    graph.add_lane(0, 1, entry_event=Dock("charger"))
    graph.add_lane(1, 0)
    return graph


@pytest.fixture
def make_handle(node, traits, transport, clock, updater):
    def _make_handle(graph, **kwargs):
        handle = RobotCommandHandle(
            node, "tinyRobot", "robot1", graph, traits, transport,
            clock=clock, **kwargs)
        handle.set_updater(updater)
        return handle
    return _make_handle
