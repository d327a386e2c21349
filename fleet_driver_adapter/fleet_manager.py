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

"""Registry of the robots of one fleet and the fleet's closed lanes.

Robots are created the first time they show up in a fleet state and are
never removed; a robot that goes quiet simply stops receiving updates.
"""

import threading
import time

from .messages import ClosedLanes
from .nav_graph import compute_plan_starts
from .nav_graph import describe_distance
from .nav_graph import distance_from_graph
from .RobotCommandHandle import RobotCommandHandle


class FleetManager:
    def __init__(self,
                 node,
                 fleet_name,
                 graph,
                 traits,
                 transport,
                 planner,
                 config=None,
                 clock=time.monotonic):
        self.node = node
        self.fleet_name = fleet_name
        self.graph = graph
        self.traits = traits
        self.transport = transport
        self.planner = planner
        self.config = config
        self._clock = clock

        # robot_name -> RobotCommandHandle, or None while the planner is
        # still adding the robot
        self.robots = {}
        self.closed_lanes = set()
        # Robots whose last sighting could not be placed on the graph
        self._unplaced = set()
        self._lock = threading.Lock()

    def _command_handle_options(self):
        if self.config is None:
            return {}
        return {
            'path_resend_period': self.config.path_resend_period,
            'dock_schedule_period': self.config.dock_schedule_period,
            'lane_merge_distance': self.config.lane_merge_distance,
            'waypoint_merge_distance': self.config.waypoint_merge_distance,
        }

    def _merge_distances(self):
        if self.config is None:
            return 0.1, 1.0
        return (self.config.waypoint_merge_distance,
                self.config.lane_merge_distance)

    def get_robot(self, robot_name):
        with self._lock:
            return self.robots.get(robot_name)

    # --------------------------------------------------------------------------
    # Fleet states
    # --------------------------------------------------------------------------

    def handle_fleet_state(self, fleet_state):
        if fleet_state.name != self.fleet_name:
            return

        for state in fleet_state.robots:
            with self._lock:
                new_robot = state.name not in self.robots
                if new_robot:
                    # Reserve the name so a second fleet state arriving while
                    # the planner adds the robot does not add it twice.
                    self.robots[state.name] = None
                command = self.robots[state.name]

            if new_robot:
                self.add_robot(state)
            elif command is not None:
                command.update_state(state)

    def add_robot(self, state):
        robot_name = state.name
        loc = state.location
        waypoint_distance, lane_distance = self._merge_distances()
        starts = compute_plan_starts(
            self.graph, loc.level_name, [loc.x, loc.y, loc.yaw],
            max_merge_waypoint_distance=waypoint_distance,
            max_merge_lane_distance=lane_distance)

        if not starts:
            with self._lock:
                # Try again on the next sighting
                del self.robots[robot_name]
                already_reported = robot_name in self._unplaced
                self._unplaced.add(robot_name)
            if not already_reported:
                distance = distance_from_graph(
                    self.graph, loc.level_name, [loc.x, loc.y])
                hint = describe_distance(
                    self.graph, loc.level_name, distance)
                self.node.get_logger().error(
                    f"Unable to compute a StartSet for robot [{robot_name}] "
                    f"using level_name [{loc.level_name}] and location "
                    f"[{loc.x:.6f}, {loc.y:.6f}, {loc.yaw:.6f}] specified in "
                    f"its RobotState message. This robot will not be added to "
                    f"the fleet [{self.fleet_name}] until it is near the "
                    f"navigation graph. The following hint may help with "
                    f"debugging: {hint}")
            return

        with self._lock:
            self._unplaced.discard(robot_name)

        command = RobotCommandHandle(
            self.node,
            self.fleet_name,
            robot_name,
            self.graph,
            self.traits,
            self.transport,
            clock=self._clock,
            **self._command_handle_options())

        def _ready(updater):
            command.set_updater(updater)
            with self._lock:
                self.robots[robot_name] = command
            self.node.get_logger().info(
                f"Successfully added new robot: {robot_name}")

        self.planner.add_robot(command, robot_name, starts, _ready)

    # --------------------------------------------------------------------------
    # Lane closures
    # --------------------------------------------------------------------------

    def handle_lane_request(self, request):
        """Apply a lane request and return the resulting ClosedLanes, or
        None if the request is for another fleet."""
        if request.fleet_name and request.fleet_name != self.fleet_name:
            return None

        self.planner.open_lanes(list(request.open_lanes))
        self.planner.close_lanes(list(request.close_lanes))

        with self._lock:
            newly_closed_lanes = set()
            for lane in request.close_lanes:
                if lane not in self.closed_lanes:
                    newly_closed_lanes.add(lane)
                self.closed_lanes.add(lane)

            for lane in request.open_lanes:
                self.closed_lanes.discard(lane)

            robots = [r for r in self.robots.values() if r is not None]
            closed_lanes = sorted(self.closed_lanes)

        if newly_closed_lanes:
            self.node.get_logger().info(
                f"Newly closed lanes for fleet [{self.fleet_name}]: "
                f"{sorted(newly_closed_lanes)}")
            for robot in robots:
                robot.newly_closed_lanes(newly_closed_lanes)

        return ClosedLanes(fleet_name=self.fleet_name,
                           closed_lanes=closed_lanes)
