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

"""Contracts of the collaborators the command handles talk to.

The ROS implementations live in RobotClientAPI (transport) and fleet_adapter
(planner bridge on top of rmf_adapter).
"""

from abc import ABC, abstractmethod


class CommandTransport(ABC):
    """Fire-and-forget delivery of commands to fleet drivers.

    Delivery is only ever confirmed by the robot echoing the command id back
    in its telemetry.
    """

    @abstractmethod
    def send_path_command(self, robot_name, command_id, path):
        """Send a list of Locations for the robot to follow."""

    @abstractmethod
    def send_mode_command(self, robot_name, command_id, mode, parameters):
        """Ask the robot to switch into ``mode`` with ModeParameters."""


class ScheduleParticipant(ABC):
    @abstractmethod
    def set_route(self, map_name, trajectory):
        """Replace the participant's itinerary with a single route."""


class RobotUpdater(ABC):
    """Planner-side handle for reporting the state of one robot."""

    @abstractmethod
    def interrupted(self):
        """The robot can no longer follow its plan and needs a new one."""

    @abstractmethod
    def update_battery_soc(self, battery_soc):
        pass

    @abstractmethod
    def update_current_waypoint(self, waypoint_index, orientation):
        pass

    @abstractmethod
    def update_current_lanes(self, position, lanes):
        """Robot is at ``position`` travelling along one of ``lanes``."""

    @abstractmethod
    def update_off_grid_position(self, position, target_waypoint):
        """Robot is off the graph, heading for ``target_waypoint``."""

    @abstractmethod
    def update_lost_position(self, map_name, position,
                             max_merge_waypoint_distance,
                             max_merge_lane_distance):
        pass

    def get_participant(self):
        """ScheduleParticipant for the robot, or None if not registered."""
        return None


class FleetPlanner(ABC):
    @abstractmethod
    def add_robot(self, command_handle, robot_name, starts, ready_callback):
        """Register a robot; call ``ready_callback(updater)`` once added."""

    @abstractmethod
    def open_lanes(self, lanes):
        pass

    @abstractmethod
    def close_lanes(self, lanes):
        pass
