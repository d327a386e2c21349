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

# Plain python mirrors of the rmf_fleet_msgs types exchanged with fleet
# drivers. The core only ever sees these; RobotClientAPI converts them to and
# from the ROS messages.

import enum

from dataclasses import dataclass, field
from typing import List, Optional


class RobotMode(enum.IntEnum):
    MODE_IDLE = 0
    MODE_CHARGING = 1
    MODE_MOVING = 2
    MODE_PAUSED = 3
    MODE_WAITING = 4
    MODE_EMERGENCY = 5
    MODE_GOING_HOME = 6
    MODE_DOCKING = 7
    MODE_ADAPTER_ERROR = 8
    MODE_CLEANING = 9


@dataclass
class Location:
    # Time in seconds on the robot's clock
    t: float = 0.0
    x: float = 0.0
    y: float = 0.0
    yaw: float = 0.0
    level_name: str = ""
    # Graph index of the waypoint, if this location lies on one
    index: Optional[int] = None


@dataclass
class RobotState:
    name: str = ""
    model: str = ""
    task_id: str = ""
    seq: int = 0
    mode: int = RobotMode.MODE_IDLE
    battery_percent: float = 100.0
    location: Location = field(default_factory=Location)
    path: List[Location] = field(default_factory=list)


@dataclass
class FleetState:
    name: str = ""
    robots: List[RobotState] = field(default_factory=list)


@dataclass
class ModeParameter:
    name: str = ""
    value: str = ""


@dataclass
class PathRequest:
    fleet_name: str = ""
    robot_name: str = ""
    task_id: str = ""
    path: List[Location] = field(default_factory=list)


@dataclass
class ModeRequest:
    fleet_name: str = ""
    robot_name: str = ""
    task_id: str = ""
    mode: int = RobotMode.MODE_IDLE
    parameters: List[ModeParameter] = field(default_factory=list)


@dataclass
class LaneRequest:
    fleet_name: str = ""
    open_lanes: List[int] = field(default_factory=list)
    close_lanes: List[int] = field(default_factory=list)


@dataclass
class ClosedLanes:
    fleet_name: str = ""
    closed_lanes: List[int] = field(default_factory=list)
