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

# RobotClientAPI.py
#
# ROS 2 transport between the fleet manager and the fleet drivers.
# - Publishes PathRequest / ModeRequest on the standard RMF topics
# - Converts incoming FleetState / LaneRequest messages into plain records
# - Publishes the fleet's closed lanes with transient local durability

from rclpy.node import Node
from rclpy.qos import QoSProfile
from rclpy.qos import QoSHistoryPolicy as History
from rclpy.qos import QoSDurabilityPolicy as Durability
from rclpy.qos import QoSReliabilityPolicy as Reliability
from rclpy.qos import qos_profile_system_default

from builtin_interfaces.msg import Time
from rmf_fleet_msgs.msg import ClosedLanes as ClosedLanesMsg
from rmf_fleet_msgs.msg import FleetState as FleetStateMsg
from rmf_fleet_msgs.msg import LaneRequest as LaneRequestMsg
from rmf_fleet_msgs.msg import Location as LocationMsg
from rmf_fleet_msgs.msg import ModeParameter as ModeParameterMsg
from rmf_fleet_msgs.msg import ModeRequest as ModeRequestMsg
from rmf_fleet_msgs.msg import PathRequest as PathRequestMsg

from . import messages
from .interfaces import CommandTransport


PATH_REQUEST_TOPIC = 'robot_path_requests'
MODE_REQUEST_TOPIC = 'robot_mode_requests'
FLEET_STATE_TOPIC = 'fleet_states'
LANE_CLOSURE_REQUEST_TOPIC = 'lane_closure_requests'
CLOSED_LANES_TOPIC = 'closed_lanes'


def to_time_msg(seconds):
    sec = int(seconds // 1)
    return Time(sec=sec, nanosec=int((seconds - sec) * 1e9))


def from_time_msg(t):
    return t.sec + t.nanosec * 1e-9


def to_location_msg(location):
    msg = LocationMsg()
    msg.t = to_time_msg(location.t)
    msg.x = float(location.x)
    msg.y = float(location.y)
    msg.yaw = float(location.yaw)
    msg.level_name = location.level_name
    if location.index is not None:
        msg.index = int(location.index)
    return msg


def from_location_msg(msg):
    return messages.Location(
        t=from_time_msg(msg.t),
        x=msg.x,
        y=msg.y,
        yaw=msg.yaw,
        level_name=msg.level_name)


def from_fleet_state_msg(msg):
    robots = []
    for state in msg.robots:
        robots.append(messages.RobotState(
            name=state.name,
            model=state.model,
            task_id=state.task_id,
            seq=state.seq,
            mode=state.mode.mode,
            battery_percent=state.battery_percent,
            location=from_location_msg(state.location),
            path=[from_location_msg(p) for p in state.path]))
    return messages.FleetState(name=msg.name, robots=robots)


class FleetDriverAPI(CommandTransport):
    def __init__(self, node: Node, fleet_name: str):
        """
        Set up the publishers used to command the fleet drivers.

        Args:
            node: ROS 2 node to publish and subscribe with
            fleet_name: Name stamped on every outgoing request
        """
        # Reuse the fleet node; do not create another one here
        self._node = node
        self._fleet_name = fleet_name

        self._path_request_pub = self._node.create_publisher(
            PathRequestMsg,
            PATH_REQUEST_TOPIC,
            qos_profile=qos_profile_system_default)

        self._mode_request_pub = self._node.create_publisher(
            ModeRequestMsg,
            MODE_REQUEST_TOPIC,
            qos_profile=qos_profile_system_default)

        transient_qos = QoSProfile(
            history=History.KEEP_LAST,
            depth=1,
            reliability=Reliability.RELIABLE,
            durability=Durability.TRANSIENT_LOCAL)

        self._closed_lanes_pub = self._node.create_publisher(
            ClosedLanesMsg,
            CLOSED_LANES_TOPIC,
            qos_profile=transient_qos)

        self._node.get_logger().info(
            f"[FleetDriverAPI] Publishing requests for fleet "
            f"[{fleet_name}] on [{PATH_REQUEST_TOPIC}] and "
            f"[{MODE_REQUEST_TOPIC}]")

    # ----------------------------------------------------------------------
    # Commands
    # ----------------------------------------------------------------------

    def send_path_command(self, robot_name, command_id, path):
        msg = PathRequestMsg()
        msg.fleet_name = self._fleet_name
        msg.robot_name = robot_name
        msg.task_id = command_id
        msg.path = [to_location_msg(location) for location in path]
        self._path_request_pub.publish(msg)

    def send_mode_command(self, robot_name, command_id, mode, parameters):
        msg = ModeRequestMsg()
        msg.fleet_name = self._fleet_name
        msg.robot_name = robot_name
        msg.task_id = command_id
        msg.mode.mode = int(mode)
        for p in parameters:
            param = ModeParameterMsg()
            param.name = p.name
            param.value = p.value
            msg.parameters.append(param)
        self._mode_request_pub.publish(msg)

    # ----------------------------------------------------------------------
    # Subscribers
    # ----------------------------------------------------------------------

    def subscribe_fleet_states(self, callback):
        """Deliver every FleetState to ``callback`` as plain records."""
        return self._node.create_subscription(
            FleetStateMsg,
            FLEET_STATE_TOPIC,
            lambda msg: callback(from_fleet_state_msg(msg)),
            qos_profile=qos_profile_system_default)

    def subscribe_lane_requests(self, callback):
        def _lane_request_cb(msg):
            callback(messages.LaneRequest(
                fleet_name=msg.fleet_name,
                open_lanes=list(msg.open_lanes),
                close_lanes=list(msg.close_lanes)))

        return self._node.create_subscription(
            LaneRequestMsg,
            LANE_CLOSURE_REQUEST_TOPIC,
            _lane_request_cb,
            qos_profile=qos_profile_system_default)

    def publish_closed_lanes(self, closed_lanes):
        msg = ClosedLanesMsg()
        msg.fleet_name = closed_lanes.fleet_name
        msg.closed_lanes = [int(lane) for lane in closed_lanes.closed_lanes]
        self._closed_lanes_pub.publish(msg)
