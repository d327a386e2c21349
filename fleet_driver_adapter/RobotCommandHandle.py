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

import threading
import datetime
import enum
import time

from .estimation import PlanWaypoint
from .estimation import TravelInfo
from .estimation import check_path_finish
from .estimation import estimate_path_traveling
from .estimation import estimate_state
from .estimation import estimate_waypoint
from .estimation import interpolate_positions
from .messages import Location
from .messages import ModeParameter
from .messages import ModeRequest
from .messages import PathRequest
from .messages import RobotMode
from .nav_graph import lane_projection


# Resend a command if the robot has not echoed its id back within this long
PATH_RESEND_PERIOD = 0.2
# Minimum time between docking trajectories pushed to the traffic schedule
DOCK_SCHEDULE_PERIOD = 1.0


class CommandState(enum.IntEnum):
    IDLE = 0
    FOLLOWING = 1
    DOCKING = 2
    INTERRUPTED = 3


class DockNotFoundError(LookupError):
    """No lane of the navigation graph docks into the requested dock."""


def _time_in_seconds(t):
    """Seconds for the Location.t field of a path request.

    Accepts a number of seconds, a timedelta, or a datetime. Naive datetimes
    are taken to be UTC, never local time.
    """
    if t is None:
        return 0.0
    if isinstance(t, datetime.timedelta):
        return t.total_seconds()
    if isinstance(t, datetime.datetime):
        if t.tzinfo is None:
            t = t.replace(tzinfo=datetime.timezone.utc)
        return t.timestamp()
    return float(t)


class RobotCommandHandle:
    """Drives one robot of a fleet driver through the planner's commands.

    Every public method holds the handle's lock for its whole duration, so a
    telemetry update racing with a new command sees either the old command
    or the new one, never a mix of both.
    """

    def __init__(self,
                 node,
                 fleet_name,
                 robot_name,
                 graph,
                 traits,
                 transport,
                 path_resend_period=PATH_RESEND_PERIOD,
                 dock_schedule_period=DOCK_SCHEDULE_PERIOD,
                 lane_merge_distance=1.0,
                 waypoint_merge_distance=0.1,
                 clock=time.monotonic):
        self.node = node
        self.name = robot_name
        self.fleet_name = fleet_name
        self.graph = graph
        self.traits = traits
        self.transport = transport
        self.path_resend_period = path_resend_period
        self.dock_schedule_period = dock_schedule_period
        self._clock = clock

        self._travel_info = TravelInfo(
            graph=graph,
            traits=traits,
            fleet_name=fleet_name,
            robot_name=robot_name,
            max_merge_waypoint_distance=waypoint_merge_distance,
            max_merge_lane_distance=lane_merge_distance)

        self._current_path_request = PathRequest(
            fleet_name=fleet_name, robot_name=robot_name)
        self._path_requested_time = None

        self._current_dock_request = ModeRequest(
            fleet_name=fleet_name,
            robot_name=robot_name,
            mode=RobotMode.MODE_DOCKING,
            parameters=[ModeParameter(name="docking")])
        # The graph index of the waypoint the robot is currently docking into
        self._dock_target_wp = None
        self._dock_requested_time = None
        self._dock_schedule_time = None
        self._dock_finished_callback = None

        self._last_known_state = None
        self._interrupted = False
        self.current_cmd_id = 0

        # Planner callbacks invoked while the lock is held may come straight
        # back in with a new command.
        self._lock = threading.RLock()

    # --------------------------------------------------------------------------
    # Utility helpers
    # --------------------------------------------------------------------------

    def set_updater(self, updater):
        with self._lock:
            self._travel_info.updater = updater

    @property
    def updater(self):
        return self._travel_info.updater

    @property
    def last_known_state(self):
        return self._last_known_state

    @property
    def target_plan_index(self):
        return self._travel_info.target_plan_index

    @property
    def command_state(self):
        with self._lock:
            if self._travel_info.path_finished_callback is not None:
                if self._interrupted:
                    return CommandState.INTERRUPTED
                return CommandState.FOLLOWING
            if self._dock_finished_callback is not None:
                return CommandState.DOCKING
            return CommandState.IDLE

    def next_cmd_id(self):
        self.current_cmd_id = self.current_cmd_id + 1
        return self.current_cmd_id

    def clear(self):
        """Forget the callbacks of whatever command was outstanding."""
        self._travel_info.next_arrival_estimator = None
        self._travel_info.path_finished_callback = None
        self._dock_finished_callback = None

    def _send_path_request(self):
        request = self._current_path_request
        self.transport.send_path_command(
            self.name, request.task_id, list(request.path))

    def _send_dock_request(self):
        request = self._current_dock_request
        # dock() rewrites the stored parameters in place
        parameters = [
            ModeParameter(name=p.name, value=p.value)
            for p in request.parameters]
        self.transport.send_mode_command(
            self.name, request.task_id, request.mode, parameters)

    # --------------------------------------------------------------------------
    # Commands
    # --------------------------------------------------------------------------

    def follow_new_path(self,
                        waypoints,
                        next_arrival_estimator,
                        path_finished_callback):
        assert path_finished_callback is not None
        with self._lock:
            self.clear()

            info = self._travel_info
            info.target_plan_index = None
            info.waypoints = [
                PlanWaypoint(i, wp) for i, wp in enumerate(waypoints)]
            info.next_arrival_estimator = next_arrival_estimator
            info.path_finished_callback = path_finished_callback
            self._interrupted = False

            path = []
            for wp in info.waypoints:
                # Off-graph waypoints have no level
                level_name = ""
                if wp.graph_index is not None:
                    level_name = \
                        self.graph.get_waypoint(wp.graph_index).map_name
                path.append(Location(
                    t=_time_in_seconds(wp.time),
                    x=wp.position[0],
                    y=wp.position[1],
                    yaw=wp.position[2],
                    level_name=level_name,
                    index=wp.graph_index))

            self._current_path_request.task_id = str(self.next_cmd_id())
            self._current_path_request.path = path

            self.node.get_logger().info(
                f"Requesting robot [{self.name}] of [{self.fleet_name}] to "
                f"follow a path of [{len(path)}] waypoints with task_id "
                f"[{self._current_path_request.task_id}]")

            self._path_requested_time = self._clock()
            self._send_path_request()

    def dock(self, dock_name, docking_finished_callback):
        assert docking_finished_callback is not None
        with self._lock:
            dock_target_wp = self.graph.find_dock_waypoint(dock_name)
            if dock_target_wp is None:
                self.node.get_logger().error(
                    f"Robot [{self.name}] of [{self.fleet_name}] was asked to "
                    f"dock into [{dock_name}] but no lane of the navigation "
                    f"graph docks there")
                raise DockNotFoundError(
                    f"No lane in the navigation graph docks into "
                    f"[{dock_name}]")

            self.clear()
            self._dock_target_wp = dock_target_wp
            self._dock_finished_callback = docking_finished_callback
            self._current_dock_request.parameters[0].value = dock_name
            self._current_dock_request.task_id = str(self.next_cmd_id())

            self._dock_requested_time = self._clock()
            self._send_dock_request()

            self.node.get_logger().info(
                f"Requesting robot [{self.name}] of [{self.fleet_name}] to "
                f"dock into waypoint "
                f"[{self.graph.waypoint_name(dock_target_wp)}]")

    # --------------------------------------------------------------------------
    # Telemetry
    # --------------------------------------------------------------------------

    def update_state(self, state):
        with self._lock:
            self._last_known_state = state
            info = self._travel_info
            if info.updater is None:
                # The planner has not finished adding this robot yet
                return

            battery_soc = state.battery_percent / 100.0
            if 0.0 <= battery_soc <= 1.0:
                info.updater.update_battery_soc(battery_soc)
            else:
                self.node.get_logger().error(
                    f"Battery percentage [{state.battery_percent}] reported "
                    f"by robot [{self.name}] is outside of the valid range "
                    f"[0,100] and hence the battery soc will not be updated")

            # Filled in again by the estimation functions as necessary
            info.target_plan_index = None

            if info.path_finished_callback is not None:
                self._update_following(state)
            elif self._dock_finished_callback is not None:
                self._update_docking(state)
            else:
                # The robot is not under our command
                estimate_state(self.node, state.location, info)

    def _update_following(self, state):
        info = self._travel_info
        assert self._dock_finished_callback is None

        if state.task_id != self._current_path_request.task_id:
            # The robot has not received our path request yet
            now = self._clock()
            if now - self._path_requested_time > self.path_resend_period:
                self.node.get_logger().debug(
                    f"Resending path request "
                    f"[{self._current_path_request.task_id}] to robot "
                    f"[{self.name}]")
                self._path_requested_time = now
                self._send_path_request()
            estimate_state(self.node, state.location, info)
            return

        if state.mode == RobotMode.MODE_ADAPTER_ERROR:
            if self._interrupted:
                # This interruption was already noticed
                return
            self.node.get_logger().info(
                f"Fleet driver [{self.fleet_name}] reported interruption "
                f"for [{self.name}]")
            self._interrupted = True
            estimate_state(self.node, state.location, info)
            info.updater.interrupted()
            return

        if not state.path:
            check_path_finish(self.node, state, info)
            self.node.get_logger().info(
                f"Robot [{self.name}] has finished the path of task_id "
                f"[{self._current_path_request.task_id}]")
            return

        estimate_path_traveling(self.node, state, info)

    def _update_docking(self, state):
        info = self._travel_info
        now = self._clock()

        if state.task_id != self._current_dock_request.task_id:
            if now - self._dock_requested_time > self.path_resend_period:
                self._dock_requested_time = now
                self._send_dock_request()
            return

        if state.mode != RobotMode.MODE_DOCKING:
            estimate_waypoint(
                self.node, state.location, info, self._dock_target_wp)
            callback = self._dock_finished_callback
            self._dock_finished_callback = None
            self.node.get_logger().info(
                f"Robot [{self.name}] has completed docking")
            callback()
            return

        # Update the schedule with the docking path of the robot
        if not state.path:
            return
        if self._dock_schedule_time is not None and \
                now - self._dock_schedule_time < self.dock_schedule_period:
            return

        location = state.location
        positions = [[location.x, location.y, location.yaw]]
        for p in state.path:
            positions.append([p.x, p.y, p.yaw])
        trajectory = interpolate_positions(self.traits, location.t, positions)
        if len(trajectory) < 2:
            return

        participant = info.updater.get_participant()
        if participant is not None:
            participant.set_route(location.level_name, trajectory)
            self._dock_schedule_time = now

    # --------------------------------------------------------------------------
    # Lane closures
    # --------------------------------------------------------------------------

    def newly_closed_lanes(self, closed_lanes):
        closed_lanes = set(closed_lanes)
        with self._lock:
            info = self._travel_info
            if info.updater is None:
                return
            need_to_replan = False

            if info.target_plan_index is not None:
                target_wp = info.waypoints[info.target_plan_index]
                for lane_index in target_wp.approach_lanes:
                    if lane_index not in closed_lanes:
                        continue
                    need_to_replan = True
                    if self._last_known_state is not None:
                        self._reverse_off_lane(lane_index)

            if not need_to_replan and info.target_plan_index is not None:
                # Check if the remainder of the current plan has been
                # invalidated by the lane closure.
                for wp in info.waypoints[info.target_plan_index:]:
                    if any(lane in closed_lanes for lane in wp.approach_lanes):
                        need_to_replan = True
                        break

            if need_to_replan:
                self.node.get_logger().info(
                    f"Requesting replan for [{self.name}] because of a lane "
                    f"closure")
                info.updater.interrupted()

    def _reverse_off_lane(self, lane_index):
        lane = self.graph.get_lane(lane_index)
        loc = self._last_known_state.location
        # Exactly on an endpoint counts as past the lane
        t = lane_projection(self.graph, lane, [loc.x, loc.y])
        if t <= 0.0 or t >= 1.0:
            return

        # The robot is on a lane that has been closed, so it needs to reverse
        position = [loc.x, loc.y, loc.yaw]
        return_waypoint = lane.entry.waypoint_index
        reverse_lane = self.graph.lane_from(
            lane.exit.waypoint_index, lane.entry.waypoint_index)
        if reverse_lane is not None:
            self._travel_info.updater.update_current_lanes(
                position, [reverse_lane.index])
        else:
            self._travel_info.updater.update_off_grid_position(
                position, return_waypoint)
