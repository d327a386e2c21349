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

"""Estimate where a robot is on the navigation graph from its telemetry.

These functions are only called by RobotCommandHandle while it holds its
lock. They report their findings through the robot's updater and record
progress in the TravelInfo they are given.
"""

import math

from collections import namedtuple
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Callable, List, Optional

import numpy as np

from .nav_graph import compute_plan_starts


# Robots reporting an empty path further than this from the end of their plan
# are logged as suspicious, but the path is still considered finished.
FINISH_DISTANCE_WARNING = 2.0


@dataclass
class VehicleTraits:
    linear_velocity: float = 0.7
    linear_acceleration: float = 0.3
    angular_velocity: float = 0.5
    angular_acceleration: float = 1.5
    footprint_radius: float = 0.5
    vicinity_radius: float = 1.5
    reversible: bool = True


# Custom wrapper for the planner's waypoints so the core does not depend on
# the planner's own types.
class PlanWaypoint:
    def __init__(self, index, wp):
        # the index of the waypoint in the plan given to follow_new_path
        self.index = index
        self.position = [float(v) for v in wp.position]
        self.time = wp.time
        self.graph_index = wp.graph_index
        self.approach_lanes = list(wp.approach_lanes or [])


TrajectoryPoint = namedtuple('TrajectoryPoint', ['time', 'position'])


@dataclass
class TravelInfo:
    graph: object
    traits: VehicleTraits
    fleet_name: str
    robot_name: str
    waypoints: List[PlanWaypoint] = field(default_factory=list)
    next_arrival_estimator: Optional[Callable] = None
    path_finished_callback: Optional[Callable] = None
    updater: object = None
    target_plan_index: Optional[int] = None
    last_known_wp: Optional[int] = None
    max_merge_waypoint_distance: float = 0.1
    max_merge_lane_distance: float = 1.0


# ------------------------------------------------------------------------------
# Motion timing
# ------------------------------------------------------------------------------


def motion_duration(distance, max_velocity, acceleration):
    """Time to cover ``distance`` from rest to rest with a trapezoidal
    velocity profile."""
    distance = abs(distance)
    if distance < 1e-8:
        return 0.0
    if max_velocity <= 0.0 or acceleration <= 0.0:
        return math.inf
    ramp_distance = max_velocity * max_velocity / acceleration
    if distance >= ramp_distance:
        return distance / max_velocity + max_velocity / acceleration
    return 2.0 * math.sqrt(distance / acceleration)


def yaw_difference(a, b):
    return math.atan2(math.sin(b - a), math.cos(b - a))


def travel_duration(traits, p0, p1):
    translation = float(np.linalg.norm(
        np.array(p1[:2], dtype=float) - np.array(p0[:2], dtype=float)))
    rotation = yaw_difference(p0[2], p1[2])
    return (
        motion_duration(
            translation, traits.linear_velocity, traits.linear_acceleration)
        + motion_duration(
            rotation, traits.angular_velocity, traits.angular_acceleration))


def interpolate_positions(traits, start_time, positions):
    """Turn a list of (x, y, yaw) into timed trajectory points.

    Consecutive positions that the robot would reach instantly are merged.
    """
    trajectory = []
    t = start_time
    previous = None
    for position in positions:
        position = np.array(position, dtype=float)
        if previous is not None:
            dt = travel_duration(traits, previous, position)
            if dt <= 0.0:
                continue
            t += dt
        trajectory.append(TrajectoryPoint(t, position))
        previous = position
    return trajectory


def trajectory_offsets(trajectory):
    """Pair each point's position with its time since the first point."""
    if not trajectory:
        return []
    t0 = trajectory[0].time
    return [
        (timedelta(seconds=point.time - t0), point.position)
        for point in trajectory
    ]


# ------------------------------------------------------------------------------
# Position estimates
# ------------------------------------------------------------------------------


def _position(location):
    return [location.x, location.y, location.yaw]


def _lanes_with_reverse(graph, lane_index):
    lane = graph.get_lane(lane_index)
    lanes = [lane_index]
    reverse_lane = graph.lane_from(
        lane.exit.waypoint_index, lane.entry.waypoint_index)
    if reverse_lane is not None:
        lanes.append(reverse_lane.index)
    return lanes


def estimate_state(node, location, info: TravelInfo):
    """Place a robot that is not following one of our plans."""
    position = _position(location)
    starts = compute_plan_starts(
        info.graph,
        location.level_name,
        position,
        max_merge_waypoint_distance=info.max_merge_waypoint_distance,
        max_merge_lane_distance=info.max_merge_lane_distance)

    if starts:
        start = starts[0]
        if start.lane is not None:
            info.updater.update_current_lanes(
                position, _lanes_with_reverse(info.graph, start.lane))
        else:
            info.last_known_wp = start.waypoint
            info.updater.update_current_waypoint(start.waypoint, location.yaw)
        return

    if info.last_known_wp is not None:
        info.updater.update_off_grid_position(position, info.last_known_wp)
        return

    node.get_logger().warning(
        f"Robot [{info.robot_name}] of fleet [{info.fleet_name}] is not near "
        f"the navigation graph of map [{location.level_name}] at "
        f"[{location.x:.2f}, {location.y:.2f}]")
    info.updater.update_lost_position(
        location.level_name,
        position,
        info.max_merge_waypoint_distance,
        info.max_merge_lane_distance)


def estimate_waypoint(node, location, info: TravelInfo, waypoint_index):
    """Snap the robot's estimate onto a known graph waypoint."""
    wp = info.graph.get_waypoint(waypoint_index)
    dist = float(np.linalg.norm(
        np.array(wp.location) - np.array([location.x, location.y])))
    if dist > info.max_merge_lane_distance:
        node.get_logger().debug(
            f"Robot [{info.robot_name}] is [{dist:.2f}m] away from waypoint "
            f"[{info.graph.waypoint_name(waypoint_index)}] that it is being "
            f"placed on")
    info.last_known_wp = waypoint_index
    info.updater.update_current_waypoint(waypoint_index, location.yaw)


def estimate_path_traveling(node, state, info: TravelInfo):
    """Track a robot that is partway through its commanded path.

    The robot reports the part of the path it still has to travel, so the
    waypoint it is heading for is the one that leaves exactly that many
    waypoints in the plan.
    """
    assert state.path
    if not info.waypoints:
        # Nothing to track progress against
        estimate_state(node, state.location, info)
        return

    remaining_count = len(state.path)
    i_target_wp = len(info.waypoints) - remaining_count
    if i_target_wp < 0:
        node.get_logger().debug(
            f"Robot [{info.robot_name}] reports [{remaining_count}] remaining "
            f"waypoints but the plan only has [{len(info.waypoints)}]")
        i_target_wp = 0
    i_target_wp = min(i_target_wp, len(info.waypoints) - 1)

    info.target_plan_index = i_target_wp
    target_wp = info.waypoints[i_target_wp]
    location = state.location
    position = _position(location)

    if target_wp.approach_lanes:
        info.updater.update_current_lanes(
            position, list(target_wp.approach_lanes))
    elif target_wp.graph_index is not None:
        dist = float(np.linalg.norm(
            np.array(target_wp.position[:2]) - np.array(position[:2])))
        if dist <= info.max_merge_waypoint_distance:
            # Turning on the spot at the waypoint
            info.last_known_wp = target_wp.graph_index
            info.updater.update_current_waypoint(
                target_wp.graph_index, location.yaw)
        else:
            info.updater.update_off_grid_position(
                position, target_wp.graph_index)
    else:
        estimate_state(node, location, info)

    if info.next_arrival_estimator is not None:
        remaining = travel_duration(info.traits, position, target_wp.position)
        info.next_arrival_estimator(
            target_wp.index, timedelta(seconds=remaining))


def check_path_finish(node, state, info: TravelInfo):
    """The robot believes it has reached the end of its path."""
    callback = info.path_finished_callback
    assert callback is not None
    location = state.location

    if info.waypoints:
        final_wp = info.waypoints[-1]
        dist = float(np.linalg.norm(
            np.array(final_wp.position[:2])
            - np.array([location.x, location.y])))
        if dist > FINISH_DISTANCE_WARNING:
            node.get_logger().warning(
                f"Robot [{info.robot_name}] of fleet [{info.fleet_name}] "
                f"reports that it finished its path but it is [{dist:.2f}m] "
                f"away from the final waypoint")
            estimate_state(node, location, info)
        elif final_wp.graph_index is not None:
            estimate_waypoint(node, location, info, final_wp.graph_index)
        else:
            estimate_state(node, location, info)
    else:
        estimate_state(node, location, info)

    # Detach before calling so a new command issued by the callback survives
    info.path_finished_callback = None
    info.next_arrival_estimator = None
    callback()
