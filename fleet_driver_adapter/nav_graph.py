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

"""Read-only navigation graph shared by every robot of a fleet.

The graph is built once (usually by ``parse_graph``) and never mutated
afterwards, so command handles can query it from any thread without locking.
"""

import enum
import math

from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import numpy as np
import yaml


# ------------------------------------------------------------------------------
# Lane actions
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class Dock:
    dock_name: str
    duration: float = 0.0


@dataclass(frozen=True)
class DoorOpen:
    name: str
    duration: float = 0.0


@dataclass(frozen=True)
class DoorClose:
    name: str
    duration: float = 0.0


@dataclass(frozen=True)
class LiftSessionBegin:
    lift_name: str
    floor_name: str


@dataclass(frozen=True)
class LiftMove:
    lift_name: str
    floor_name: str


@dataclass(frozen=True)
class LiftDoorOpen:
    lift_name: str
    floor_name: str


@dataclass(frozen=True)
class LiftSessionEnd:
    lift_name: str
    floor_name: str


# Every action a lane entry or exit may carry. A lane without an action
# simply holds None.
LANE_ACTIONS = (
    Dock,
    DoorOpen,
    DoorClose,
    LiftSessionBegin,
    LiftMove,
    LiftDoorOpen,
    LiftSessionEnd,
)


# ------------------------------------------------------------------------------
# Graph elements
# ------------------------------------------------------------------------------


@dataclass(frozen=True)
class Waypoint:
    index: int
    map_name: str
    location: Tuple[float, float]
    name: Optional[str] = None
    is_charger: bool = False


@dataclass(frozen=True)
class LaneNode:
    waypoint_index: int
    event: Optional[object] = None


@dataclass(frozen=True)
class Lane:
    index: int
    entry: LaneNode
    exit: LaneNode
    speed_limit: Optional[float] = None


class DistanceType(enum.IntEnum):
    WAYPOINT = 0
    LANE = 1


@dataclass(frozen=True)
class DistanceFromGraph:
    value: float
    index: int
    type: DistanceType


@dataclass(frozen=True)
class Start:
    """A place on the graph where a robot can begin a plan.

    ``lane`` is set when the robot is partway along a lane, in which case
    ``waypoint`` is the exit of that lane.
    """
    waypoint: int
    orientation: float
    lane: Optional[int] = None
    location: Optional[Tuple[float, float]] = None


class NavigationGraph:
    def __init__(self):
        self._waypoints: List[Waypoint] = []
        self._lanes: List[Lane] = []
        self._lane_lookup: Dict[Tuple[int, int], Lane] = {}
        self.keys: Dict[str, int] = {}

    # --------------------------------------------------------------------------
    # Construction
    # --------------------------------------------------------------------------

    def add_waypoint(self, map_name, location, name=None, is_charger=False):
        wp = Waypoint(
            index=len(self._waypoints),
            map_name=map_name,
            location=(float(location[0]), float(location[1])),
            name=name,
            is_charger=is_charger)
        self._waypoints.append(wp)
        if name:
            self.keys[name] = wp.index
        return wp

    def add_lane(self, entry, exit, entry_event=None, exit_event=None,
                 speed_limit=None):
        for wp_index in (entry, exit):
            if wp_index < 0 or wp_index >= len(self._waypoints):
                raise IndexError(
                    f"Lane refers to waypoint [{wp_index}] but the graph "
                    f"only has [{len(self._waypoints)}] waypoints")
        lane = Lane(
            index=len(self._lanes),
            entry=LaneNode(entry, entry_event),
            exit=LaneNode(exit, exit_event),
            speed_limit=speed_limit)
        self._lanes.append(lane)
        # The first lane between two waypoints wins lookups
        self._lane_lookup.setdefault((entry, exit), lane)
        return lane

    # --------------------------------------------------------------------------
    # Lookups
    # --------------------------------------------------------------------------

    @property
    def num_waypoints(self):
        return len(self._waypoints)

    @property
    def num_lanes(self):
        return len(self._lanes)

    def waypoint_count(self):
        return len(self._waypoints)

    def lane_count(self):
        return len(self._lanes)

    def get_waypoint(self, index) -> Waypoint:
        return self._waypoints[index]

    def get_lane(self, index) -> Lane:
        return self._lanes[index]

    def lane_from(self, entry_index, exit_index) -> Optional[Lane]:
        return self._lane_lookup.get((entry_index, exit_index))

    def find_waypoint(self, key) -> Optional[Waypoint]:
        index = self.keys.get(key)
        if index is None:
            return None
        return self._waypoints[index]

    def waypoint_name(self, index):
        wp = self._waypoints[index]
        if wp.name:
            return wp.name
        return f"#{index}"

    def find_dock_waypoint(self, dock_name) -> Optional[int]:
        """Entry waypoint of the first lane that docks into ``dock_name``."""
        for lane in self._lanes:
            if is_dock_event(lane.entry.event, dock_name):
                return lane.entry.waypoint_index
        return None


def is_dock_event(event, dock_name):
    if event is None:
        return False
    if isinstance(event, Dock):
        return event.dock_name == dock_name
    if isinstance(event, LANE_ACTIONS):
        return False
    raise TypeError(f"Unknown lane action type [{type(event).__name__}]")


# ------------------------------------------------------------------------------
# Geometry helpers
# ------------------------------------------------------------------------------


def lane_points(graph, lane):
    p0 = np.array(graph.get_waypoint(lane.entry.waypoint_index).location)
    p1 = np.array(graph.get_waypoint(lane.exit.waypoint_index).location)
    return p0, p1


def lane_projection(graph, lane, position):
    """Normalized projection of ``position`` onto the lane's entry->exit.

    0.0 is the entry waypoint and 1.0 is the exit waypoint. Degenerate lanes
    always report 1.0 so the robot is treated as already past them.
    """
    p0, p1 = lane_points(graph, lane)
    dp_lane = p1 - p0
    length_sq = float(np.dot(dp_lane, dp_lane))
    if length_sq < 1e-16:
        return 1.0
    p = np.array([position[0], position[1]])
    return float(np.dot(p - p0, dp_lane)) / length_sq


def distance_from_graph(graph, map_name, position):
    """Find the waypoint or lane of ``map_name`` nearest to ``position``.

    Lanes only count when the foot of the perpendicular from the position
    falls between the lane's endpoints. Returns None when nothing in the
    graph is on that map.
    """
    output = None
    p = np.array([position[0], position[1]])

    for i in range(graph.num_waypoints):
        wp = graph.get_waypoint(i)
        if wp.map_name != map_name:
            continue
        dist = float(np.linalg.norm(np.array(wp.location) - p))
        if output is None or dist < output.value:
            output = DistanceFromGraph(dist, i, DistanceType.WAYPOINT)

    for i in range(graph.num_lanes):
        lane = graph.get_lane(i)
        wp0 = graph.get_waypoint(lane.entry.waypoint_index)
        wp1 = graph.get_waypoint(lane.exit.waypoint_index)
        if map_name != wp0.map_name and map_name != wp1.map_name:
            continue

        p0 = np.array(wp0.location)
        p1 = np.array(wp1.location)
        dp = p - p0
        dp1 = p1 - p0
        lane_length = float(np.linalg.norm(dp1))
        if lane_length < 1e-8:
            continue

        u = float(np.dot(dp, dp1)) / lane_length
        if u < 0.0 or lane_length < u:
            continue

        dist = float(np.linalg.norm(dp - u * dp1 / lane_length))
        if output is None or dist < output.value:
            output = DistanceFromGraph(dist, i, DistanceType.LANE)

    return output


def describe_distance(graph, map_name, distance):
    """Human readable hint for a robot that could not be placed."""
    if distance is None:
        return (f"None of the waypoints in the graph are on a map called "
                f"[{map_name}].")

    if distance.type == DistanceType.LANE:
        lane = graph.get_lane(distance.index)
        return (
            f"The closest lane on the navigation graph [{distance.index}] "
            f"connects waypoint "
            f"[{graph.waypoint_name(lane.entry.waypoint_index)}] to "
            f"[{graph.waypoint_name(lane.exit.waypoint_index)}] and is a "
            f"distance of [{distance.value:.6f}m] from the robot.")

    return (
        f"The closest waypoint on the navigation graph "
        f"[{graph.waypoint_name(distance.index)}] is a distance of "
        f"[{distance.value:.6f}m] from the robot.")


def compute_plan_starts(graph, map_name, position,
                        max_merge_waypoint_distance=0.1,
                        max_merge_lane_distance=1.0,
                        min_lane_length=1e-8) -> List[Start]:
    """Places on the graph where a robot at ``position`` can start a plan.

    A waypoint within ``max_merge_waypoint_distance`` wins outright. Failing
    that, every lane whose segment passes within ``max_merge_lane_distance``
    yields a start heading for the lane's exit, nearest lane first.
    """
    p = np.array([position[0], position[1]])
    yaw = position[2]

    nearest_wp = None
    nearest_dist = math.inf
    for i in range(graph.num_waypoints):
        wp = graph.get_waypoint(i)
        if wp.map_name != map_name:
            continue
        dist = float(np.linalg.norm(np.array(wp.location) - p))
        if dist < nearest_dist:
            nearest_wp = wp
            nearest_dist = dist

    if nearest_wp is not None and nearest_dist <= max_merge_waypoint_distance:
        return [Start(waypoint=nearest_wp.index, orientation=yaw)]

    candidates = []
    for i in range(graph.num_lanes):
        lane = graph.get_lane(i)
        wp0 = graph.get_waypoint(lane.entry.waypoint_index)
        if wp0.map_name != map_name:
            continue
        p0, p1 = lane_points(graph, lane)
        dp_lane = p1 - p0
        lane_length = float(np.linalg.norm(dp_lane))
        if lane_length < min_lane_length:
            continue
        n_lane = dp_lane / lane_length
        p_l = p - p0
        p_l_proj = float(np.dot(p_l, n_lane))
        if p_l_proj < 0.0 or lane_length < p_l_proj:
            continue
        lane_dist = float(np.linalg.norm(p_l - p_l_proj * n_lane))
        if lane_dist <= max_merge_lane_distance:
            candidates.append((lane_dist, lane))

    candidates.sort(key=lambda c: (c[0], c[1].index))
    return [
        Start(
            waypoint=lane.exit.waypoint_index,
            orientation=yaw,
            lane=lane.index,
            location=(float(p[0]), float(p[1])))
        for _, lane in candidates
    ]


# ------------------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------------------


def _lane_events(options):
    entry_event = None
    exit_event = None
    dock_name = options.get('dock_name')
    if dock_name:
        entry_event = Dock(dock_name)
    door_name = options.get('door_name')
    if door_name:
        entry_event = DoorOpen(door_name)
        exit_event = DoorClose(door_name)
    return entry_event, exit_event


def parse_graph_dict(nav_graph) -> NavigationGraph:
    """Build a graph from the contents of an RMF nav graph file.

    Lane vertex indices are local to their level, so each level's lanes are
    offset by the number of waypoints added before that level.
    """
    graph = NavigationGraph()
    for map_name, level in (nav_graph.get('levels') or {}).items():
        offset = graph.num_waypoints
        for vertex in level.get('vertices') or []:
            props = vertex[2] if len(vertex) > 2 and vertex[2] else {}
            graph.add_waypoint(
                map_name,
                (vertex[0], vertex[1]),
                name=props.get('name') or None,
                is_charger=bool(props.get('is_charger', False)))

        for lane in level.get('lanes') or []:
            options = lane[2] if len(lane) > 2 and lane[2] else {}
            entry_event, exit_event = _lane_events(options)
            speed_limit = options.get('speed_limit')
            if speed_limit is not None and speed_limit <= 0.0:
                speed_limit = None
            graph.add_lane(
                lane[0] + offset,
                lane[1] + offset,
                entry_event=entry_event,
                exit_event=exit_event,
                speed_limit=speed_limit)
    return graph


def parse_graph(nav_graph_path) -> NavigationGraph:
    with open(nav_graph_path, "r") as f:
        return parse_graph_dict(yaml.safe_load(f) or {})
