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

import pytest
import yaml

from conftest import MAP

from fleet_driver_adapter.nav_graph import Dock
from fleet_driver_adapter.nav_graph import DoorClose
from fleet_driver_adapter.nav_graph import DoorOpen
from fleet_driver_adapter.nav_graph import DistanceType
from fleet_driver_adapter.nav_graph import LiftMove
from fleet_driver_adapter.nav_graph import NavigationGraph
from fleet_driver_adapter.nav_graph import compute_plan_starts
from fleet_driver_adapter.nav_graph import describe_distance
from fleet_driver_adapter.nav_graph import distance_from_graph
from fleet_driver_adapter.nav_graph import is_dock_event
from fleet_driver_adapter.nav_graph import lane_projection
from fleet_driver_adapter.nav_graph import parse_graph
from fleet_driver_adapter.nav_graph import parse_graph_dict


NAV_GRAPH = {
    'building_name': "office",
    'levels': {
        'L1': {
            'vertices': [
                [0.0, 0.0, {'name': "lobby"}],
                [5.0, 0.0, {'name': "charger_entry"}],
                [5.0, 2.0, {'name': "charger", 'is_charger': True}],
            ],
            'lanes': [
                [0, 1, {'speed_limit': 0.0}],
                [1, 0, {'speed_limit': 0.5}],
                [1, 2, {'dock_name': "charger_dock"}],
                [2, 1, {}],
            ],
        },
        'L2': {
            'vertices': [
                [0.0, 0.0, {'name': "pantry"}],
                [0.0, 5.0, {}],
            ],
            'lanes': [
                [0, 1, {'door_name': "pantry_door"}],
            ],
        },
    },
}


# ------------------------------------------------------------------------------
# Parsing
# ------------------------------------------------------------------------------


def test_parse_graph_dict():
    graph = parse_graph_dict(NAV_GRAPH)

    assert graph.waypoint_count() == 5
    assert graph.lane_count() == 5
    assert graph.find_waypoint("charger").is_charger
    assert graph.find_waypoint("pantry").map_name == "L2"
    assert graph.find_waypoint("nowhere") is None
    assert graph.waypoint_name(4) == "#4"


def test_parse_graph_offsets_each_level():
    graph = parse_graph_dict(NAV_GRAPH)
    lane = graph.get_lane(4)
    assert lane.entry.waypoint_index == 3
    assert lane.exit.waypoint_index == 4


def test_parse_graph_lane_options():
    graph = parse_graph_dict(NAV_GRAPH)

    assert graph.get_lane(0).speed_limit is None
    assert graph.get_lane(1).speed_limit == 0.5
    assert graph.get_lane(2).entry.event == Dock("charger_dock")
    assert graph.get_lane(2).exit.event is None
    assert graph.get_lane(4).entry.event == DoorOpen("pantry_door")
    assert graph.get_lane(4).exit.event == DoorClose("pantry_door")


def test_parse_graph_file(tmp_path):
    path = tmp_path / "nav_graph.yaml"
    path.write_text(yaml.safe_dump(NAV_GRAPH))
    graph = parse_graph(str(path))
    assert graph.num_waypoints == 5


def test_parse_empty_graph():
    assert parse_graph_dict({}).num_waypoints == 0


# ------------------------------------------------------------------------------
# Queries
# ------------------------------------------------------------------------------


def test_lane_from():
    graph = parse_graph_dict(NAV_GRAPH)
    assert graph.lane_from(1, 2).index == 2
    assert graph.lane_from(2, 1).index == 3
    assert graph.lane_from(0, 2) is None


def test_first_lane_wins_lookup():
    graph = NavigationGraph()
    graph.add_waypoint(MAP, (0.0, 0.0))
    graph.add_waypoint(MAP, (1.0, 0.0))
    graph.add_lane(0, 1)
    graph.add_lane(0, 1)
    assert graph.lane_from(0, 1).index == 0


def test_add_lane_with_unknown_waypoint():
    graph = NavigationGraph()
    graph.add_waypoint(MAP, (0.0, 0.0))
    with pytest.raises(IndexError):
        graph.add_lane(0, 1)


def test_find_dock_waypoint():
    graph = parse_graph_dict(NAV_GRAPH)
    assert graph.find_dock_waypoint("charger_dock") == 1
    assert graph.find_dock_waypoint("D1") is None


def test_is_dock_event():
    assert is_dock_event(Dock("D1"), "D1")
    assert not is_dock_event(Dock("D2"), "D1")
    assert not is_dock_event(None, "D1")
    assert not is_dock_event(LiftMove("lift", "L2"), "D1")
    with pytest.raises(TypeError):
        is_dock_event("dock", "D1")


def test_lane_projection(two_way_graph):
    lane = two_way_graph.get_lane(0)
    assert lane_projection(two_way_graph, lane, [0.0, 3.0]) == 0.0
    assert lane_projection(two_way_graph, lane, [5.0, 1.0]) == 0.5
    assert lane_projection(two_way_graph, lane, [12.0, 0.0]) == 1.2

    reverse = two_way_graph.get_lane(1)
    assert lane_projection(two_way_graph, reverse, [2.0, 0.0]) == 0.8


def test_distance_from_graph(two_way_graph):
    distance = distance_from_graph(two_way_graph, MAP, [4.0, 3.0])
    assert distance.type == DistanceType.LANE
    assert distance.value == pytest.approx(3.0)

    distance = distance_from_graph(two_way_graph, MAP, [-3.0, 4.0])
    assert distance.type == DistanceType.WAYPOINT
    assert distance.index == 0
    assert distance.value == pytest.approx(5.0)

    assert distance_from_graph(two_way_graph, "L9", [0.0, 0.0]) is None


def test_describe_distance(two_way_graph):
    hint = describe_distance(
        two_way_graph, MAP, distance_from_graph(
            two_way_graph, MAP, [4.0, 3.0]))
    assert hint.startswith("The closest lane on the navigation graph [0]")
    assert "connects waypoint [A] to [B]" in hint

    hint = describe_distance(
        two_way_graph, MAP, distance_from_graph(
            two_way_graph, MAP, [-3.0, 4.0]))
    assert hint == (
        "The closest waypoint on the navigation graph [A] is a distance of "
        "[5.000000m] from the robot.")

    assert describe_distance(two_way_graph, "L9", None) == (
        "None of the waypoints in the graph are on a map called [L9].")


def test_compute_plan_starts_on_waypoint(two_way_graph):
    starts = compute_plan_starts(two_way_graph, MAP, [10.05, 0.0, 1.0])
    assert len(starts) == 1
    assert starts[0].waypoint == 1
    assert starts[0].orientation == 1.0
    assert starts[0].lane is None


def test_compute_plan_starts_on_lane(one_way_graph):
    starts = compute_plan_starts(one_way_graph, MAP, [3.0, 0.5, 0.0])
    assert len(starts) == 1
    assert starts[0].lane == 0
    assert starts[0].waypoint == 1
    assert starts[0].location == (3.0, 0.5)


def test_compute_plan_starts_off_graph(two_way_graph):
    assert compute_plan_starts(two_way_graph, MAP, [5.0, 2.0, 0.0]) == []
    assert compute_plan_starts(two_way_graph, "L9", [0.0, 0.0, 0.0]) == []


def test_compute_plan_starts_merge_distances(two_way_graph):
    starts = compute_plan_starts(
        two_way_graph, MAP, [5.0, 2.0, 0.0], max_merge_lane_distance=2.5)
    assert [s.lane for s in starts] == [0, 1]

    starts = compute_plan_starts(
        two_way_graph, MAP, [0.5, 0.0, 0.0], max_merge_waypoint_distance=1.0)
    assert starts[0].waypoint == 0
    assert starts[0].lane is None
