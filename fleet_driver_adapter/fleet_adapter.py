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

import sys
import argparse
import time
import datetime

import numpy as np

import rclpy
import rclpy.node
from rclpy.parameter import Parameter

import rmf_adapter as adpt
import rmf_adapter.vehicletraits as traits
import rmf_adapter.battery as battery
import rmf_adapter.geometry as geometry
import rmf_adapter.graph as graph
import rmf_adapter.plan as plan
import rmf_adapter.schedule as schedule

from rmf_task_msgs.msg import TaskProfile, TaskType

from .config import load_config
from .estimation import trajectory_offsets
from .fleet_manager import FleetManager
from .interfaces import FleetPlanner
from .interfaces import RobotUpdater
from .interfaces import ScheduleParticipant
from .nav_graph import parse_graph
from .RobotClientAPI import FleetDriverAPI


TASK_TYPE_CODES = {
    'loop': TaskType.TYPE_LOOP,
    'delivery': TaskType.TYPE_DELIVERY,
    'clean': TaskType.TYPE_CLEAN,
}


# ------------------------------------------------------------------------------
# Bridges between rmf_adapter and the command handles
# ------------------------------------------------------------------------------


class RmfCommandHandle(adpt.RobotCommandHandle):
    def __init__(self, command):
        adpt.RobotCommandHandle.__init__(self)
        self.command = command

    def follow_new_path(self, waypoints, *args):
        """
        Called by RMF when a new path is assigned to this robot.

        We support both of these call patterns:
          1) follow_new_path(waypoints, next_arrival_estimator, path_finished_callback)
          2) follow_new_path(waypoints, path_finished_callback)

        In case (2), we simply won't report arrival estimates.
        """
        next_arrival_estimator = None
        if len(args) == 2:
            next_arrival_estimator, path_finished_callback = args
        elif len(args) == 1:
            (path_finished_callback,) = args
        else:
            raise ValueError(
                f"follow_new_path expected 2 or 3 arguments after 'self', "
                f"got {1 + len(args)} total"
            )
        self.command.follow_new_path(
            waypoints, next_arrival_estimator, path_finished_callback)

    def stop(self):
        # Fleet drivers are only ever stopped by a new command
        pass

    def dock(self, dock_name, docking_finished_callback):
        self.command.dock(dock_name, docking_finished_callback)


class RmfScheduleParticipant(ScheduleParticipant):
    def __init__(self, participant, vehicle_traits, adapter):
        self.participant = participant
        self.vehicle_traits = vehicle_traits
        self.adapter = adapter

    def set_route(self, map_name, trajectory):
        # Keep the spacing of the given points, starting from now
        start_time = self.adapter.now()
        traj = schedule.Trajectory()
        for offset, position in trajectory_offsets(trajectory):
            traj.insert(
                start_time + offset,
                np.array(position, dtype=float),
                np.zeros(3))
        self.participant.set_itinerary([schedule.Route(map_name, traj)])


class RmfRobotUpdater(RobotUpdater):
    def __init__(self, update_handle, vehicle_traits, adapter):
        self.update_handle = update_handle
        self.vehicle_traits = vehicle_traits
        self.adapter = adapter

    def interrupted(self):
        self.update_handle.replan()

    def update_battery_soc(self, battery_soc):
        self.update_handle.update_battery_soc(battery_soc)

    def update_current_waypoint(self, waypoint_index, orientation):
        self.update_handle.update_current_waypoint(waypoint_index, orientation)

    def update_current_lanes(self, position, lanes):
        self.update_handle.update_current_lanes(position, lanes)

    def update_off_grid_position(self, position, target_waypoint):
        self.update_handle.update_off_grid_position(position, target_waypoint)

    def update_lost_position(self, map_name, position,
                             max_merge_waypoint_distance,
                             max_merge_lane_distance):
        self.update_handle.update_lost_position(
            map_name,
            position,
            max_merge_waypoint_distance=max_merge_waypoint_distance,
            max_merge_lane_distance=max_merge_lane_distance)

    def get_participant(self):
        participant = self.update_handle.get_unstable_participant()
        if participant is None:
            return None
        return RmfScheduleParticipant(
            participant, self.vehicle_traits, self.adapter)


class RmfFleetPlanner(FleetPlanner):
    def __init__(self, node, adapter, fleet_handle, vehicle_traits, profile):
        self.node = node
        self.adapter = adapter
        self.fleet_handle = fleet_handle
        self.vehicle_traits = vehicle_traits
        self.profile = profile
        # rmf_adapter only holds weak references to the command handles
        self.command_handles = {}

    def add_robot(self, command_handle, robot_name, starts, ready_callback):
        time_now = self.adapter.now()
        rmf_starts = [
            plan.Start(time_now, s.waypoint, s.orientation, s.location, s.lane)
            for s in starts
        ]
        handle = RmfCommandHandle(command_handle)
        self.command_handles[robot_name] = handle

        def _updater_inserter(update_handle):
            ready_callback(RmfRobotUpdater(
                update_handle, self.vehicle_traits, self.adapter))

        self.fleet_handle.add_robot(
            handle, robot_name, self.profile, rmf_starts, _updater_inserter)

    def open_lanes(self, lanes):
        self.fleet_handle.open_lanes(lanes)

    def close_lanes(self, lanes):
        self.fleet_handle.close_lanes(lanes)


# ------------------------------------------------------------------------------
# Helper functions
# ------------------------------------------------------------------------------


def set_task_planner(fleet_handle, fleet_name, task_config, node):
    # Battery system
    battery_sys = battery.BatterySystem.make(
        task_config.voltage,
        task_config.capacity,
        task_config.charging_current)

    # Mechanical system
    mech_sys = battery.MechanicalSystem.make(
        task_config.mass,
        task_config.moment_of_inertia,
        task_config.friction_coefficient)

    # Power systems
    ambient_power_sys = battery.PowerSystem.make(task_config.ambient_power)
    tool_power_sys = battery.PowerSystem.make(task_config.tool_power)

    # Power sinks
    motion_sink = battery.SimpleMotionPowerSink(battery_sys, mech_sys)
    ambient_sink = battery.SimpleDevicePowerSink(
        battery_sys, ambient_power_sys)
    tool_sink = battery.SimpleDevicePowerSink(battery_sys, tool_power_sys)

    node.get_logger().info(
        f"Finishing request: [{task_config.finishing_request}]")
    ok = fleet_handle.set_task_planner_params(
        battery_sys,
        motion_sink,
        ambient_sink,
        tool_sink,
        task_config.recharge_threshold,
        task_config.recharge_soc,
        task_config.account_for_battery_drain,
        task_config.finishing_request)
    assert ok, "Unable to set task planner params"

    accepted_types = {TASK_TYPE_CODES[t] for t in task_config.task_types}
    node.get_logger().info(
        f"Fleet [{fleet_name}] accepts task types: {task_config.task_types}")

    def _task_request_check(msg: TaskProfile):
        accept = msg.description.task_type.type in accepted_types
        node.get_logger().info(
            f"Fleet [{fleet_name}] received task request "
            f"id=[{msg.task_id}], accepted: [{accept}]")
        return accept

    # Keep callback alive
    node.task_request_check = _task_request_check
    fleet_handle.accept_task_requests(_task_request_check)


def initialize_fleet(fleet_config, nav_graph_path, node, use_sim_time):
    # Profile and traits
    profile = traits.Profile(
        geometry.make_final_convex_circle(fleet_config.traits.footprint_radius),
        geometry.make_final_convex_circle(fleet_config.traits.vicinity_radius)
    )
    vehicle_traits = traits.VehicleTraits(
        linear=traits.Limits(
            fleet_config.traits.linear_velocity,
            fleet_config.traits.linear_acceleration),
        angular=traits.Limits(
            fleet_config.traits.angular_velocity,
            fleet_config.traits.angular_acceleration),
        profile=profile
    )
    vehicle_traits.differential.reversible = fleet_config.traits.reversible

    # Both graphs come from the same file so their indices agree
    rmf_graph = graph.parse_graph(nav_graph_path, vehicle_traits)
    nav_graph = parse_graph(nav_graph_path)
    node.get_logger().info(
        f"The fleet [{fleet_config.name}] has the following named "
        f"waypoints: {sorted(nav_graph.keys)}")

    # Adapter
    fleet_name = fleet_config.name
    adapter = adpt.Adapter.make(f'{fleet_name}_fleet_adapter')
    assert adapter, (
        "Unable to initialize fleet adapter. Please ensure "
        "RMF Schedule Node is running"
    )
    if use_sim_time:
        adapter.node.use_sim_time()
    adapter.start()
    time.sleep(1.0)

    fleet_handle = adapter.add_fleet(fleet_name, vehicle_traits, rmf_graph)

    if fleet_config.publish_fleet_state is None:
        # The fleet drivers publish their own fleet states
        fleet_handle.fleet_state_publish_period(None)
    else:
        fleet_handle.fleet_state_publish_period(
            datetime.timedelta(seconds=1.0 / fleet_config.publish_fleet_state))

    set_task_planner(fleet_handle, fleet_name, fleet_config.task_planner, node)

    api = FleetDriverAPI(node, fleet_name)
    planner = RmfFleetPlanner(
        node, adapter, fleet_handle, vehicle_traits, profile)
    manager = FleetManager(
        node,
        fleet_name,
        nav_graph,
        fleet_config.traits,
        api,
        planner,
        config=fleet_config)

    def _lane_request_cb(request):
        closed_lanes = manager.handle_lane_request(request)
        if closed_lanes is not None:
            api.publish_closed_lanes(closed_lanes)

    api.subscribe_fleet_states(manager.handle_fleet_state)
    api.subscribe_lane_requests(_lane_request_cb)

    # Keep everything alive for as long as the node spins
    node.fleet_manager = manager
    node.fleet_planner = planner
    return adapter


# ------------------------------------------------------------------------------
# Main
# ------------------------------------------------------------------------------
def main(argv=sys.argv):
    # Init rclpy and adapter
    rclpy.init(args=argv)
    adpt.init_rclcpp()
    args_without_ros = rclpy.utilities.remove_ros_args(argv)

    parser = argparse.ArgumentParser(
        prog="fleet_adapter",
        description="Configure and spin up the fleet driver adapter")
    parser.add_argument("-c", "--config_file", type=str, required=True,
                        help="Path to the config.yaml file")
    parser.add_argument("-n", "--nav_graph", type=str, required=True,
                        help="Path to the nav_graph for this fleet adapter")
    parser.add_argument("-sim", "--use_sim_time", action="store_true",
                        help='Use sim time, default: false')
    args = parser.parse_args(args_without_ros[1:])

    fleet_config = load_config(args.config_file)

    # ROS 2 node for the command handles
    node = rclpy.node.Node(f'{fleet_config.name}_command_handle')
    node.get_logger().info("Starting fleet driver adapter...")

    # Enable sim time for testing offline
    if args.use_sim_time:
        param = Parameter("use_sim_time", Parameter.Type.BOOL, True)
        node.set_parameters([param])

    adapter = initialize_fleet(
        fleet_config,
        args.nav_graph,
        node,
        args.use_sim_time)

    rclpy_executor = rclpy.executors.SingleThreadedExecutor()
    rclpy_executor.add_node(node)

    # Start the fleet adapter
    rclpy_executor.spin()

    # Shutdown
    node.destroy_node()
    rclpy_executor.shutdown()
    rclpy.shutdown()
    del adapter


if __name__ == '__main__':
    main(sys.argv)
