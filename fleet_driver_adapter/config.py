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

import yaml

from dataclasses import dataclass, field
from typing import List, Optional

from .estimation import VehicleTraits
from .RobotCommandHandle import DOCK_SCHEDULE_PERIOD
from .RobotCommandHandle import PATH_RESEND_PERIOD


class ConfigError(ValueError):
    pass


FINISHING_REQUESTS = ("charge", "park", "nothing")
TASK_TYPES = ("loop", "delivery", "clean")


@dataclass
class TaskPlannerConfig:
    # Battery system
    voltage: float = 24.0
    capacity: float = 40.0
    charging_current: float = 8.8
    # Mechanical system
    mass: float = 70.0
    moment_of_inertia: float = 40.0
    friction_coefficient: float = 0.22
    # Power drawn by the robot's devices, in W
    ambient_power: float = 20.0
    tool_power: float = 10.0

    recharge_threshold: float = 0.2
    recharge_soc: float = 1.0
    account_for_battery_drain: bool = False
    finishing_request: str = "nothing"
    # Task types the fleet bids on
    task_types: List[str] = field(default_factory=list)


@dataclass
class FleetConfig:
    name: str
    traits: VehicleTraits = field(default_factory=VehicleTraits)
    lane_merge_distance: float = 1.0
    waypoint_merge_distance: float = 0.1
    path_resend_period: float = PATH_RESEND_PERIOD
    dock_schedule_period: float = DOCK_SCHEDULE_PERIOD
    # Hz; None leaves fleet state publishing to the fleet drivers
    publish_fleet_state: Optional[float] = None
    task_planner: TaskPlannerConfig = field(default_factory=TaskPlannerConfig)


def _pair(section, key, default):
    value = section.get(key, default)
    if not isinstance(value, (list, tuple)) or len(value) != 2:
        raise ConfigError(
            f"[rmf_fleet.limits.{key}] must be a [velocity, acceleration] "
            f"pair, got [{value}]")
    velocity, acceleration = (float(v) for v in value)
    if velocity <= 0.0 or acceleration <= 0.0:
        raise ConfigError(
            f"[rmf_fleet.limits.{key}] must be positive, got [{value}]")
    return velocity, acceleration


def _positive(section, key, default, prefix="rmf_fleet"):
    value = float(section.get(key, default))
    if value <= 0.0:
        raise ConfigError(f"[{prefix}.{key}] must be positive, got [{value}]")
    return value


def _fraction(section, key, default):
    value = float(section.get(key, default))
    if value < 0.0 or value > 1.0:
        raise ConfigError(
            f"[rmf_fleet.{key}] must be between 0 and 1, got [{value}]")
    return value


def _parse_task_planner(fleet_config) -> TaskPlannerConfig:
    defaults = TaskPlannerConfig()
    battery_system = fleet_config.get('battery_system') or {}
    mechanical_system = fleet_config.get('mechanical_system') or {}
    ambient_system = fleet_config.get('ambient_system') or {}
    tool_system = fleet_config.get('tool_system') or {}
    capabilities = fleet_config.get('task_capabilities') or {}

    finishing_request = capabilities.get(
        'finishing_request', defaults.finishing_request)
    if finishing_request not in FINISHING_REQUESTS:
        raise ConfigError(
            f"[rmf_fleet.task_capabilities.finishing_request] must be one of "
            f"{list(FINISHING_REQUESTS)}, got [{finishing_request}]")

    prefix = "rmf_fleet.battery_system"
    return TaskPlannerConfig(
        voltage=_positive(
            battery_system, 'voltage', defaults.voltage, prefix),
        capacity=_positive(
            battery_system, 'capacity', defaults.capacity, prefix),
        charging_current=_positive(
            battery_system, 'charging_current', defaults.charging_current,
            prefix),
        mass=_positive(
            mechanical_system, 'mass', defaults.mass,
            "rmf_fleet.mechanical_system"),
        moment_of_inertia=_positive(
            mechanical_system, 'moment_of_inertia',
            defaults.moment_of_inertia, "rmf_fleet.mechanical_system"),
        friction_coefficient=_positive(
            mechanical_system, 'friction_coefficient',
            defaults.friction_coefficient, "rmf_fleet.mechanical_system"),
        ambient_power=_positive(
            ambient_system, 'power', defaults.ambient_power,
            "rmf_fleet.ambient_system"),
        tool_power=_positive(
            tool_system, 'power', defaults.tool_power,
            "rmf_fleet.tool_system"),
        recharge_threshold=_fraction(
            fleet_config, 'recharge_threshold', defaults.recharge_threshold),
        recharge_soc=_fraction(
            fleet_config, 'recharge_soc', defaults.recharge_soc),
        account_for_battery_drain=bool(fleet_config.get(
            'account_for_battery_drain', defaults.account_for_battery_drain)),
        finishing_request=finishing_request,
        task_types=[t for t in TASK_TYPES if capabilities.get(t, False)])


def parse_config(config_yaml) -> FleetConfig:
    if not isinstance(config_yaml, dict) or \
            not isinstance(config_yaml.get('rmf_fleet'), dict):
        raise ConfigError("Missing [rmf_fleet] section in the configuration")
    fleet_config = config_yaml['rmf_fleet']

    name = fleet_config.get('name')
    if not name:
        raise ConfigError("Missing [rmf_fleet.name] in the configuration")

    limits = fleet_config.get('limits') or {}
    profile = fleet_config.get('profile') or {}
    linear = _pair(limits, 'linear', [0.7, 0.3])
    angular = _pair(limits, 'angular', [0.5, 1.5])
    traits = VehicleTraits(
        linear_velocity=linear[0],
        linear_acceleration=linear[1],
        angular_velocity=angular[0],
        angular_acceleration=angular[1],
        footprint_radius=_positive(profile, 'footprint', 0.5,
                                   "rmf_fleet.profile"),
        vicinity_radius=_positive(profile, 'vicinity', 1.5,
                                  "rmf_fleet.profile"),
        reversible=bool(fleet_config.get('reversible', True)))

    command = fleet_config.get('command') or {}
    publish_fleet_state = fleet_config.get('publish_fleet_state')
    if publish_fleet_state is not None:
        publish_fleet_state = _positive(
            fleet_config, 'publish_fleet_state', publish_fleet_state)

    return FleetConfig(
        name=name,
        traits=traits,
        lane_merge_distance=_positive(
            fleet_config, 'lane_merge_distance', 1.0),
        waypoint_merge_distance=_positive(
            fleet_config, 'waypoint_merge_distance', 0.1),
        path_resend_period=_positive(
            command, 'path_resend_period', PATH_RESEND_PERIOD,
            "rmf_fleet.command"),
        dock_schedule_period=_positive(
            command, 'dock_schedule_period', DOCK_SCHEDULE_PERIOD,
            "rmf_fleet.command"),
        publish_fleet_state=publish_fleet_state,
        task_planner=_parse_task_planner(fleet_config))


def load_config(config_path) -> FleetConfig:
    with open(config_path, "r") as f:
        return parse_config(yaml.safe_load(f))
