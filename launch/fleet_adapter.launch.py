import os

from ament_index_python.packages import get_package_share_directory
from launch import LaunchDescription
from launch.actions import DeclareLaunchArgument
from launch.substitutions import LaunchConfiguration
from launch_ros.actions import Node


def generate_launch_description():

    default_config = os.path.join(
        get_package_share_directory('fleet_driver_adapter'),
        'config', 'fleet_config.yaml')

    config_file = LaunchConfiguration('config_file')
    nav_graph_file = LaunchConfiguration('nav_graph_file')

    return LaunchDescription([

        DeclareLaunchArgument(
            'config_file',
            default_value=default_config,
            description='Path to the fleet adapter config.yaml'),

        DeclareLaunchArgument(
            'nav_graph_file',
            description='Path to the nav graph of this fleet'),

        # Fleet driver adapter
        Node(
            package="fleet_driver_adapter",
            executable="fleet_adapter",
            name="fleet_adapter",
            arguments=['-c', config_file, '-n', nav_graph_file],
            output="screen"
        )

    ])
