from glob import glob

from setuptools import setup

package_name = 'fleet_driver_adapter'

setup(
    name=package_name,
    version='0.0.0',
    packages=[package_name],
    data_files=[
        ('share/ament_index/resource_index/packages',
            ['resource/' + package_name]),
        ('share/' + package_name, ['package.xml']),
        ('share/' + package_name + '/launch', [
            'launch/fleet_adapter.launch.py'
        ]),
        ('share/' + package_name + '/config', glob('config/*.yaml')),
    ],
    install_requires=['setuptools', 'numpy', 'PyYAML'],
    extras_require={
        'test': ['pytest'],
    },
    zip_safe=True,
    maintainer='robot1',
    maintainer_email='robot1@example.com',
    description='RMF fleet adapter for robots driven through a fleet driver',
    license='Apache License 2.0',
    tests_require=['pytest'],
    entry_points={
        'console_scripts': [
            'fleet_adapter = fleet_driver_adapter.fleet_adapter:main',
        ],
    },
)
