"""
coolingd

Trip point thermal governor for ThinkPad fans and Xen CPU P-states.
"""

__version__ = '1.0.0'

from .trip_points import TripPoint, ControlState, TripPointEvaluator
from .fan_controller import FanController
from .pstate_controller import PStateController, PStateTable
from .sensor_reader import SensorReader
from .lifecycle import Lifecycle
from .config import ControlConfig, HardwareConfig, ValidationConfig, validate_config

__all__ = [
    'TripPoint',
    'ControlState',
    'TripPointEvaluator',
    'FanController',
    'PStateController',
    'PStateTable',
    'SensorReader',
    'Lifecycle',
    'ControlConfig',
    'HardwareConfig',
    'ValidationConfig',
    'validate_config',
]
