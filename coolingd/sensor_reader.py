"""
Sensor reader

Reads the control temperature (and auxiliary temperatures) from hwmon sysfs
files, in millidegrees Celsius.
"""

import glob
import logging
import os
from collections import namedtuple

from .errors import ConfigError, HardwareError, SensorError

logger = logging.getLogger(__name__)

HWMON_ROOT = '/sys/class/hwmon'

# control: int millidegrees, auxiliary: {name: int millidegrees}
Sample = namedtuple('Sample', ['control', 'auxiliary'])


def find_hwmon_temp(hwmon_name, label, hwmon_root=HWMON_ROOT):
    """
    Find the temp*_input file of a labelled hwmon sensor

    Args:
        hwmon_name: Contents of the hwmon 'name' file, e.g. 'coretemp'
        label: Contents of the temp*_label file, e.g. 'Core 0'
        hwmon_root: Directory holding the hwmon* devices

    Returns:
        Path to temp*_input file, or None if not found
    """
    for hwmon_dir in sorted(glob.glob(os.path.join(hwmon_root, 'hwmon*'))):
        name_file = os.path.join(hwmon_dir, 'name')
        if not os.path.exists(name_file):
            continue
        with open(name_file, 'r') as f:
            if f.read().strip() != hwmon_name:
                continue
        for label_file in sorted(glob.glob(os.path.join(hwmon_dir, 'temp*_label'))):
            with open(label_file, 'r') as f:
                if f.read().strip() != label:
                    continue
            temp_input = label_file[:-len('_label')] + '_input'
            if os.path.exists(temp_input):
                return temp_input
    return None


def resolve_sensor(sensor, hwmon_root=HWMON_ROOT):
    """
    Turn a sensor name into a temp*_input path

    Args:
        sensor: '/sys/.../temp1_input', '/sys/.../temp1' or 'hwmon_name:label'

    Returns:
        Path to the sensor's input file
    """
    if not sensor.startswith('/') and ':' in sensor:
        hwmon_name, label = sensor.split(':', 1)
        path = find_hwmon_temp(hwmon_name, label, hwmon_root)
        if path is None:
            raise HardwareError(f"No hwmon sensor '{label}' on '{hwmon_name}'")
        return path
    if not sensor.startswith('/'):
        raise ConfigError(f"Sensor must be an absolute path or 'hwmon_name:label', got {sensor!r}")
    if sensor.endswith('_input'):
        return sensor
    return sensor + '_input'


class SensorReader:
    """Read the control sensor and any auxiliary sensors once per cycle"""

    def __init__(self, control, auxiliary=None, hwmon_root=HWMON_ROOT):
        """
        Initialize sensor reader

        Args:
            control: Sensor path or hwmon_name:label of the sensor that drives trip points
            auxiliary: Optional {name: sensor}, sampled but not used for
                decisions (reserved for combined-condition trip points)
        """
        self.control_path = resolve_sensor(control, hwmon_root)
        self.auxiliary_paths = {
            name: resolve_sensor(sensor, hwmon_root)
            for name, sensor in (auxiliary or {}).items()
        }

    def check_available(self):
        for path in [self.control_path] + list(self.auxiliary_paths.values()):
            if not os.access(path, os.R_OK):
                raise HardwareError(f"{path} not readable")

    @staticmethod
    def read_temperature(path):
        """
        Read one sensor

        Returns:
            Temperature in millidegrees Celsius (int)

        Raises:
            SensorError on I/O failure or non-integer data
        """
        try:
            with open(path, 'r') as f:
                raw = f.read().strip()
        except OSError as e:
            raise SensorError(f"Failed to read temperature from {path}: {e}") from e
        try:
            return int(raw)
        except ValueError as e:
            raise SensorError(f"Invalid temperature {raw!r} in {path}") from e

    def sample(self):
        """
        Sample every sensor

        Returns:
            Sample(control, auxiliary)
        """
        control = self.read_temperature(self.control_path)
        auxiliary = {
            name: self.read_temperature(path)
            for name, path in self.auxiliary_paths.items()
        }
        logger.debug('Sensor sample: control=%-6d %s', control,
                     ' '.join(f"{name}={value:<6d}" for name, value in auxiliary.items()))
        return Sample(control, auxiliary)
