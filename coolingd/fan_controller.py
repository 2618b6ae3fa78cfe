"""
Fan controller interface

Drives the ThinkPad fan through the thinkpad_acpi hwmon sysfs files.

    fan1_input:  current fan speed in RPM (read only)
    pwm1:        0 (off) .. 255 (max recommended), device rounds the value
    pwm1_enable: 0 = disengaged (full speed), 1 = manual (pwm1), 2 = auto
"""

import logging
import os

from .errors import ActuatorError, HardwareError
from .trip_points import AUTO, MAX

logger = logging.getLogger(__name__)

PWM_DISENGAGED = 0
PWM_MANUAL = 1
PWM_AUTO = 2


class FanController:
    """Interface to the ThinkPad fan using thinkpad_hwmon sysfs files"""

    def __init__(self, hwmon_dir, module_dir, test_mode=False):
        """
        Initialize fan controller

        Args:
            hwmon_dir: thinkpad_hwmon platform device directory
            module_dir: thinkpad_acpi module directory
            test_mode: If True, don't actually set fan speeds
        """
        self.module_dir = module_dir
        self.fan_input = os.path.join(hwmon_dir, 'fan1_input')
        self.pwm = os.path.join(hwmon_dir, 'pwm1')
        self.pwm_enable = os.path.join(hwmon_dir, 'pwm1_enable')
        self.test_mode = test_mode

    def check_available(self):
        """
        Check that manual fan control is possible

        Raises:
            HardwareError if the module isn't loaded, fan_control is disabled
            or the control files aren't accessible
        """
        if not os.path.isdir(self.module_dir):
            raise HardwareError('thinkpad_acpi kernel module not loaded')

        try:
            fan_control = self._read(os.path.join(self.module_dir, 'parameters', 'fan_control'))
        except OSError as e:
            raise HardwareError(f"Cannot read fan_control module parameter: {e}") from e
        if fan_control != 'Y':
            raise HardwareError('fan_control thinkpad_acpi module parameter not enabled')

        for path in (self.fan_input, self.pwm, self.pwm_enable):
            if not os.access(path, os.R_OK):
                raise HardwareError(f"{path} not readable")
        for path in (self.pwm, self.pwm_enable):
            if not os.access(path, os.W_OK):
                raise HardwareError(f"{path} not writable")

    @staticmethod
    def _read(path):
        with open(path, 'r') as f:
            return f.read().strip()

    @staticmethod
    def _write(path, value):
        with open(path, 'w') as f:
            f.write(str(value))

    def _read_int(self, path):
        try:
            return int(self._read(path))
        except (OSError, ValueError) as e:
            raise ActuatorError(f"Failed to read {path}: {e}") from e

    def get_fan(self):
        """
        Read the current fan setting

        Returns:
            'max', 'auto' or the manual PWM value (0-255)
        """
        state = self._read_int(self.pwm_enable)
        if state == PWM_DISENGAGED:
            return MAX
        if state == PWM_AUTO:
            return AUTO
        if state != PWM_MANUAL:
            raise ActuatorError(f"Unexpected pwm1_enable value: {state}")
        return self._read_int(self.pwm)

    def read_speed(self):
        """Current fan speed in RPM"""
        return self._read_int(self.fan_input)

    def set_fan(self, setting):
        """
        Set fan speed

        Args:
            setting: 'max', 'auto' or PWM value 0-255
        """
        if setting not in (MAX, AUTO):
            if isinstance(setting, bool) or not isinstance(setting, int) or not 0 <= setting <= 255:
                raise ValueError(f"invalid fan setting: {setting!r}")

        logger.info('New fan speed: %s', setting)

        if self.test_mode:
            return

        try:
            if setting == MAX:
                self._write(self.pwm_enable, PWM_DISENGAGED)
            elif setting == AUTO:
                self._write(self.pwm_enable, PWM_AUTO)
            else:
                # pwm1 must be written AFTER switching to manual or it is ignored
                self._write(self.pwm_enable, PWM_MANUAL)
                self._write(self.pwm, setting)
        except OSError as e:
            raise ActuatorError(f"Failed to set fan to {setting}: {e}") from e

        if setting not in (MAX, AUTO):
            actual = self._read_int(self.pwm)
            if actual != setting:
                logger.warning('Fan PWM value %d was rounded to %d by the device', setting, actual)
