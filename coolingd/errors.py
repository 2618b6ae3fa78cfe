"""
Error taxonomy

Every fatal condition maps to one exception type and one process exit code.
"""

EXIT_OK = 0
EXIT_HARDWARE = 1
EXIT_RUNTIME = 2
EXIT_CONFIG = 3
EXIT_PRIVILEGE = 4


class CoolingError(RuntimeError):
    """Base class for all coolingd failures"""

    exit_code = EXIT_HARDWARE


class ConfigError(CoolingError):
    """Invalid interval, trip point table or verbosity"""

    exit_code = EXIT_CONFIG


class HardwareError(CoolingError):
    """Missing kernel module, disabled fan_control, inaccessible control files"""

    exit_code = EXIT_HARDWARE


class PrivilegeError(CoolingError):
    """Not running as root"""

    exit_code = EXIT_PRIVILEGE


class SensorError(CoolingError):
    """A sensor could not be read or returned garbage mid-loop"""

    exit_code = EXIT_RUNTIME


class ActuatorError(CoolingError):
    """A fan or P-state write failed mid-loop"""

    exit_code = EXIT_RUNTIME
