"""
Configuration for the thermal governor

Trip point table, loop interval, hardware paths and validation rules.
"""

import json
import logging
import math
import re
from collections import namedtuple

from .errors import ConfigError
from .trip_points import AUTO, MAX, TripPoint

logger = logging.getLogger(__name__)


class ControlConfig:
    """Default control parameters"""

    # Main loop sleep duration (fractional seconds)
    INTERVAL_SEC = 1.5

    # 0 = error, 1 = warning, 2 = info, 3 = debug
    VERBOSITY = 2


class HardwareConfig:
    """Hardware control surfaces (ThinkPad fan, Xen CPU frequency control)"""

    THINKPAD_MODULE_SYSFS = '/sys/module/thinkpad_acpi'
    THINKPAD_HWMON_SYSFS = '/sys/devices/platform/thinkpad_hwmon'

    XENPM = '/usr/sbin/xenpm'

    # Control sensor drives trip point decisions, auxiliary sensors are only
    # sampled. Paths without the _input suffix are accepted.
    CONTROL_SENSOR = '/sys/class/hwmon/hwmon0/temp1'
    AUXILIARY_SENSORS = {
        'core_0': '/sys/class/hwmon/hwmon2/temp2',
        'core_2': '/sys/class/hwmon/hwmon2/temp4',
    }


class ValidationConfig:
    """Input validation limits"""

    MIN_INTERVAL = 0.1

    # Trip point temperature range (millidegrees Celsius, inclusive)
    MIN_TEMP = 20000
    MAX_TEMP = 120000

    MAX_PWM = 255

    MIN_VERBOSITY = 0
    MAX_VERBOSITY = 3


# fan: None (no change) | 'auto' | 0 (off)..255 | 'max' (dangerous, disengaged)
# pstate: None (no change) | 0..max P-state | 'max'
DEFAULT_TRIP_POINTS = [
    {'temp': 50000, 'debounce': 2, 'fan': 255, 'pstate': None},
    {'temp': 60000, 'debounce': 3, 'fan': 255, 'pstate': 3},
    {'temp': 70000, 'debounce': 4, 'fan': 255, 'pstate': 5},
    {'temp': 85000, 'debounce': 5, 'fan': MAX, 'pstate': MAX},
]

CONFIG_KEYS = {'interval_sec', 'trip_points', 'control_sensor', 'auxiliary_sensors'}
TRIP_POINT_KEYS = {'temp', 'debounce', 'fan', 'pstate'}

# Plain ASCII decimal, optionally negative
INTEGER_RE = re.compile(r'-?[0-9]+')

ValidatedConfig = namedtuple('ValidatedConfig', [
    'interval', 'trip_points', 'control_sensor', 'auxiliary_sensors'])


def default_config():
    """Raw configuration built from the class defaults"""
    return {
        'interval_sec': ControlConfig.INTERVAL_SEC,
        'trip_points': [dict(tp) for tp in DEFAULT_TRIP_POINTS],
        'control_sensor': HardwareConfig.CONTROL_SENSOR,
        'auxiliary_sensors': dict(HardwareConfig.AUXILIARY_SENSORS),
    }


def load_config_file(path):
    """
    Load a JSON configuration file on top of the defaults

    Args:
        path: Path to JSON file

    Returns:
        Raw configuration dict (not yet validated)

    Raises:
        ConfigError if the file can't be read or has unknown keys
    """
    try:
        with open(path, 'r') as f:
            data = json.load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e.strerror}") from e
    except ValueError as e:
        raise ConfigError(f"Malformed config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a JSON object")

    unknown = set(data) - CONFIG_KEYS
    if unknown:
        raise ConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")

    raw = default_config()
    raw.update(data)
    return raw


def _is_integer(value):
    """True for ints and decimal strings, never for bools"""
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    return isinstance(value, str) and INTEGER_RE.fullmatch(value.strip()) is not None


def validate_interval(value):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"INTERVAL_SEC must be a number, got {value!r}")
    if not math.isfinite(value):
        raise ConfigError(f"INTERVAL_SEC must be finite, got {value!r}")
    if value < ValidationConfig.MIN_INTERVAL:
        raise ConfigError(
            f"INTERVAL_SEC must be a value greater than {ValidationConfig.MIN_INTERVAL}")
    return float(value)


def validate_fan(name, value):
    """Returns None, 'auto', 'max' or an int duty cycle"""
    if value is None or value == '':
        return None
    if value in (AUTO, MAX):
        return value
    if _is_integer(value) and 0 <= int(value) <= ValidationConfig.MAX_PWM:
        return int(value)
    raise ConfigError(
        f"{name} must be an integer in range 0-{ValidationConfig.MAX_PWM} "
        f"or one of \"\", \"auto\", or \"max\"")


def validate_pstate(name, value, max_pstate):
    """Returns None, 'max' or an int P-state index"""
    if value is None or value == '':
        return None
    if value == MAX:
        return value
    if _is_integer(value) and 0 <= int(value) <= max_pstate:
        return int(value)
    raise ConfigError(f"{name} must be an integer in range 0-{max_pstate}, \"\", or \"max\"")


def validate_trip_points(raw_trip_points, max_pstate):
    """
    Validate the trip point table

    Args:
        raw_trip_points: List of dicts ordered by ascending temperature
        max_pstate: Highest P-state index reported by the capability probe

    Returns:
        Tuple of TripPoints indexed 1..N
    """
    if not isinstance(raw_trip_points, list) or not raw_trip_points:
        raise ConfigError("At least one trip point must be configured")

    trip_points = []
    last_temp = 0
    for i, raw in enumerate(raw_trip_points, start=1):
        name = f"TRIPPT_{i}"
        if not isinstance(raw, dict):
            raise ConfigError(f"{name} must be an object")
        unknown = set(raw) - TRIP_POINT_KEYS
        if unknown:
            raise ConfigError(f"{name} has unknown keys: {', '.join(sorted(unknown))}")

        # Temp
        temp = raw.get('temp')
        if (not _is_integer(temp) or int(temp) < ValidationConfig.MIN_TEMP
                or int(temp) > ValidationConfig.MAX_TEMP):
            raise ConfigError(
                f"{name} must be in range {ValidationConfig.MIN_TEMP}-"
                f"{ValidationConfig.MAX_TEMP} m C, inclusive")
        temp = int(temp)
        if temp < last_temp:
            raise ConfigError(f"Trip point order error: {name} ({temp}) is below "
                              f"TRIPPT_{i - 1} ({last_temp})")
        last_temp = temp

        # Debounce, none by default
        debounce = raw.get('debounce', 0)
        if debounce is None:
            debounce = 0
        if not _is_integer(debounce) or int(debounce) < 0:
            raise ConfigError(f"{name}_DEBOUNCE must be greater than or equal to 0")

        tp = TripPoint(
            index=i,
            temp=temp,
            debounce=int(debounce),
            fan=validate_fan(f"{name}_FAN", raw.get('fan')),
            pstate=validate_pstate(f"{name}_PSTATE", raw.get('pstate'), max_pstate),
        )
        logger.debug('Trip point %2d: temp=%-6d debounce=%-2d fan=%-4s pstate=%-3s',
                     tp.index, tp.temp, tp.debounce,
                     "''" if tp.fan is None else tp.fan,
                     "''" if tp.pstate is None else tp.pstate)
        trip_points.append(tp)

    logger.debug('%d trip points found', len(trip_points))
    return tuple(trip_points)


def validate_config(raw, max_pstate):
    """
    Validate a raw configuration

    Args:
        raw: Dict as returned by default_config() or load_config_file()
        max_pstate: Highest P-state index (probing happens before validation)

    Returns:
        ValidatedConfig

    Raises:
        ConfigError on the first violation
    """
    interval = validate_interval(raw.get('interval_sec'))
    trip_points = validate_trip_points(raw.get('trip_points'), max_pstate)

    control_sensor = raw.get('control_sensor')
    if not isinstance(control_sensor, str) or not control_sensor:
        raise ConfigError("control_sensor must be a non-empty string")
    auxiliary = raw.get('auxiliary_sensors') or {}
    if not isinstance(auxiliary, dict) or not all(
            isinstance(v, str) and v for v in auxiliary.values()):
        raise ConfigError("auxiliary_sensors must map names to sensor strings")

    return ValidatedConfig(interval, trip_points, control_sensor, dict(auxiliary))


def parse_verbosity(value):
    """
    Parse a verbosity level (0 = error .. 3 = debug)

    Args:
        value: int, digit string, or None for the default

    Returns:
        int verbosity
    """
    if value is None or value == '':
        return ControlConfig.VERBOSITY
    if _is_integer(value):
        level = int(value)
        if ValidationConfig.MIN_VERBOSITY <= level <= ValidationConfig.MAX_VERBOSITY:
            return level
    raise ConfigError(
        f"VERBOSITY must be an integer in range {ValidationConfig.MIN_VERBOSITY}-"
        f"{ValidationConfig.MAX_VERBOSITY}, got {value!r}")


LOG_LEVELS = {
    0: logging.ERROR,
    1: logging.WARNING,
    2: logging.INFO,
    3: logging.DEBUG,
}


def setup_logging(verbosity):
    """Configure root logging on stderr for the given verbosity"""
    logging.basicConfig(
        level=LOG_LEVELS[verbosity],
        format='%(levelname)s: %(message)s',
    )
    logging.getLogger().setLevel(LOG_LEVELS[verbosity])
