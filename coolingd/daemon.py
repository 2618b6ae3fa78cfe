#!/usr/bin/env python3
"""
Thermal governor daemon

Samples the control temperature sensor every interval, maps it to the
highest reached trip point and sets the fan and CPU P-state cap for it.
Original fan and P-state settings are restored on exit.

Usage:
    sudo coolingd run [-t] [-c config.json] [-i interval] [-v verbosity]
    sudo coolingd status
    sudo coolingd check [-c config.json]

Commands:
    run             - Run the control loop until SIGHUP/SIGINT/SIGQUIT/SIGPIPE/SIGTERM
    status          - Print fan, CPU frequency and sensor readings once
    check           - Run startup checks and validate the configuration, then exit

Options:
    -t              - Test mode (log transitions without touching the hardware)
    -c config.json  - JSON file overriding interval_sec, trip_points, control_sensor
                      or auxiliary_sensors
    -i interval     - Loop interval in seconds (default: from ControlConfig)
    -v verbosity    - 0 = error, 1 = warning, 2 = info, 3 = debug
                      (default: $VERBOSITY or 2)

Exit codes:
    0 clean shutdown, 1 hardware unavailable, 2 runtime I/O failure,
    3 invalid configuration, 4 not running as root
"""

import argparse
import logging
import os
import sys
import time

from . import __version__
from .config import (ControlConfig, HardwareConfig, default_config, load_config_file,
                     parse_verbosity, setup_logging, validate_config)
from .errors import (EXIT_OK, EXIT_RUNTIME, EXIT_CONFIG, CoolingError, ConfigError,
                     PrivilegeError)
from .fan_controller import FanController
from .lifecycle import Lifecycle
from .pstate_controller import PStateController
from .sensor_reader import SensorReader
from .trip_points import ControlState, TripPointEvaluator

logger = logging.getLogger(__name__)


def check_root():
    if os.geteuid() != 0:
        raise PrivilegeError('This program must run as root')


def build_controllers(test_mode=False):
    """Create the fan and P-state controllers from HardwareConfig"""
    fan = FanController(HardwareConfig.THINKPAD_HWMON_SYSFS,
                        HardwareConfig.THINKPAD_MODULE_SYSFS,
                        test_mode=test_mode)
    pstate = PStateController(HardwareConfig.XENPM, test_mode=test_mode)
    return fan, pstate


def load_raw_config(args):
    """Defaults, then the config file, then command-line overrides"""
    config_path = getattr(args, 'config', None)
    raw = load_config_file(config_path) if config_path else default_config()
    interval = getattr(args, 'interval', None)
    if interval is not None:
        raw['interval_sec'] = interval
    return raw


def startup(args, fan, pstate):
    """
    Run the startup checks in order: privilege, fan, P-states, config, sensors

    Returns:
        Tuple of (validated config, SensorReader)
    """
    check_root()
    fan.check_available()
    pstate.check_available()
    table = pstate.probe()
    config = validate_config(load_raw_config(args), table.max_pstate)
    reader = SensorReader(config.control_sensor, config.auxiliary_sensors)
    reader.check_available()
    return config, reader


def control_loop(reader, evaluator, state, lifecycle, interval,
                 sleep=None, max_cycles=None):
    """
    Main control loop

    Args:
        reader: SensorReader
        evaluator: TripPointEvaluator
        state: ControlState with originals captured
        lifecycle: Lifecycle (applies actions, reports stop requests)
        interval: Sleep between samples in seconds
        sleep: Sleep function (default: time.sleep)
        max_cycles: Stop after this many samples (None = until stopped)

    Returns:
        Number of completed cycles
    """
    sleep = sleep or time.sleep
    cycles = 0
    while not lifecycle.stop_requested:
        # Sleep at the top, skipping the first iteration
        if cycles:
            sleep(interval)
            if lifecycle.stop_requested:
                break

        sample = reader.sample()
        actions = evaluator.evaluate(sample.control, state)
        lifecycle.apply(actions)

        cycles += 1
        if max_cycles is not None and cycles >= max_cycles:
            break
    return cycles


def cmd_run(args):
    """Run the governor until a shutdown signal or a fatal error"""
    fan, pstate = build_controllers(test_mode=args.test)
    lifecycle = Lifecycle(fan, pstate)
    lifecycle.install_signal_handlers()

    exit_code = EXIT_OK
    try:
        config, reader = startup(args, fan, pstate)
        evaluator = TripPointEvaluator(config.trip_points)
        state = lifecycle.capture(ControlState())

        logger.info('Governing %d trip points every %ss%s', len(config.trip_points),
                    config.interval, ' [TEST MODE]' if args.test else '')
        control_loop(reader, evaluator, state, lifecycle, config.interval)
        if lifecycle.stop_requested:
            logger.debug('Received signal %d', lifecycle.signum)
    except CoolingError as e:
        logger.error('%s', e)
        exit_code = e.exit_code
    except Exception:
        logger.exception('Unexpected error in control loop')
        exit_code = EXIT_RUNTIME
    finally:
        restored = lifecycle.shutdown()

    if not restored and exit_code == EXIT_OK:
        exit_code = EXIT_RUNTIME
    return exit_code


def cmd_check(args):
    """Validate hardware and configuration without changing anything"""
    fan, pstate = build_controllers(test_mode=True)
    try:
        config, reader = startup(args, fan, pstate)
    except CoolingError as e:
        logger.error('%s', e)
        return e.exit_code

    print(f"Interval: {config.interval}s")
    print(f"Control sensor: {reader.control_path}")
    for name, path in reader.auxiliary_paths.items():
        print(f"Auxiliary sensor {name}: {path}")
    print(f"P-states: 0-{pstate.table.max_pstate}")
    for tp in config.trip_points:
        fan_setting = "''" if tp.fan is None else tp.fan
        pstate_setting = "''" if tp.pstate is None else tp.pstate
        print(f"Trip point {tp.index:2d}: temp={tp.temp:<6d} debounce={tp.debounce:<2d} "
              f"fan={fan_setting!s:<4} pstate={pstate_setting!s:<3}")
    print("Configuration OK")
    return EXIT_OK


def cmd_status(args):
    """Show current fan, CPU frequency and sensor status"""
    fan, pstate = build_controllers(test_mode=True)
    raw = load_raw_config(args)

    print("# Fan")
    try:
        print(f"  Setting: {fan.get_fan()}")
        print(f"  Speed: {fan.read_speed()} RPM")
    except CoolingError as e:
        print(f"  Error reading ({e})")

    print("\n# CPU")
    try:
        table = pstate.probe()
        print(f"  P-state cap: {pstate.get_pstate()} of 0-{table.max_pstate}")
        for core, mhz in enumerate(pstate.read_current_frequencies()):
            print(f"  Core {core}: {mhz} MHz")
    except CoolingError as e:
        print(f"  Error reading ({e})")

    print("\n# Thermal Sensors")
    sensors = {'control': raw.get('control_sensor')}
    auxiliary = raw.get('auxiliary_sensors')
    if isinstance(auxiliary, dict):
        sensors.update(auxiliary)
    for name, sensor in sensors.items():
        if not isinstance(sensor, str) or not sensor:
            print(f"  {name}: Not configured")
            continue
        try:
            reader = SensorReader(sensor)
            temp = reader.read_temperature(reader.control_path)
            print(f"  {name}: {temp / 1000.0:.1f}°C")
        except CoolingError as e:
            print(f"  {name}: Error reading ({e})")
    return EXIT_OK


def build_parser():
    parser = argparse.ArgumentParser(
        prog='coolingd',
        description='Trip point thermal governor for ThinkPad fans and Xen CPU P-states',
        epilog='Requires root privileges. Example: sudo coolingd run -v 3'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # run command
    parser_run = subparsers.add_parser('run', help='Run the control loop')
    parser_run.add_argument('-t', '--test', action='store_true',
                            help='Test mode: log transitions, never write hardware')
    parser_run.add_argument('-i', '--interval', type=float,
                            help=f'Loop interval in seconds (default: {ControlConfig.INTERVAL_SEC})')
    parser_run.set_defaults(func=cmd_run)

    # check command
    parser_check = subparsers.add_parser('check', help='Validate hardware and configuration')
    parser_check.set_defaults(func=cmd_check)

    # status command
    parser_status = subparsers.add_parser('status', help='Show current fan, CPU and sensor status')
    parser_status.set_defaults(func=cmd_status)

    for sub in (parser_run, parser_check, parser_status):
        sub.add_argument('-c', '--config', help='JSON configuration file')
        sub.add_argument('-v', '--verbosity',
                         help='0 = error, 1 = warning, 2 = info, 3 = debug (default: $VERBOSITY or 2)')

    return parser


def main(argv=None):
    """Main entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    try:
        verbosity = parse_verbosity(
            args.verbosity if args.verbosity is not None else os.environ.get('VERBOSITY'))
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_CONFIG
    setup_logging(verbosity)

    try:
        return args.func(args)
    except ConfigError as e:
        # Config file problems outside the run loop (status command)
        logger.error('%s', e)
        return e.exit_code


if __name__ == '__main__':
    sys.exit(main())
