import os
import signal
import subprocess

import pytest

from coolingd import pstate_controller
from coolingd.config import HardwareConfig
from coolingd.errors import ActuatorError
from coolingd.lifecycle import SHUTDOWN_SIGNALS
from coolingd.trip_points import AUTO

FREQS = [2601000, 2600000, 2400000, 2200000, 2000000, 1800000,
         1600000, 1400000, 1200000, 1000000, 800000]

XENPM_PARA = """cpu id               : 0
affected_cpus        : 0
cpuinfo frequency    : max [2601000] min [800000] cur [800000]
scaling_driver       : acpi-cpufreq
scaling_avail_gov    : userspace performance powersave ondemand
current_governor     : ondemand
scaling_avail_freq   : 2601000 *2600000 2400000 2200000 2000000 1800000 1600000 1400000 1200000 1000000 800000
scaling frequency    : max [{max_freq}] min [800000] cur [800000]
turbo mode           : enabled
"""

XENPM_STATES = """Max C-state: C7

cpu id               : 0
total P-states       : 11
usable P-states      : 11
current frequency    : 1200 MHz
P0                   : freq       [2601 MHz]

cpu id               : 1
total P-states       : 11
usable P-states      : 11
current frequency    : 800 MHz
P0                   : freq       [2601 MHz]
"""


class FakeXenpm:
    """Stands in for subprocess.run calls to xenpm"""

    def __init__(self, para=XENPM_PARA, max_freq=FREQS[0]):
        self.para = para
        self.max_freq = max_freq
        self.calls = []
        self.fail_on = None

    @property
    def set_calls(self):
        return [int(c[2]) for c in self.calls if c[1] == 'set-scaling-maxfreq']

    def __call__(self, cmd, capture_output=False, text=False, check=False):
        args = list(cmd)
        self.calls.append(args)
        if self.fail_on and self.fail_on in args:
            raise subprocess.CalledProcessError(1, args, output='', stderr='xenpm: failed')
        if args[1] == 'get-cpufreq-para':
            out = self.para.format(max_freq=self.max_freq)
        elif args[1] == 'get-cpufreq-states':
            out = XENPM_STATES
        elif args[1] == 'set-scaling-maxfreq':
            self.max_freq = int(args[2])
            out = ''
        else:
            raise AssertionError(f"unexpected xenpm call {args}")
        return subprocess.CompletedProcess(args, 0, stdout=out, stderr='')


@pytest.fixture
def xenpm(monkeypatch):
    fake = FakeXenpm()
    monkeypatch.setattr(pstate_controller.subprocess, 'run', fake)
    return fake


def _write(path, value):
    with open(path, 'w') as f:
        f.write(f"{value}\n")


class Sysfs:
    """Temporary ThinkPad sysfs tree"""

    def __init__(self, root):
        self.root = str(root)
        self.module_dir = os.path.join(self.root, 'module', 'thinkpad_acpi')
        self.hwmon_dir = os.path.join(self.root, 'devices', 'thinkpad_hwmon')
        self.sensor_dir = os.path.join(self.root, 'class', 'hwmon', 'hwmon0')
        self.xenpm = os.path.join(self.root, 'xenpm')

        os.makedirs(os.path.join(self.module_dir, 'parameters'))
        os.makedirs(self.hwmon_dir)
        os.makedirs(self.sensor_dir)
        _write(os.path.join(self.module_dir, 'parameters', 'fan_control'), 'Y')
        self.write('fan1_input', 2900)
        self.write('pwm1', 128)
        self.write('pwm1_enable', 2)
        self.set_temp(45000)
        _write(os.path.join(self.sensor_dir, 'name'), 'acpitz')
        _write(self.xenpm, '#!/bin/sh')
        os.chmod(self.xenpm, 0o755)

    @property
    def control_sensor(self):
        return os.path.join(self.sensor_dir, 'temp1_input')

    def write(self, name, value):
        _write(os.path.join(self.hwmon_dir, name), value)

    def read(self, name):
        with open(os.path.join(self.hwmon_dir, name)) as f:
            return f.read().strip()

    def set_temp(self, millidegrees):
        _write(self.control_sensor, millidegrees)


@pytest.fixture
def sysfs(tmp_path, monkeypatch):
    tree = Sysfs(tmp_path)
    monkeypatch.setattr(HardwareConfig, 'THINKPAD_MODULE_SYSFS', tree.module_dir)
    monkeypatch.setattr(HardwareConfig, 'THINKPAD_HWMON_SYSFS', tree.hwmon_dir)
    monkeypatch.setattr(HardwareConfig, 'XENPM', tree.xenpm)
    monkeypatch.setattr(HardwareConfig, 'CONTROL_SENSOR', tree.control_sensor)
    monkeypatch.setattr(HardwareConfig, 'AUXILIARY_SENSORS', {})
    return tree


@pytest.fixture(autouse=True)
def restore_signal_handlers():
    saved = {sig: signal.getsignal(sig) for sig in SHUTDOWN_SIGNALS}
    yield
    for sig, handler in saved.items():
        if handler is not None:
            signal.signal(sig, handler)


class FakeFan:
    def __init__(self, setting=AUTO, fail=False):
        self.setting = setting
        self.fail = fail
        self.writes = []

    def get_fan(self):
        return self.setting

    def set_fan(self, setting):
        if self.fail:
            raise ActuatorError('fan write failed')
        self.writes.append(setting)
        self.setting = setting


class FakePState:
    def __init__(self, pstate=0):
        self.pstate = pstate
        self.writes = []

    def get_pstate(self):
        return self.pstate

    def set_pstate(self, setting):
        self.writes.append(setting)
        self.pstate = setting
