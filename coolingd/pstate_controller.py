"""
P-state controller interface

Interfaces with the xenpm binary to discover CPU P-states and to cap the
CPU scaling frequency.
"""

import logging
import os
import re
import subprocess

from .errors import ActuatorError, HardwareError
from .trip_points import MAX

logger = logging.getLogger(__name__)

# "scaling_avail_freq   : 2601000 *2600000 2400000 ... 800000"
AVAIL_FREQ_RE = re.compile(r'^scaling_avail_freq\s*:((?:[ \t]+\*?\d+)+)', re.MULTILINE)
# "scaling frequency    : max [2601000] min [800000] cur [800000]"
SCALING_MAX_RE = re.compile(r'^scaling frequency\s*:.*max\s*\[(\d+)', re.MULTILINE)
# "current frequency    : 1200 MHz"
CURRENT_FREQ_RE = re.compile(r'^current.+ (\d+) MHz$', re.MULTILINE)


class PStateTable:
    """Available P-state frequencies, index = P-state number (as xenpm lists them)"""

    def __init__(self, frequencies):
        self.frequencies = tuple(int(f) for f in frequencies)
        if not self.frequencies:
            raise HardwareError("Failed to parse CPU P-states from xenpm")

    @property
    def max_pstate(self):
        return len(self.frequencies) - 1

    def resolve(self, setting):
        """Turn 'max' or an index into a P-state index"""
        if setting == MAX:
            return self.max_pstate
        if isinstance(setting, bool) or not isinstance(setting, int):
            raise ValueError(f"invalid P-state setting: {setting!r}")
        if not 0 <= setting <= self.max_pstate:
            raise ValueError(f"P-state must be between 0 and {self.max_pstate}")
        return setting

    def frequency(self, setting):
        return self.frequencies[self.resolve(setting)]

    def index_for(self, freq):
        """
        Map a scaling frequency back to a P-state index

        Returns:
            First P-state whose frequency does not exceed freq, or max_pstate
        """
        for index, pstate_freq in enumerate(self.frequencies):
            if freq >= pstate_freq:
                return index
        return self.max_pstate

    def __len__(self):
        return len(self.frequencies)

    def __repr__(self):
        return f"PStateTable({list(self.frequencies)})"


class PStateController:
    """Interface to Xen CPU frequency control using the xenpm binary"""

    def __init__(self, xenpm_path, test_mode=False):
        """
        Initialize P-state controller

        Args:
            xenpm_path: Path to xenpm binary
            test_mode: If True, don't actually set P-states
        """
        self.xenpm_path = xenpm_path
        self.test_mode = test_mode
        self.table = None

    def check_available(self):
        if not os.path.exists(self.xenpm_path):
            raise HardwareError(f"xenpm not found at {self.xenpm_path}")
        if not os.access(self.xenpm_path, os.X_OK):
            raise HardwareError(f"{self.xenpm_path} not executable")

    def _run_xenpm(self, *args, error=ActuatorError):
        """
        Run xenpm command and return output

        Args:
            *args: Command arguments to pass to xenpm
            error: Exception type raised on failure

        Returns:
            Command output as string
        """
        try:
            result = subprocess.run(
                [self.xenpm_path] + list(args),
                capture_output=True,
                text=True,
                check=True
            )
            return result.stdout
        except subprocess.CalledProcessError as e:
            raise error(f"xenpm {' '.join(args)} failed: {(e.stderr or '').strip()}") from e
        except OSError as e:
            raise error(f"Cannot run {self.xenpm_path}: {e}") from e

    def probe(self):
        """
        Read the available P-state frequencies once at startup

        Returns:
            PStateTable

        Raises:
            HardwareError if xenpm fails or lists no frequencies
        """
        output = self._run_xenpm('get-cpufreq-para', '0', error=HardwareError)
        match = AVAIL_FREQ_RE.search(output)
        freqs = match.group(1).replace('*', '').split() if match else []
        self.table = PStateTable(freqs)

        for index, freq in enumerate(self.table.frequencies):
            logger.debug('P-state %2d: %7d Hz', index, freq)
        logger.debug('%d CPU P-states found', len(self.table))
        return self.table

    def _require_table(self):
        if self.table is None:
            raise RuntimeError("P-state table not probed yet")
        return self.table

    def get_pstate(self):
        """
        Read the current P-state from the scaling frequency cap

        Returns:
            P-state index
        """
        table = self._require_table()
        output = self._run_xenpm('get-cpufreq-para', '0')
        match = SCALING_MAX_RE.search(output)
        if not match:
            raise ActuatorError("Failed to parse scaling frequency from xenpm")
        return table.index_for(int(match.group(1)))

    def set_pstate(self, setting):
        """
        Cap CPU frequency at the given P-state

        Args:
            setting: P-state index or 'max'
        """
        table = self._require_table()
        pstate = table.resolve(setting)
        freq = table.frequency(pstate)
        logger.info('New minimum CPU P-state: %d (%d Hz)', pstate, freq)

        if self.test_mode:
            return

        self._run_xenpm('set-scaling-maxfreq', str(freq))

    def read_current_frequencies(self):
        """
        Read current per-core frequencies

        Returns:
            List of frequencies in MHz, one per core
        """
        output = self._run_xenpm('get-cpufreq-states')
        return [int(mhz) for mhz in CURRENT_FREQ_RE.findall(output)]
