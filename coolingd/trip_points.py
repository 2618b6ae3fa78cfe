"""
Trip point evaluator

Maps each control sensor sample to the highest trip point it reaches and
decides whether to hold, debounce or commit a transition.
"""

import logging
from collections import namedtuple

logger = logging.getLogger(__name__)

# Setting values besides plain integers. None means "leave unchanged".
AUTO = 'auto'
MAX = 'max'

FAN = 'fan'
PSTATE = 'pstate'

# index is 1-based, temp is in millidegrees Celsius
TripPoint = namedtuple('TripPoint', ['index', 'temp', 'debounce', 'fan', 'pstate'])

Action = namedtuple('Action', ['kind', 'value'])


class ControlState:
    """Mutable control state owned by the main loop"""

    def __init__(self, original_fan=None, original_pstate=None):
        self.active_index = 0          # 0 = baseline, no trip point active
        self.debounce_index = 0        # 0 = not debouncing
        self.debounce_remaining = 0
        self.original_fan = original_fan
        self.original_pstate = original_pstate

    @property
    def needs_restore(self):
        return self.active_index > 0

    @property
    def debouncing(self):
        return self.debounce_index != 0

    def cancel_debounce(self):
        self.debounce_index = 0
        self.debounce_remaining = 0

    def __repr__(self):
        return (f"ControlState(active={self.active_index}, "
                f"debounce={self.debounce_index}/{self.debounce_remaining})")


class TripPointEvaluator:
    """Trip point state machine with per-trip-point debounce"""

    def __init__(self, trip_points):
        """
        Initialize evaluator

        Args:
            trip_points: Validated TripPoints ordered by index (1..N)
        """
        self.trip_points = tuple(trip_points)
        if not self.trip_points:
            raise ValueError("at least one trip point is required")

    def candidate(self, sample):
        """
        Find the highest trip point whose threshold the sample reaches

        Returns:
            Trip point index (1..N), or 0 if the sample is below all of them
        """
        for tp in reversed(self.trip_points):
            if sample >= tp.temp:
                return tp.index
        return 0

    def evaluate(self, sample, state):
        """
        Advance the state machine by one sample

        Args:
            sample: Control sensor reading (millidegrees)
            state: ControlState, updated in place

        Returns:
            List of Actions to apply, in order (fan first). Empty if
            nothing changes this cycle.
        """
        index = self.candidate(sample)

        if index == 0:
            return self._drop_to_baseline(state)

        if index == state.active_index:
            if state.debouncing:
                # Sample no longer sustains the pending target
                logger.debug('Trip point %d no longer reached, debounce cancelled',
                             state.debounce_index)
                state.cancel_debounce()
            return []

        tp = self.trip_points[index - 1]
        logger.info('Trip point %d reached', index)

        if tp.debounce > 0:
            if state.debounce_index != index:
                # New target always restarts at its own debounce length
                state.debounce_index = index
                state.debounce_remaining = tp.debounce
            else:
                state.debounce_remaining -= 1
            if state.debounce_remaining > 0:
                logger.info('Debouncing for %d iterations', state.debounce_remaining)
                return []

        # Also clears a pending debounce when a debounce-less trip point wins
        state.cancel_debounce()
        state.active_index = index

        actions = []
        if tp.fan is not None:
            actions.append(Action(FAN, tp.fan))
        if tp.pstate is not None:
            actions.append(Action(PSTATE, tp.pstate))
        return actions

    def _drop_to_baseline(self, state):
        """Below every threshold: restore immediately, never debounced"""
        actions = []
        if state.active_index != 0:
            logger.info('Below all trip points, restoring original cooling state')
            actions = [Action(FAN, state.original_fan),
                       Action(PSTATE, state.original_pstate)]
            state.active_index = 0
        if state.debouncing:
            logger.debug('Trip point %d no longer active, debounce cancelled',
                         state.debounce_index)
            state.cancel_debounce()
        return actions
