"""
Lifecycle manager

Captures the original fan and P-state settings before the control loop
starts and puts them back exactly once on every exit path.
"""

import logging
import signal

from .trip_points import FAN, PSTATE

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGHUP, signal.SIGINT, signal.SIGQUIT,
                    signal.SIGPIPE, signal.SIGTERM)


class Lifecycle:
    """Signal-driven shutdown with a single restoration pass"""

    def __init__(self, fan, pstate, signals=SHUTDOWN_SIGNALS):
        """
        Args:
            fan: FanController
            pstate: PStateController
            signals: Signals that request an orderly shutdown
        """
        self.fan = fan
        self.pstate = pstate
        self.signals = tuple(signals)
        self.state = None
        self.signum = None
        # Set while an actuator write is in flight so a half-applied
        # transition is still restored
        self.writing = False
        self._shut_down = False

    @property
    def stop_requested(self):
        return self.signum is not None

    def install_signal_handlers(self):
        for sig in self.signals:
            signal.signal(sig, self._handle_signal)

    def _handle_signal(self, signum, frame):
        # Only record it, the main loop acts on it at its next check
        if self.signum is None:
            self.signum = signum

    def capture(self, state):
        """
        Record the original actuator settings into state

        Must run after hardware checks and before the first evaluation.
        """
        state.original_fan = self.fan.get_fan()
        logger.debug('Original fan state: %s', state.original_fan)
        state.original_pstate = self.pstate.get_pstate()
        logger.debug('Original min P-state: %d', state.original_pstate)
        self.state = state
        return state

    @property
    def needs_restore(self):
        return self.state is not None and (self.state.needs_restore or self.writing)

    def shutdown(self):
        """
        Restore original fan and P-state settings if a trip point is active

        Runs at most once. Further shutdown signals are ignored from here on.

        Returns:
            True if nothing had to be restored or restoration succeeded
        """
        if self._shut_down:
            return True
        self._shut_down = True

        # No interrupting the restoration
        for sig in self.signals:
            signal.signal(sig, signal.SIG_IGN)

        if self.state is None:
            return True

        logger.info('Shutting down...')
        if not self.needs_restore:
            return True

        ok = True
        try:
            self.fan.set_fan(self.state.original_fan)
        except Exception as e:
            logger.error('Failed to restore fan: %s', e)
            ok = False
        try:
            self.pstate.set_pstate(self.state.original_pstate)
        except Exception as e:
            logger.error('Failed to restore P-state: %s', e)
            ok = False
        return ok

    def apply(self, actions):
        """
        Apply evaluator actions in order (fan before P-state)

        Args:
            actions: List of trip_points.Action
        """
        if not actions:
            return
        self.writing = True
        for action in actions:
            if action.kind == FAN:
                self.fan.set_fan(action.value)
            elif action.kind == PSTATE:
                self.pstate.set_pstate(action.value)
            else:
                raise ValueError(f"unknown action: {action.kind!r}")
        self.writing = False
