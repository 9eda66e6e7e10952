# xair_bridge/faders.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

from .settings import FaderMapping
from .state import BridgeState, FaderState

logger = logging.getLogger(__name__)

# Fire-and-forget: hands the command to the radio relay and returns at once.
DispatchFn = Callable[[str], None]


@dataclass
class FaderUpdate:
    channel: int
    value: float
    is_active: bool
    command_executed: bool
    mapped: bool

    def to_payload(self) -> dict:
        return {
            "channel": self.channel,
            "value": self.value,
            "isActive": self.is_active,
            "commandExecuted": self.command_executed,
        }


def crossed_up(mapping: FaderMapping, previous: float, current: float) -> bool:
    return previous < mapping.threshold <= current


def crossed_down(mapping: FaderMapping, previous: float, current: float) -> bool:
    if mapping.fade_down_threshold is None or not mapping.fade_down_command:
        return False
    return previous >= mapping.fade_down_threshold > current


class FaderTriggerEngine:
    """
    Fader automation: fires radio commands on threshold crossings and, for
    mappings that listen to mute, on mute/unmute edges.
    """

    def __init__(
        self,
        state: BridgeState,
        dispatch: DispatchFn,
        mappings: Optional[List[FaderMapping]] = None,
        retrigger_guard: float = 0.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state = state
        self._dispatch = dispatch
        self.mappings: List[FaderMapping] = list(mappings or [])
        self.retrigger_guard = float(retrigger_guard)
        self._clock = clock

    def configure(self, mappings: List[FaderMapping], retrigger_guard: float = 0.0) -> None:
        self.mappings = [m for m in mappings if m.enabled]
        self.retrigger_guard = float(retrigger_guard)
        logger.info("Loaded %d active fader mapping(s)", len(self.mappings))

    def mappings_for(self, channel: int) -> List[FaderMapping]:
        # stereo pairs are driven by the primary channel's fader
        return [m for m in self.mappings if m.enabled and m.channel == channel]

    def is_mapped(self, channel: int) -> bool:
        return any(m.covers(channel) for m in self.mappings)

    # -------------------- dispatch --------------------

    def _fire(self, st: FaderState, command: str, what: str) -> bool:
        now = self._clock()
        if (
            self.retrigger_guard > 0
            and st.last_triggered_at is not None
            and now - st.last_triggered_at < self.retrigger_guard
        ):
            logger.info("Channel %d %s suppressed (retrigger guard)", st.channel, what)
            return False
        logger.info("Channel %d %s: %s", st.channel, what, command)
        st.last_triggered_at = now
        self._dispatch(command)
        return True

    # -------------------- updates --------------------

    def on_fader(self, channel: int, value: float) -> FaderUpdate:
        st = self.state.fader(channel)
        previous = st.value
        st.value = float(value)

        relevant = self.mappings_for(channel)
        is_active = False
        executed = False

        for m in relevant:
            if crossed_up(m, previous, st.value):
                if m.listen_to_mute and st.muted:
                    logger.info("Fade up ignored for channel %d (muted, listenToMute)", channel)
                elif m.command:
                    executed = self._fire(st, m.command, "fade up") or executed

            if crossed_down(m, previous, st.value):
                executed = self._fire(st, m.fade_down_command, "fade down") or executed

            if st.value >= m.threshold:
                is_active = True

        st.is_active = is_active
        st.command_executed = executed
        return FaderUpdate(channel, st.value, is_active, executed, mapped=bool(relevant))

    def on_mute(self, channel: int, muted: bool) -> FaderUpdate:
        st = self.state.fader(channel)
        was_muted = st.muted
        st.muted = bool(muted)

        executed = False
        if st.muted != was_muted:
            for m in self.mappings:
                if not (m.enabled and m.listen_to_mute and m.covers(channel)):
                    continue
                if st.muted:
                    if m.fade_down_command:
                        executed = self._fire(st, m.fade_down_command, "mute") or executed
                elif m.command:
                    # unmuting a closed fader is not a start; stereo pairs
                    # follow the primary channel's fader
                    primary = self.state.peek_fader(m.channel)
                    if primary is not None and primary.value > 0:
                        executed = self._fire(st, m.command, "unmute") or executed
                    else:
                        logger.info("Unmute ignored for channel %d (fader at 0)", channel)

        st.command_executed = executed
        return FaderUpdate(channel, st.value, st.is_active, executed, mapped=self.is_mapped(channel))
