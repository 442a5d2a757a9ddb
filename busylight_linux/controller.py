"""Thread-safe busylight controller."""

import logging
import threading

from busylight_linux.animation import AnimationScheduler, AnimationState, PulseState
from busylight_linux.color import degamma
from busylight_linux.session import ConnectError, DeviceDescriptor, DeviceSession

log = logging.getLogger(__name__)


class BusylightController:
    """Entry point for callers: solid colors, pulses and status queries.

    Owns the animation state and its scheduler thread. A solid color is
    written immediately; a pulse is picked up by the scheduler on its next
    tick.
    """

    def __init__(self, session: DeviceSession | None = None, start: bool = True) -> None:
        if session is None:
            session = DeviceSession()
            try:
                session.discover_and_connect()
            except ConnectError as e:
                log.warning("Busylight not available: %s", e)

        self._session = session
        self._animation = AnimationState()
        self._scheduler = AnimationScheduler(self._animation, session)
        self._manual_lock = threading.Lock()
        self._manual_override = False

        if start:
            self._scheduler.start()

    @property
    def session(self) -> DeviceSession:
        return self._session

    @property
    def animation(self) -> AnimationState:
        return self._animation

    @property
    def scheduler(self) -> AnimationScheduler:
        return self._scheduler

    @property
    def manual_override(self) -> bool:
        """Advisory flag: automatic callers should leave the light alone while set."""
        with self._manual_lock:
            return self._manual_override

    @manual_override.setter
    def manual_override(self, value: bool) -> None:
        with self._manual_lock:
            self._manual_override = value
        log.info("Manual override %s", "enabled" if value else "disabled")

    def set_solid(self, r: int, g: int, b: int) -> None:
        """Stop any pulse and show a color (sRGB, degamma applied)."""
        self._animation.deactivate()
        self._session.write((degamma(r), degamma(g), degamma(b)))

    def set_pulse(
        self,
        r: int,
        g: int,
        b: int,
        high_percent: int,
        low_percent: int,
        period_ms: int,
    ) -> None:
        """Pulse a color between two brightness levels.

        Repeating the current parameters does not restart the cycle.
        """
        state = PulseState(
            active=True,
            color=(r, g, b),
            high_percent=high_percent,
            low_percent=low_percent,
            period_ms=period_ms,
        )
        if self._animation.replace(state):
            log.info(
                "Pulsing rgb=%s between %d%% and %d%% every %dms",
                state.color, high_percent, low_percent, period_ms,
            )

    def stop_pulse(self) -> None:
        """Stop pulsing. The last frame stays on the light."""
        self._animation.deactivate()

    def off(self) -> None:
        self.set_solid(0, 0, 0)

    def is_connected(self) -> bool:
        return self._session.is_connected

    def device_info(self) -> DeviceDescriptor | None:
        return self._session.descriptor

    def close(self) -> None:
        """Stop the scheduler thread."""
        self._scheduler.stop()
