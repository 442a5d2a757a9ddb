"""Pulse animation: shared target state and the background frame loop."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from busylight_linux.color import RGB, apply_brightness, pulse_percent
from busylight_linux.session import DeviceSession

log = logging.getLogger(__name__)

FRAME_INTERVAL = 0.033  # ~30 frames per second while pulsing
IDLE_INTERVAL = 0.1
KEEPALIVE_TICKS = 20  # idle ticks between keep-alive sends (~2 s)


@dataclass(frozen=True)
class PulseState:
    """Target animation. The color is in perceptual (sRGB) space."""

    active: bool = False
    color: RGB = (0, 0, 0)
    high_percent: int = 100
    low_percent: int = 50
    period_ms: int = 1000


class AnimationState:
    """Lock-guarded holder for the current PulseState.

    Writers replace the whole value; readers take snapshots.
    """

    def __init__(self, initial: PulseState | None = None) -> None:
        self._lock = threading.Lock()
        self._state = initial if initial is not None else PulseState()

    def snapshot(self) -> PulseState:
        with self._lock:
            return self._state

    def replace(self, state: PulseState) -> bool:
        """Set a new state. Returns False if it equals the current one."""
        with self._lock:
            if state == self._state:
                return False
            self._state = state
            return True

    def deactivate(self) -> None:
        with self._lock:
            if self._state.active:
                self._state = replace(self._state, active=False)

    def is_current(self, state: PulseState) -> bool:
        with self._lock:
            return self._state == state


class AnimationScheduler:
    """Background loop that renders the pulse and keeps the device awake.

    The loop reads a snapshot of the animation state every tick; there is no
    command queue. Idle ticks resend the current frame every KEEPALIVE_TICKS
    ticks so the hardware watchdog does not switch the light off.
    """

    def __init__(
        self,
        state: AnimationState,
        session: DeviceSession,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._state = state
        self._session = session
        self._clock = clock
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._idle_ticks = 0
        self._cycle: PulseState | None = None
        self._cycle_start = 0.0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="busylight-animation", daemon=True)
        self._thread.start()
        log.debug("Animation scheduler started")

    def stop(self, timeout: float | None = 1.0) -> None:
        """Ask the loop to exit and wait for it."""
        self._stop.set()
        if self._thread is None:
            return
        self._thread.join(timeout)
        if self._thread.is_alive():
            # blocked in a device write; start() must not spawn a second loop
            log.warning("Animation scheduler did not stop within %s seconds", timeout)
            return
        self._thread = None
        log.debug("Animation scheduler stopped")

    def run(self) -> None:
        while not self._stop.is_set():
            try:
                delay = self.tick()
            except Exception:
                log.exception("Animation tick failed")
                delay = IDLE_INTERVAL
            self._stop.wait(delay)

    def tick(self) -> float:
        """Run one step of the loop. Returns the delay before the next tick."""
        state = self._state.snapshot()

        if not state.active:
            self._cycle = None
            self._idle_ticks += 1
            if self._idle_ticks >= KEEPALIVE_TICKS:
                self._idle_ticks = 0
                self._session.send()
            return IDLE_INTERVAL

        self._idle_ticks = 0
        if state != self._cycle:
            self._cycle = state
            self._cycle_start = self._clock()
            log.debug(
                "Pulse cycle started: color=%s %d%%-%d%% every %dms",
                state.color, state.high_percent, state.low_percent, state.period_ms,
            )

        elapsed_ms = int((self._clock() - self._cycle_start) * 1000)
        percent = pulse_percent(state.high_percent, state.low_percent, state.period_ms, elapsed_ms)
        if percent is None:
            return IDLE_INTERVAL

        frame = apply_brightness(state.color, percent)
        self._session.write(frame, precondition=lambda: self._state.is_current(state))
        return FRAME_INTERVAL
