"""Main daemon entry point: applies the configured light and keeps the device connected."""

import logging
import signal
import sys
import time

from busylight_linux.color import RGB, apply_brightness
from busylight_linux.config import Config
from busylight_linux.controller import BusylightController
from busylight_linux.session import ConnectError, DeviceSession

log = logging.getLogger(__name__)

USB_RECONNECT_INTERVAL = 10.0  # seconds between discovery attempts while disconnected


class Daemon:
    """Ties together configuration, the busylight controller, and device discovery."""

    def __init__(
        self,
        config: Config,
        session: DeviceSession | None = None,
        controller: BusylightController | None = None,
    ) -> None:
        self._config = config
        self._session = session if session is not None else DeviceSession()
        self._controller = (
            controller if controller is not None else BusylightController(self._session, start=False)
        )
        self._running = True
        self._reload_pending = False

    @property
    def controller(self) -> BusylightController:
        return self._controller

    def _on_shutdown(self, signum: int, _frame: object) -> None:
        sig_name = signal.Signals(signum).name
        log.info("Received %s, shutting down", sig_name)
        self._running = False

    def _on_reload(self, _signum: int, _frame: object) -> None:
        # The main thread may hold the session lock here; the loop does the reload.
        self._reload_pending = True

    def _reload(self) -> None:
        self._reload_pending = False
        log.info("Received SIGHUP, reloading configuration")
        try:
            config = Config.load([])
            self._config = config
            log.info(
                "Configuration reloaded: color=%s, pulse=%s", config.color, config.pulse
            )
        except ValueError as e:
            log.error("Failed to reload configuration: %s", e)
            return
        self._apply_config()

    def apply(self, rgb: RGB, animate: bool) -> None:
        """Show a color decided by an automatic source.

        Does nothing while manual override is enabled. A black color switches
        the light off; animate pulses it if pulsing is enabled in the config.
        """
        if self._controller.manual_override:
            log.debug("Manual override active, ignoring rgb=%s", rgb)
            return

        cfg = self._config
        if rgb == (0, 0, 0):
            self._controller.off()
        elif animate and cfg.pulse:
            self._controller.set_pulse(
                *rgb, cfg.max_brightness, cfg.max_brightness // 2, cfg.pulse_speed
            )
        else:
            self._controller.set_solid(*apply_brightness(rgb, cfg.max_brightness))

    def _apply_config(self) -> None:
        self.apply(self._config.rgb, animate=self._config.pulse)

    def _ensure_connected(self) -> bool:
        """Try to discover the busylight. Reapplies the light on success."""
        if self._controller.is_connected():
            return True

        try:
            self._session.discover_and_connect()
        except ConnectError as e:
            log.warning(
                "Busylight not found (%s), retrying in %.0f seconds", e, USB_RECONNECT_INTERVAL
            )
            return False

        self._apply_config()
        return True

    def _shutdown(self) -> None:
        """Switch the light off and stop the animation thread."""
        self._controller.off()
        self._controller.close()
        self._session.close()

    def _wait(self, seconds: float) -> None:
        """Sleep in small increments so we can respond to signals promptly."""
        end = time.monotonic() + seconds
        while self._running and not self._reload_pending and time.monotonic() < end:
            time.sleep(min(0.5, end - time.monotonic()))

    def run(self) -> None:
        """Main loop: apply the configured light, then watch the connection."""
        log.info(
            "Starting daemon with color=%s, pulse=%s, pulse_speed=%dms, max_brightness=%d%%",
            self._config.color,
            self._config.pulse,
            self._config.pulse_speed,
            self._config.max_brightness,
        )

        signal.signal(signal.SIGTERM, self._on_shutdown)
        signal.signal(signal.SIGINT, self._on_shutdown)
        signal.signal(signal.SIGHUP, self._on_reload)

        self._controller.scheduler.start()
        self._apply_config()

        while self._running:
            if self._reload_pending:
                self._reload()
            self._ensure_connected()
            self._wait(USB_RECONNECT_INTERVAL)

        self._shutdown()
        log.info("Daemon stopped")


def main() -> None:
    """Entry point."""
    try:
        config = Config.load()
    except (ValueError, SystemExit) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    config.setup_logging()
    Daemon(config).run()


if __name__ == "__main__":
    main()
