"""Configuration parsing from /etc/default/busylight-linux and CLI arguments."""

import argparse
import logging
import os
from dataclasses import dataclass

from dotenv import dotenv_values

from busylight_linux.color import parse_hex_color

DEFAULT_CONFIG_PATH = "/etc/default/busylight-linux"


def _parse_bool(raw: str) -> bool:
    return raw.lower() in ("true", "1", "yes")


def _parse_cli_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="busylight-linux",
        description="Kuando Busylight Linux controller",
    )
    parser.add_argument(
        "--color",
        help="Light color as #rrggbb",
    )
    parser.add_argument(
        "--pulse",
        action="store_true",
        default=None,
        help="Pulse the light instead of showing a solid color",
    )
    parser.add_argument(
        "--pulse-speed",
        type=int,
        help="Pulse period in milliseconds",
    )
    parser.add_argument(
        "--max-brightness",
        type=int,
        help="Brightness ceiling (0-100%%)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        default=None,
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-level",
        choices=("DEBUG", "INFO", "WARNING", "ERROR"),
        help="Log level (overrides config file)",
    )
    return parser.parse_args(argv)


@dataclass
class Config:
    """Daemon configuration."""

    color: str = "#ffffff"
    pulse: bool = False
    pulse_speed: int = 5000
    max_brightness: int = 60
    log_level: str = "INFO"
    debug: bool = False

    def __post_init__(self) -> None:
        parse_hex_color(self.color)

        if self.pulse_speed <= 0:
            raise ValueError(f"Pulse speed must be positive, got {self.pulse_speed}")

        if not (0 <= self.max_brightness <= 100):
            raise ValueError(f"Max brightness must be 0-100, got {self.max_brightness}")

        if self.debug:
            self.log_level = "DEBUG"

    @property
    def rgb(self) -> tuple[int, int, int]:
        return parse_hex_color(self.color)

    @classmethod
    def load(cls, argv: list[str] | None = None) -> "Config":
        """Load configuration from environment file, env vars, and CLI args.

        Priority (highest to lowest):
        1. CLI arguments
        2. Environment variables (set by systemd EnvironmentFile)
        3. /etc/default/busylight-linux file
        4. Dataclass defaults
        """
        file_env = {k: v for k, v in dotenv_values(DEFAULT_CONFIG_PATH).items() if v is not None}

        def env(key: str) -> str | None:
            if key in os.environ:
                return os.environ[key]
            return file_env.get(key)

        kwargs: dict[str, object] = {}

        if (v := env("COLOR")) is not None:
            kwargs["color"] = v

        if (v := env("PULSE")) is not None:
            kwargs["pulse"] = _parse_bool(v)

        if (v := env("PULSE_SPEED")) is not None:
            try:
                kwargs["pulse_speed"] = int(v)
            except ValueError:
                pass

        if (v := env("MAX_BRIGHTNESS")) is not None:
            try:
                kwargs["max_brightness"] = int(v)
            except ValueError:
                pass

        if (v := env("LOG_LEVEL")) is not None:
            kwargs["log_level"] = v.upper()

        if (v := env("DEBUG")) is not None:
            kwargs["debug"] = _parse_bool(v)

        # CLI arguments override everything
        args = _parse_cli_args(argv)

        if args.color is not None:
            kwargs["color"] = args.color

        if args.pulse is True:
            kwargs["pulse"] = True

        if args.pulse_speed is not None:
            kwargs["pulse_speed"] = args.pulse_speed

        if args.max_brightness is not None:
            kwargs["max_brightness"] = args.max_brightness

        if args.log_level is not None:
            kwargs["log_level"] = args.log_level

        if args.debug is True:
            kwargs["debug"] = True

        return cls(**kwargs)

    def setup_logging(self) -> None:
        """Configure logging based on this config."""
        logging.basicConfig(
            level=getattr(logging, self.log_level),
            format="[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
