"""Color correction: perceptual input values to linear LED drive values."""

import math

RGB = tuple[int, int, int]

# Perceived brightness to PWM duty cycle
BRIGHTNESS_GAMMA = 2.8


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def degamma(value: int) -> int:
    """Convert an 8-bit sRGB channel value to a linear 8-bit drive value."""
    v = value / 255.0
    if v <= 0.04045:
        linear = v / 12.92
    else:
        linear = ((v + 0.055) / 1.055) ** 2.4
    return int(_clamp(math.floor(linear * 255.0 + 0.5), 0, 255))


def brightness_factor(percent: float) -> float:
    """Linear channel multiplier for a perceived brightness percentage (0-100)."""
    return (_clamp(percent, 0.0, 100.0) / 100.0) ** BRIGHTNESS_GAMMA


def apply_brightness(rgb: RGB, percent: float) -> RGB:
    """Dim a color to a perceived brightness percentage.

    Channels are truncated, not rounded. No degamma is applied.
    """
    factor = brightness_factor(percent)
    r, g, b = rgb
    return int(r * factor), int(g * factor), int(b * factor)


def ease_in_out_sine(progress: float) -> float:
    """Sinusoidal ease mapping [0, 1] onto [0, 1] with flat ends."""
    return 0.5 + 0.5 * math.sin(math.pi * progress - math.pi / 2)


def pulse_percent(high: float, low: float, period_ms: int, elapsed_ms: int) -> float | None:
    """Brightness percentage of a pulse cycle at a point in time.

    The period is split into a falling half (high -> low) and a rising half
    (low -> high), each eased so the turnaround points are smooth.
    Returns None if the period is not positive.
    """
    if period_ms <= 0:
        return None

    position = elapsed_ms % period_ms
    half = period_ms / 2
    falling = position < half
    progress = position / half if falling else (position - half) / half
    eased = ease_in_out_sine(_clamp(progress, 0.0, 1.0))

    if falling:
        return high + (low - high) * eased
    return low + (high - low) * eased


def parse_hex_color(text: str) -> RGB:
    """Parse '#rrggbb' or 'rrggbb' into an RGB tuple.

    Raises ValueError on malformed input.
    """
    value = text.strip()
    if value.startswith("#"):
        value = value[1:]
    if len(value) != 6:
        raise ValueError(f"Invalid color '{text}'. Expected #rrggbb")
    try:
        return int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
    except ValueError:
        raise ValueError(f"Invalid color '{text}'. Expected #rrggbb") from None
