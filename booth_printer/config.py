import json
import logging
import math
import os
from dataclasses import dataclass, fields
from typing import Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# CONNECTION
# ---------------------------------------------------------------------------

CONNECT_TIMEOUT = 10.0      # seconds, raced against client.connect()
SCAN_TIMEOUT = 5.0

TARGET_MTU = 512
DEFAULT_PAYLOAD_SIZE = 20   # BLE minimum guaranteed payload (MTU 23 - 3)
ATT_OVERHEAD = 3
MTU_TIMEOUT = 2.0

DIRECT_CHUNK_SIZE = 100     # no MTU API on the direct path

# ---------------------------------------------------------------------------
# BRIDGE
# ---------------------------------------------------------------------------

BRIDGE_CHUNK_SIZE = 5000    # characters of base64 per message
BRIDGE_CHUNK_PAUSE = 0.01

# ---------------------------------------------------------------------------
# IMAGE
# ---------------------------------------------------------------------------

DEFAULT_PRINT_WIDTH = 384   # 58mm printers
IMAGE_LOAD_TIMEOUT = 10.0

SETTINGS_ENV = "BOOTH_PRINTER_SETTINGS"

DITHER_MODES = ("ordered", "floyd", "threshold")


@dataclass
class OutputSettings:
    threshold: int = 165
    gamma: float = 1.25
    dithering: bool = True
    sharpen: float = 0.45
    dither_mode: str = "ordered"
    composition_threshold: int = 128
    width: int = DEFAULT_PRINT_WIDTH


_CAMEL_KEYS = {
    "ditherMode": "dither_mode",
    "compositionDitherThreshold": "composition_threshold",
}

_LIMITS = {
    "threshold": lambda v: 0 <= v <= 255,
    "composition_threshold": lambda v: 0 <= v <= 255,
    "gamma": lambda v: v > 0,
    "sharpen": lambda v: v >= 0,
    "width": lambda v: v > 0,
}

_TRUE = ("true", "yes", "on", "1")
_FALSE = ("false", "no", "off", "0")


def _coerce(kind, value):
    """Convert a JSON value to the field's type, or raise ValueError."""
    if kind is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, int) and value in (0, 1):
            return bool(value)
        if isinstance(value, str) and value.strip().lower() in _TRUE + _FALSE:
            return value.strip().lower() in _TRUE
        raise ValueError(f"expected a boolean, got {value!r}")

    if kind is str:
        if not isinstance(value, str):
            raise ValueError(f"expected a string, got {value!r}")
        return value

    # JSON true/false is not a number
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, str):
        value = value.strip()
    if kind is int:
        number = float(value)
        if not number.is_integer():
            raise ValueError(f"expected a whole number, got {value!r}")
        return int(number)
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"expected a finite number, got {value!r}")
    return number


def load_output_settings(path: Optional[str] = None) -> OutputSettings:
    """
    Read printer output settings from a JSON file.

    Keys may be camelCase (as stored by the booth admin page) or snake_case.
    Explicit 0/false values are kept. Missing or broken files give defaults.
    """
    path = path or os.environ.get(SETTINGS_ENV)
    settings = OutputSettings()
    if not path:
        return settings
    if not os.path.exists(path):
        logger.warning("Settings file %s not found, using defaults", path)
        return settings

    try:
        with open(path, "r") as f:
            data = json.load(f)
    except (OSError, ValueError) as e:
        logger.warning("Failed to load settings from %s: %s", path, e)
        return settings
    if not isinstance(data, dict):
        logger.warning("Settings file %s is not a JSON object, using defaults", path)
        return settings

    kinds = {f.name: f.type for f in fields(OutputSettings)}
    for key, value in data.items():
        name = _CAMEL_KEYS.get(key, key)
        if name not in kinds or value is None:
            continue
        try:
            value = _coerce(kinds[name], value)
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring setting %s: %s", key, e)
            continue
        check = _LIMITS.get(name)
        if check is not None and not check(value):
            logger.warning("Ignoring setting %s: %r is out of range", key, value)
            continue
        setattr(settings, name, value)

    if settings.dither_mode not in DITHER_MODES:
        logger.warning("Unknown dither mode %r, using ordered", settings.dither_mode)
        settings.dither_mode = "ordered"

    logger.debug("Loaded output settings: %s", settings)
    return settings
