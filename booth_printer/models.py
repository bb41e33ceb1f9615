"""Known BLE thermal printer models and the name/UUID heuristics used to find them."""

from dataclasses import dataclass, field
from typing import Dict, Optional

from .escpos import CommandSet, DEFAULT_COMMANDS


@dataclass(frozen=True)
class PrinterModel:
    name: str
    width: int      # printable pixels (58mm ~ 384, 80mm ~ 576)
    dpi: int
    commands: CommandSet = field(default=DEFAULT_COMMANDS)


PRINTER_MODELS: Dict[str, PrinterModel] = {
    m.name: m
    for m in (
        PrinterModel("EPPOS EPX-58B", 384, 203),
        PrinterModel("XPRINTER XP-P300", 384, 203),
        PrinterModel("HOIN HOP H58", 384, 203),
        PrinterModel("BellaV EP-58A", 384, 203),
        PrinterModel("Generic 58mm", 384, 203),
        PrinterModel("Generic 80mm", 576, 203),
    )
}

GENERIC_58MM = PRINTER_MODELS["Generic 58mm"]

NAME_PREFIXES = ("EPPOS", "EPX", "XPRINTER", "HOIN", "BellaV", "Printer", "Thermal")

# Serial-port-like services these printers expose, probed in order
CANDIDATE_SERVICE_UUIDS = (
    "000018f0-0000-1000-8000-00805f9b34fb",
    "00001101-0000-1000-8000-00805f9b34fb",
    "0000ffe0-0000-1000-8000-00805f9b34fb",
)

# (substrings, model name), first hit wins
_NAME_HINTS = (
    (("eppos", "epx"), "EPPOS EPX-58B"),
    (("xprinter", "xp-p300"), "XPRINTER XP-P300"),
    (("hoin", "h58"), "HOIN HOP H58"),
    (("bellav", "58a"), "BellaV EP-58A"),
    (("80",), "Generic 80mm"),
)


def detect_model(device_name: Optional[str]) -> PrinterModel:
    if not device_name:
        return GENERIC_58MM
    if device_name in PRINTER_MODELS:
        return PRINTER_MODELS[device_name]

    n = device_name.lower()
    for hints, model_name in _NAME_HINTS:
        if any(h in n for h in hints):
            return PRINTER_MODELS[model_name]
    return GENERIC_58MM


def matches_known_printer(device_name: Optional[str]) -> bool:
    if not device_name:
        return False
    return device_name in PRINTER_MODELS or device_name.startswith(NAME_PREFIXES)
