#!/usr/bin/env python3
"""
booth-printer command line.

    booth-printer scan                      # list nearby BLE devices
    booth-printer print strip.png --device AA:BB:CC:DD:EE:FF
    booth-printer test-print --device AA:BB:CC:DD:EE:FF --direct
    booth-printer preview strip.png out.png --mode floyd
"""

import argparse
import asyncio
import inspect
import logging
import sys
from contextlib import asynccontextmanager

from PIL import Image

from .bridge import BridgeHost, channel_pair
from .config import SCAN_TIMEOUT, load_output_settings
from .direct import DirectBlePrinter
from .errors import PrinterError
from .halftone import DitherMode
from .imaging import decode_image
from .native import NativeBlePrinter
from .service import PrinterService

logger = logging.getLogger("booth_printer")


@asynccontextmanager
async def open_service(args, settings):
    """Direct, native, or native behind an in-process bridge (--bridge)."""
    if getattr(args, "bridge", False):
        web, host_end = channel_pair()
        host = BridgeHost(NativeBlePrinter(), host_end)
        host.start()
        service = PrinterService.create(channel=web, settings=settings)
        try:
            async with service:
                yield service
        finally:
            await host.close()
            await host.printer.close()
            await web.close()
            await host_end.close()
        return

    if getattr(args, "direct", False):
        backend = DirectBlePrinter(scan_timeout=getattr(args, "timeout", SCAN_TIMEOUT))
    else:
        backend = NativeBlePrinter(scan_timeout=getattr(args, "timeout", SCAN_TIMEOUT))
    async with PrinterService(backend, settings) as service:
        yield service


async def cmd_scan(args, settings) -> int:
    async with open_service(args, settings) as service:
        devices = await service.scan_printers()
    if not devices:
        logger.info("No devices found")
        return 1
    for d in devices:
        rssi = f"{d.rssi} dBm" if d.rssi is not None else "?"
        print(f"{d.id}  {d.name:<24}  {rssi}")
    return 0


async def cmd_print(args, settings) -> int:
    async with open_service(args, settings) as service:
        await service.connect(args.device)
        mode = DitherMode(args.mode) if args.mode else None
        await service.print_image(args.image, width=args.width, mode=mode)
        logger.info("Done.")
        await service.disconnect()
    return 0


async def cmd_test_print(args, settings) -> int:
    async with open_service(args, settings) as service:
        await service.connect(args.device)
        await service.print_test_receipt()
        logger.info("Done.")
        await service.disconnect()
    return 0


def cmd_preview(args, settings) -> int:
    service = PrinterService(DirectBlePrinter(), settings)
    mode = DitherMode(args.mode) if args.mode else None
    bitmap = service.render(decode_image(args.image), width=args.width, mode=mode)
    # Mode "1": 0 is black, so invert the printer's 1=black bits
    out = Image.frombytes("L", (bitmap.width, bitmap.height),
                          bytes(0 if b else 255 for b in bitmap.bits)).convert("1")
    out.save(args.output)
    logger.info("Wrote %dx%d preview to %s", bitmap.width, bitmap.height, args.output)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="booth-printer", description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    common.add_argument("--settings", help="Printer output settings JSON")

    ble = argparse.ArgumentParser(add_help=False)
    group = ble.add_mutually_exclusive_group()
    group.add_argument("--direct", action="store_true",
                       help="Known printer models only, fixed chunk size")
    group.add_argument("--bridge", action="store_true",
                       help="Go through the bridge protocol to an in-process host")

    render = argparse.ArgumentParser(add_help=False)
    render.add_argument("--mode", choices=[m.value for m in DitherMode], help="Halftone algorithm")
    render.add_argument("--width", type=int, help="Target pixel width")

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("scan", parents=[common, ble], help="List BLE devices")
    p.add_argument("--timeout", type=float, default=SCAN_TIMEOUT)
    p.set_defaults(func=cmd_scan)

    p = sub.add_parser("print", parents=[common, ble, render], help="Print an image")
    p.add_argument("image")
    p.add_argument("--device", required=True, help="BLE address / device id")
    p.set_defaults(func=cmd_print)

    p = sub.add_parser("test-print", parents=[common, ble], help="Print a test receipt")
    p.add_argument("--device", required=True, help="BLE address / device id")
    p.set_defaults(func=cmd_test_print)

    p = sub.add_parser("preview", parents=[common, render], help="Save the dithered bitmap as PNG")
    p.add_argument("image")
    p.add_argument("output")
    p.set_defaults(func=cmd_preview)

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(message)s",
        datefmt="%H:%M:%S",
    )
    settings = load_output_settings(args.settings)

    try:
        if inspect.iscoroutinefunction(args.func):
            return asyncio.run(args.func(args, settings))
        return args.func(args, settings)
    except PrinterError as e:
        logger.error("%s", e)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
