import pytest
from bleak.exc import BleakError

from booth_printer import escpos
from booth_printer.direct import DirectBlePrinter
from booth_printer.errors import NoWritableCharacteristicError
from booth_printer.models import (
    GENERIC_58MM,
    PRINTER_MODELS,
    detect_model,
    matches_known_printer,
)

from .conftest import (
    PRINTER_SERVICE,
    SPP_SERVICE,
    ClientFactory,
    FakeCharacteristic,
    FakeScanner,
    FakeService,
    FakeServiceCollection,
    make_bitmap,
)

FFE0_SERVICE = "0000ffe0-0000-1000-8000-00805f9b34fb"


def serial_services():
    return [
        # Not a candidate service, even though it is writable
        FakeService(PRINTER_SERVICE, [
            FakeCharacteristic("0000ff03-0000-1000-8000-00805f9b34fb", ["write-without-response"]),
        ]),
        FakeService(FFE0_SERVICE, [
            FakeCharacteristic("0000ffe1-0000-1000-8000-00805f9b34fb", ["write"]),
        ]),
        FakeService(SPP_SERVICE, [
            FakeCharacteristic("00002af0-0000-1000-8000-00805f9b34fb", ["notify"]),
            FakeCharacteristic("00002af1-0000-1000-8000-00805f9b34fb", ["write"]),
        ]),
    ]


def make_printer(factory, scanner=None, **kwargs):
    kwargs.setdefault("write_delay", 0)
    return DirectBlePrinter(client_factory=factory, scanner=scanner or FakeScanner(), **kwargs)


@pytest.mark.parametrize("name,model", [
    ("EPPOS EPX-58B", "EPPOS EPX-58B"),
    ("epx-58 blue", "EPPOS EPX-58B"),
    ("XP-P300_BT", "XPRINTER XP-P300"),
    ("MyH58", "HOIN HOP H58"),
    ("BellaV-58A", "BellaV EP-58A"),
    ("Printer-80", "Generic 80mm"),
    ("Mystery", "Generic 58mm"),
    (None, "Generic 58mm"),
    ("", "Generic 58mm"),
])
def test_detect_model(name, model):
    assert detect_model(name).name == model


def test_model_widths():
    assert PRINTER_MODELS["Generic 80mm"].width == 576
    assert all(m.dpi == 203 for m in PRINTER_MODELS.values())
    assert GENERIC_58MM.width == 384


@pytest.mark.parametrize("name,known", [
    ("EPPOS EPX-58B", True),
    ("EPX-1234", True),
    ("Thermal Printer", True),
    ("Generic 80mm", True),
    ("eppos", False),
    ("Headphones", False),
    (None, False),
])
def test_matches_known_printer(name, known):
    assert matches_known_printer(name) is known


@pytest.mark.asyncio
async def test_scan_lists_known_printers_only(scanner):
    printer = make_printer(ClientFactory(), scanner)
    devices = await printer.scan_devices()
    assert [d.name for d in devices] == ["Thermal-80mm", "EPPOS EPX-58B"]


@pytest.mark.asyncio
async def test_probes_candidate_services_in_order(scanner):
    factory = ClientFactory(services=serial_services())
    printer = make_printer(factory, scanner)
    session = await printer.connect("AA:00:00:00:00:01")
    assert session.service_uuid == SPP_SERVICE
    assert session.characteristic_uuid == "00002af1-0000-1000-8000-00805f9b34fb"
    assert session.write_without_response is False
    assert session.payload_size == 100


@pytest.mark.asyncio
async def test_service_lookup_errors_are_skipped():
    class FlakyServices(FakeServiceCollection):
        def get_service(self, uuid):
            if uuid == SPP_SERVICE:
                raise BleakError("Multiple Services with this UUID")
            return super().get_service(uuid)

    base = ClientFactory(services=serial_services())

    def make(address, disconnected_callback=None):
        client = base(address, disconnected_callback)
        client.services = FlakyServices(serial_services())
        return client

    session = await make_printer(make).connect("AA:00:00:00:00:01")
    assert session.service_uuid == FFE0_SERVICE


@pytest.mark.asyncio
async def test_no_candidate_service():
    factory = ClientFactory(services=serial_services()[:1])
    printer = make_printer(factory)
    with pytest.raises(NoWritableCharacteristicError):
        await printer.connect("AA:00:00:00:00:01")
    assert printer.session is None
    assert factory.last.disconnect_calls == 1


@pytest.mark.asyncio
async def test_model_follows_connected_device(scanner):
    printer = make_printer(ClientFactory(services=serial_services()), scanner)
    assert printer.print_width == 384
    await printer.scan_devices()

    await printer.connect("AA:00:00:00:00:03")  # Thermal-80mm
    assert printer.model.name == "Generic 80mm"
    assert printer.print_width == 576

    await printer.disconnect()
    assert printer.model is None
    assert printer.print_width == 384


@pytest.mark.asyncio
async def test_print_uses_fixed_chunks():
    factory = ClientFactory(services=serial_services())
    printer = make_printer(factory, chunk_size=64)
    await printer.connect("AA:00:00:00:00:01")
    bitmap = make_bitmap(384, 16, fill=1)
    await printer.print_bitmap(bitmap)

    writes = [data for _, data, _ in factory.last.writes]
    assert [len(w) for w in writes[:-1]] == [64] * (len(writes) - 1)
    assert b"".join(writes) == escpos.encode(bitmap, GENERIC_58MM.commands)
