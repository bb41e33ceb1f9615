import asyncio
from typing import List, Optional

import pytest

from booth_printer.halftone import BitBitmap, RasterImage


class FakeCharacteristic:
    def __init__(self, uuid: str, properties: List[str]):
        self.uuid = uuid
        self.properties = properties


class FakeService:
    def __init__(self, uuid: str, characteristics: List[FakeCharacteristic]):
        self.uuid = uuid
        self.characteristics = characteristics


class FakeServiceCollection:
    def __init__(self, services: List[FakeService]):
        self._services = services

    def __iter__(self):
        return iter(self._services)

    def get_service(self, uuid: str) -> Optional[FakeService]:
        for s in self._services:
            if s.uuid.lower() == uuid.lower():
                return s
        return None


class FakeClient:
    """Stands in for BleakClient; records every call the drivers make."""

    def __init__(self, address, disconnected_callback=None, services=None,
                 mtu_size=23, hang_connect=False, connect_error=None, write_gate=None,
                 fail_write_at=None, connect_gate=None):
        self.address = address
        self.disconnected_callback = disconnected_callback
        self.services = FakeServiceCollection(services or [])
        self.mtu_size = mtu_size
        self.hang_connect = hang_connect
        self.connect_error = connect_error
        self.write_gate = write_gate
        self.fail_write_at = fail_write_at
        self.connect_gate = connect_gate
        self.is_connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.writes = []

    async def connect(self):
        self.connect_calls += 1
        if self.hang_connect:
            await asyncio.Event().wait()
        if self.connect_gate is not None:
            await self.connect_gate.wait()
        if self.connect_error is not None:
            raise self.connect_error
        self.is_connected = True

    async def disconnect(self):
        self.disconnect_calls += 1
        self.is_connected = False

    async def write_gatt_char(self, char, data, response=None):
        if self.fail_write_at is not None and len(self.writes) == self.fail_write_at:
            raise OSError("GATT write failed")
        if self.write_gate is not None:
            await self.write_gate.wait()
        self.writes.append((char.uuid, bytes(data), response))

    def drop(self):
        """Simulate the peripheral going out of range."""
        self.is_connected = False
        if self.disconnected_callback:
            self.disconnected_callback(self)


class ClientFactory:
    def __init__(self, **client_kwargs):
        self.client_kwargs = client_kwargs
        self.clients: List[FakeClient] = []

    def __call__(self, address, disconnected_callback=None):
        client = FakeClient(address, disconnected_callback=disconnected_callback, **self.client_kwargs)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeClient:
        return self.clients[-1]


class FakeDevice:
    def __init__(self, address, name):
        self.address = address
        self.name = name


class FakeAdvertisement:
    def __init__(self, rssi, local_name=None):
        self.rssi = rssi
        self.local_name = local_name


class FakeScanner:
    def __init__(self, devices=(), error=None):
        self.devices = list(devices)
        self.error = error
        self.calls = 0

    async def discover(self, timeout=5.0, return_adv=False):
        self.calls += 1
        if self.error is not None:
            raise self.error
        if return_adv:
            return {
                address: (FakeDevice(address, name), FakeAdvertisement(rssi))
                for address, name, rssi in self.devices
            }
        return [FakeDevice(address, name) for address, name, _ in self.devices]


PRINTER_SERVICE = "0000ff00-0000-1000-8000-00805f9b34fb"
SPP_SERVICE = "00001101-0000-1000-8000-00805f9b34fb"


def printer_services():
    return [
        FakeService("00001800-0000-1000-8000-00805f9b34fb", [
            FakeCharacteristic("00002a00-0000-1000-8000-00805f9b34fb", ["read"]),
        ]),
        FakeService(PRINTER_SERVICE, [
            FakeCharacteristic("0000ff01-0000-1000-8000-00805f9b34fb", ["read", "notify"]),
            FakeCharacteristic("0000ff02-0000-1000-8000-00805f9b34fb", ["write"]),
            FakeCharacteristic("0000ff03-0000-1000-8000-00805f9b34fb", ["write-without-response"]),
        ]),
    ]


def read_only_services():
    return [
        FakeService(PRINTER_SERVICE, [
            FakeCharacteristic("0000ff01-0000-1000-8000-00805f9b34fb", ["read", "notify"]),
        ]),
    ]


def make_bitmap(width, height, fill=0) -> BitBitmap:
    return BitBitmap(width, height, bytearray([fill]) * (width * height))


def make_raster(width, height, value) -> RasterImage:
    return RasterImage(width, height, bytearray([value]) * (width * height))


@pytest.fixture
def factory():
    return ClientFactory(services=printer_services())


@pytest.fixture
def scanner():
    return FakeScanner([
        ("AA:00:00:00:00:01", "EPPOS EPX-58B", -60),
        ("AA:00:00:00:00:02", None, -80),
        ("AA:00:00:00:00:03", "Thermal-80mm", -50),
        ("AA:00:00:00:00:04", "Headphones", -40),
    ])
