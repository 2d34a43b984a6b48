"""Shared fixtures for Acromag/HVPS tests."""

from unittest.mock import patch

import pytest
from pymodbus.exceptions import ConnectionException

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from acromag import (
    AcromagClient,
    INPUT_CHANNEL_CONFIG_ADDRESS,
    INPUT_CHANNEL_DATA_ADDRESS,
    OUTPUT_CHANNEL_CONFIG_ADDRESS,
    OUTPUT_CHANNEL_DATA_ADDRESS,
    MAX_DATA_VALUE,
)
from hvps_controller import ControllerConfig, HVPSController


class FakeResponse:
    def __init__(self, registers=None, error=False):
        self.registers = registers or []
        self._error = error

    def isError(self):
        return self._error


class FakeModbusBank:
    """Stands in for pymodbus' ModbusTcpClient with an in-memory register bank.

    - input_registers / holding_registers: address -> 16-bit word
    - writes: every (address, value) passed to write_register, in order
    - reads: every input register address read, in order
    - refuse: connect() returns False
    - raise_on_read / raise_on_write: addresses whose access raises
    - error_on_read: addresses whose read returns an error response
    """

    def __init__(self):
        self.host = None
        self.port = None
        self.timeout = None
        self.connected = False
        self.refuse = False
        self.connect_calls = 0
        self.close_calls = 0

        self.input_registers = {}
        self.holding_registers = {}
        self.writes = []
        self.reads = []

        self.raise_on_read = set()
        self.raise_on_write = set()
        self.error_on_read = set()

    # -- pymodbus client surface ---------------------------------------------

    def __call__(self, host, port=502, timeout=3, **kwargs):
        self.host = host
        self.port = port
        self.timeout = timeout
        return self

    def connect(self):
        self.connect_calls += 1
        self.connected = not self.refuse
        return self.connected

    def close(self):
        self.close_calls += 1
        self.connected = False

    def read_input_registers(self, address, count=1, **kwargs):
        self.reads.append(address)
        if address in self.raise_on_read:
            raise ConnectionException("connection lost")
        if address in self.error_on_read:
            return FakeResponse(error=True)
        return FakeResponse([self.input_registers.get(address, 0)])

    def read_holding_registers(self, address, count=1, **kwargs):
        if address in self.raise_on_read:
            raise ConnectionException("connection lost")
        if address in self.error_on_read:
            return FakeResponse(error=True)
        return FakeResponse([self.holding_registers.get(address, 0)])

    def write_register(self, address, value, **kwargs):
        if address in self.raise_on_write:
            raise ConnectionException("connection lost")
        self.holding_registers[address] = value
        self.writes.append((address, value))
        return FakeResponse()

    # -- Test helpers --------------------------------------------------------

    def set_input(self, channel, volts, ten_volt=True):
        """Present ``volts`` on an input channel."""
        full_scale = 10.0 if ten_volt else 5.0
        self.input_registers[INPUT_CHANNEL_CONFIG_ADDRESS[channel]] = 1 if ten_volt else 0
        code = int(round(volts * MAX_DATA_VALUE / full_scale))
        self.input_registers[INPUT_CHANNEL_DATA_ADDRESS[channel]] = code & 0xFFFF

    def set_output_range(self, channel, ten_volt=True):
        self.holding_registers[OUTPUT_CHANNEL_CONFIG_ADDRESS[channel]] = 0 if ten_volt else 1

    def output_code(self, channel):
        return self.holding_registers.get(OUTPUT_CHANNEL_DATA_ADDRESS[channel])

    def writes_to(self, channel):
        address = OUTPUT_CHANNEL_DATA_ADDRESS[channel]
        return [value for addr, value in self.writes if addr == address]


@pytest.fixture
def bank():
    """A fake register bank patched in for ModbusTcpClient."""
    fake = FakeModbusBank()
    with patch("acromag.ModbusTcpClient", new=fake):
        yield fake


@pytest.fixture
def client(bank):
    """A connected AcromagClient talking to the fake bank."""
    acromag = AcromagClient("10.0.0.1", 502, timeout=0.5)
    acromag.connect()
    return acromag


def set_hvps_reading(bank, kv=0.0, ma=0.0, reference=10.0):
    """Drive the monitor channels of the default channel map."""
    bank.set_input(8, reference)
    bank.set_input(1, kv / 50.0 * reference)
    bank.set_input(2, ma / 1.5 * reference)


@pytest.fixture
def controller(bank):
    """An HVPSController on the default channel map with a healthy reference."""
    set_hvps_reading(bank)
    ctl = HVPSController(ControllerConfig(address="10.0.0.1", poll_period_ms=10))
    yield ctl
    ctl.stop(timeout=2.0)
