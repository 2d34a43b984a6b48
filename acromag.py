#!/usr/bin/env python3
"""
Acromag ES2152 analog I/O module — Python API

Register addresses are taken from the ES2152 user manual (pages 73-92).
Each of the 16 channels has a configuration register (bit 0 selects the
5V/10V range) and a data register holding a code in [0, 30000].

Requires: pymodbus (`pip install pymodbus`)
"""

import logging
from typing import Optional

from pymodbus.client import ModbusTcpClient
from pymodbus.exceptions import ModbusException

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
MAX_DATA_VALUE = 30000
NUM_CHANNELS = 16

DEFAULT_PORT = 502
DEFAULT_TIMEOUT = 1.0  # seconds

# Below this the HVPS chassis is unpowered or the reference wire is loose
MIN_ACCEPTABLE_REFERENCE_VOLTAGE = 9.0

POWER_SUPPLY_MAX_VOLTAGE = 50.0  # kV
POWER_SUPPLY_MAX_CURRENT = 1.5   # mA

LASER_DIODE_ON_VOLTAGE = 4.0     # V
LASER_DIODE_MAX_CURRENT = 20.0   # mA
VOLTAGE_PER_LD_CURRENT = 0.01    # V per mA

INPUT_CHANNEL_CONFIG_ADDRESS = [0x0003 + n for n in range(NUM_CHANNELS)]
INPUT_CHANNEL_DATA_ADDRESS = [0x0033 + n for n in range(NUM_CHANNELS)]
OUTPUT_CHANNEL_CONFIG_ADDRESS = [0x0020 + n for n in range(NUM_CHANNELS)]
OUTPUT_CHANNEL_DATA_ADDRESS = [0x015E + n for n in range(NUM_CHANNELS)]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class AcromagError(Exception):
    """Base class for everything the device client can raise."""


class AcromagConnectionError(AcromagError):
    def __init__(self, address: Optional[str]):
        self.address = address
        super().__init__(f"Unable to connect to Acromag at {address}")


class ReadError(AcromagError):
    def __init__(self, channel: int, address: int):
        self.channel = channel
        self.address = address
        super().__init__(
            f"Failed to read register 0x{address:04X} for channel {channel}"
        )


class WriteError(AcromagError):
    def __init__(self, channel: int, voltage: float, address: int):
        self.channel = channel
        self.voltage = voltage
        self.address = address
        super().__init__(
            f"Failed to write {voltage:.3f} V to register 0x{address:04X} "
            f"for channel {channel}"
        )


class BadReferenceVoltageError(AcromagError):
    def __init__(self, channel: int, voltage: float):
        self.channel = channel
        self.voltage = voltage
        super().__init__(
            f"Reference voltage on channel {channel} is {voltage:.3f} V "
            f"(minimum {MIN_ACCEPTABLE_REFERENCE_VOLTAGE:.1f} V); "
            f"the HVPS may be unpowered or disconnected"
        )


# ---------------------------------------------------------------------------
# Unit conversion
# ---------------------------------------------------------------------------
def get_bit(value: int, n: int) -> int:
    return (value >> n) & 1


def input_full_scale(config_word: int) -> float:
    """Full-scale voltage of an input channel: bit 0 clear is 5V, set is 10V."""
    return 10.0 if get_bit(config_word, 0) else 5.0


def output_full_scale(config_word: int) -> float:
    """Full-scale voltage of an output channel: bit 0 clear is 10V, set is 5V."""
    return 5.0 if get_bit(config_word, 0) else 10.0


def to_signed(word: int) -> int:
    """Interpret a 16-bit register word as two's complement."""
    word &= 0xFFFF
    return word - 0x10000 if word & 0x8000 else word


def voltage_to_code(voltage: float, full_scale: float) -> int:
    """Map a channel voltage to a data code, truncating toward zero."""
    return int(voltage * MAX_DATA_VALUE / full_scale)


def code_to_voltage(code: int, full_scale: float) -> float:
    return full_scale * to_signed(code) / MAX_DATA_VALUE


def to_device_voltage(physical: float, physical_full_scale: float,
                      reference_voltage: float) -> float:
    """Scale an engineering value (kV, mA) onto the measured reference."""
    return (physical / physical_full_scale) * reference_voltage


def from_device_voltage(device_voltage: float, reference_voltage: float,
                        physical_full_scale: float) -> float:
    return (device_voltage / reference_voltage) * physical_full_scale


def to_raw(physical: float, physical_full_scale: float,
           reference_voltage: float, full_scale: float) -> int:
    """Engineering value to data code.

    The caller is responsible for clamping ``physical`` to the allowed
    range; no clamping happens here.
    """
    device_voltage = to_device_voltage(physical, physical_full_scale, reference_voltage)
    return voltage_to_code(device_voltage, full_scale)


def from_raw(code: int, full_scale: float, reference_voltage: float,
             physical_full_scale: float) -> float:
    """Data code to engineering value."""
    device_voltage = code_to_voltage(code, full_scale)
    return from_device_voltage(device_voltage, reference_voltage, physical_full_scale)


def ld_current_to_voltage(current: float) -> float:
    """The laser diode driver takes a fixed V/mA, independent of the reference."""
    return current * VOLTAGE_PER_LD_CURRENT


def check_reference_voltage(channel: int, voltage: float) -> float:
    if voltage < MIN_ACCEPTABLE_REFERENCE_VOLTAGE:
        raise BadReferenceVoltageError(channel, voltage)
    return voltage


def _check_channel(channel: int):
    if channel < 0 or channel >= NUM_CHANNELS:
        raise ValueError(f"Channel must be 0-{NUM_CHANNELS - 1}, got {channel}")


# ---------------------------------------------------------------------------
# AcromagClient class
# ---------------------------------------------------------------------------
class AcromagClient:
    """Synchronous Modbus/TCP client for one ES2152 module.

    Usage::

        with AcromagClient("192.168.100.57") as acromag:
            print(acromag.read_channel(8))
            acromag.write_channel(1, 4.75)
    """

    def __init__(self, address: Optional[str] = None, port: int = DEFAULT_PORT,
                 timeout: float = DEFAULT_TIMEOUT):
        self._address = address
        self._port = port
        self._timeout = timeout
        self._client: Optional[ModbusTcpClient] = None

    # -- Properties ----------------------------------------------------------

    @property
    def address(self) -> Optional[str]:
        return self._address

    @property
    def port(self) -> int:
        return self._port

    # -- Context manager -----------------------------------------------------

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()
        return False

    # -- Connection lifecycle ------------------------------------------------

    def connect(self, address: Optional[str] = None, port: Optional[int] = None,
                timeout: Optional[float] = None) -> "AcromagClient":
        """Open a fresh TCP connection to the module.

        Any previous connection is dropped first. If the new connection
        cannot be established it is closed before
        :class:`AcromagConnectionError` is raised.
        """
        if address is not None:
            self._address = address
        if port is not None:
            self._port = port
        if timeout is not None:
            self._timeout = timeout

        self.disconnect()

        client = None
        try:
            client = ModbusTcpClient(self._address, port=self._port, timeout=self._timeout)
            ok = client.connect()
        except (ModbusException, OSError, ValueError) as e:
            logger.debug("connect to %s:%s raised %r", self._address, self._port, e)
            ok = False

        if not ok:
            if client is not None:
                client.close()
            raise AcromagConnectionError(self._address)

        self._client = client
        logger.info("Connected to Acromag at %s:%s", self._address, self._port)
        return self

    def is_connected(self) -> bool:
        return self._client is not None and bool(self._client.connected)

    def disconnect(self):
        """Close the connection. Safe to call at any time."""
        if self._client is not None:
            try:
                self._client.close()
            finally:
                self._client = None

    def _require_connection(self):
        if not self.is_connected():
            raise AcromagConnectionError(self._address)

    # -- Register I/O --------------------------------------------------------

    def _read_input_register(self, channel: int, address: int) -> int:
        try:
            rr = self._client.read_input_registers(address, count=1)
        except (ModbusException, OSError) as e:
            raise ReadError(channel, address) from e
        if rr.isError() or not rr.registers:
            raise ReadError(channel, address)
        return rr.registers[0]

    def _read_holding_register(self, channel: int, address: int) -> int:
        try:
            rr = self._client.read_holding_registers(address, count=1)
        except (ModbusException, OSError) as e:
            raise ReadError(channel, address) from e
        if rr.isError() or not rr.registers:
            raise ReadError(channel, address)
        return rr.registers[0]

    # -- Channels ------------------------------------------------------------

    def read_channel(self, channel: int) -> float:
        """Read the voltage (V) currently seen by an input channel."""
        _check_channel(channel)
        self._require_connection()

        config_word = self._read_input_register(channel, INPUT_CHANNEL_CONFIG_ADDRESS[channel])
        data_word = self._read_input_register(channel, INPUT_CHANNEL_DATA_ADDRESS[channel])

        return code_to_voltage(data_word, input_full_scale(config_word))

    def write_channel(self, channel: int, voltage: float) -> int:
        """Drive an output channel to ``voltage`` (V). Returns the code written."""
        _check_channel(channel)
        self._require_connection()

        config_word = self._read_holding_register(channel, OUTPUT_CHANNEL_CONFIG_ADDRESS[channel])
        code = voltage_to_code(voltage, output_full_scale(config_word))

        data_address = OUTPUT_CHANNEL_DATA_ADDRESS[channel]
        try:
            rr = self._client.write_register(data_address, code)
        except (ModbusException, OSError, ValueError) as e:
            raise WriteError(channel, voltage, data_address) from e
        if rr.isError():
            raise WriteError(channel, voltage, data_address)
        return code

    def read_reference_voltage(self, channel: int) -> float:
        """Read the HVPS "10 V" reference and reject implausibly low values."""
        return check_reference_voltage(channel, self.read_channel(channel))


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------
def _cli():
    import argparse
    import sys

    parser = argparse.ArgumentParser(
        prog="acromag",
        description="Acromag ES2152 channel diagnostics",
    )
    parser.add_argument("-a", "--address", default="192.168.100.57",
                        help="module IP address (default: %(default)s)")
    parser.add_argument("-p", "--port", type=int, default=DEFAULT_PORT,
                        help="Modbus port (default: %(default)s)")
    parser.add_argument("-v", "--verbose", action="store_true")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("read", help="read an input channel voltage")
    p.add_argument("channel", type=int)

    p = sub.add_parser("write", help="drive an output channel voltage")
    p.add_argument("channel", type=int)
    p.add_argument("volts", type=float)

    p = sub.add_parser("reference", help="read and check the reference channel")
    p.add_argument("channel", type=int, nargs="?", default=8)

    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        with AcromagClient(args.address, args.port) as acromag:
            if args.command == "read":
                print(f"{acromag.read_channel(args.channel):.4f}")
            elif args.command == "write":
                code = acromag.write_channel(args.channel, args.volts)
                print(f"Channel {args.channel}: {args.volts:.4f} V (code {code})")
            elif args.command == "reference":
                print(f"{acromag.read_reference_voltage(args.channel):.4f}")
    except (ValueError, AcromagError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    _cli()
