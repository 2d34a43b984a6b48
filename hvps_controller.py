#!/usr/bin/env python3
"""
HVPS supervisor: poll/command loop and software interlock

Pushes the operator's targets for the high-voltage power supply and the
laser diode driver to an Acromag module once per poll period, reads back
the monitors, and trips a latching interlock when the measured voltage
strays from the setting for too many consecutive cycles.
"""

import collections
import logging
import threading
import time
from typing import Callable, Optional

import acromag
from acromag import (
    AcromagClient,
    AcromagConnectionError,
    AcromagError,
    BadReferenceVoltageError,
    ReadError,
    WriteError,
)

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
# Consecutive mismatching polls tolerated before the interlock trips
NUM_POLL_PERIODS_BEFORE_INTERLOCK = 10

# Setting/reading difference considered non-suspicious
ACCEPTABLE_VOLTAGE_DIFFERENCE = 1.0  # kV

# Preset conditioning ramp durations in minutes
QUICK_CONDITION_TIMES = (5, 10, 15, 30, 60)

DEFAULT_ADDRESS = "192.168.100.57"
DEFAULT_POLL_PERIOD_MS = 1000

EVENT_HISTORY = 200

ROLES = (
    "reference",
    "voltage_monitor",
    "current_monitor",
    "hv_enable",
    "voltage_control",
    "current_control",
    "ld_enable",
    "ld_current_control",
)

DEFAULT_CHANNELS = {
    "reference": 8,
    "voltage_monitor": 1,
    "current_monitor": 2,
    "hv_enable": 0,
    "voltage_control": 1,
    "current_control": 2,
    "ld_enable": 3,
    "ld_current_control": 4,
}


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------
class ConfigurationError(Exception):
    def __init__(self, role: str):
        self.role = role
        super().__init__(f"No channel assigned to role '{role}'")


class InterlockTrippedError(Exception):
    def __init__(self, voltage_reading: float, voltage_setting: float):
        self.voltage_reading = voltage_reading
        self.voltage_setting = voltage_setting
        super().__init__(
            f"Voltage reading {voltage_reading:.2f} kV is inconsistent with "
            f"setting {voltage_setting:.2f} kV; the door interlock may have been tripped"
        )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------
def _voltage_ceiling(config: "ControllerConfig") -> float:
    """Highest HV voltage the loop will command, in kV."""
    return min(acromag.POWER_SUPPLY_MAX_VOLTAGE, config.max_voltage)


def _check_role(role: str):
    if role not in ROLES:
        raise ValueError(f"Unknown channel role '{role}', expected one of {', '.join(ROLES)}")


class ChannelMap:
    """Which Acromag channel (0-15) serves each logical role."""

    def __init__(self, assignments: Optional[dict] = None):
        self._channels: dict[str, int] = {}
        for role, channel in (assignments or {}).items():
            self.set_address_for(role, channel)

    @classmethod
    def default(cls) -> "ChannelMap":
        return cls(DEFAULT_CHANNELS)

    def address_for(self, role: str) -> int:
        _check_role(role)
        try:
            return self._channels[role]
        except KeyError:
            raise ConfigurationError(role) from None

    def set_address_for(self, role: str, channel: int):
        _check_role(role)
        channel = int(channel)
        if channel < 0 or channel >= acromag.NUM_CHANNELS:
            raise ValueError(f"Channel must be 0-{acromag.NUM_CHANNELS - 1}, got {channel}")
        self._channels[role] = channel

    def copy(self) -> "ChannelMap":
        return ChannelMap(self._channels)

    def to_dict(self) -> dict:
        return dict(self._channels)

    @classmethod
    def from_dict(cls, data: dict) -> "ChannelMap":
        return cls(data)

    def __eq__(self, other):
        return isinstance(other, ChannelMap) and self._channels == other._channels

    def __repr__(self):
        return f"ChannelMap({self._channels!r})"


class ControllerConfig:
    """Everything the front end persists on the controller's behalf.

    ``timeout_ms`` of ``None`` uses the poll period as the connect timeout.
    """

    def __init__(
        self,
        address: str = DEFAULT_ADDRESS,
        port: int = acromag.DEFAULT_PORT,
        poll_period_ms: int = DEFAULT_POLL_PERIOD_MS,
        channels: Optional[ChannelMap] = None,
        max_voltage: float = acromag.POWER_SUPPLY_MAX_VOLTAGE,
        max_current: float = acromag.POWER_SUPPLY_MAX_CURRENT,
        timeout_ms: Optional[int] = None,
    ):
        if poll_period_ms <= 0:
            raise ValueError(f"Poll period must be positive, got {poll_period_ms} ms")
        if max_voltage < 0 or max_current < 0:
            raise ValueError("Maximum voltage and current must be non-negative")
        self.address = address
        self.port = int(port)
        self.poll_period_ms = int(poll_period_ms)
        self.channels = channels if channels is not None else ChannelMap.default()
        self.max_voltage = float(max_voltage)
        self.max_current = float(max_current)
        self.timeout_ms = timeout_ms

    @property
    def timeout(self) -> float:
        """Connect/read timeout in seconds."""
        ms = self.timeout_ms if self.timeout_ms is not None else self.poll_period_ms
        return ms / 1000.0

    def copy(self) -> "ControllerConfig":
        return ControllerConfig(
            address=self.address,
            port=self.port,
            poll_period_ms=self.poll_period_ms,
            channels=self.channels.copy(),
            max_voltage=self.max_voltage,
            max_current=self.max_current,
            timeout_ms=self.timeout_ms,
        )

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "port": self.port,
            "poll_period_ms": self.poll_period_ms,
            "timeout_ms": self.timeout_ms,
            "channels": self.channels.to_dict(),
            "max_voltage": self.max_voltage,
            "max_current": self.max_current,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ControllerConfig":
        channels = ChannelMap.default()
        for role, channel in data.get("channels", {}).items():
            channels.set_address_for(role, channel)
        return cls(
            address=data.get("address", DEFAULT_ADDRESS),
            port=data.get("port", acromag.DEFAULT_PORT),
            poll_period_ms=data.get("poll_period_ms", DEFAULT_POLL_PERIOD_MS),
            channels=channels,
            max_voltage=data.get("max_voltage", acromag.POWER_SUPPLY_MAX_VOLTAGE),
            max_current=data.get("max_current", acromag.POWER_SUPPLY_MAX_CURRENT),
            timeout_ms=data.get("timeout_ms"),
        )


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------
class PowerSupplyTarget:
    """Operator's request for the HVPS. Disabled pins both settings to 0."""

    def __init__(self):
        self.enabled = False
        self.voltage_setting = 0.0  # kV
        self.current_setting = 0.0  # mA

    def set_enabled(self, enabled: bool):
        self.enabled = bool(enabled)
        if not self.enabled:
            self.voltage_setting = 0.0
            self.current_setting = 0.0

    def set_voltage(self, kv: float):
        if kv < 0:
            raise ValueError(f"Voltage {kv:.3f} kV must be non-negative")
        if not self.enabled and kv != 0:
            raise ValueError("Power supply is disabled; enable it before setting a voltage")
        self.voltage_setting = float(kv)

    def set_current(self, ma: float):
        if ma < 0:
            raise ValueError(f"Current {ma:.3f} mA must be non-negative")
        if not self.enabled and ma != 0:
            raise ValueError("Power supply is disabled; enable it before setting a current")
        self.current_setting = float(ma)

    def copy(self) -> "PowerSupplyTarget":
        t = PowerSupplyTarget()
        t.enabled = self.enabled
        t.voltage_setting = self.voltage_setting
        t.current_setting = self.current_setting
        return t


class LaserDiodeTarget:
    def __init__(self):
        self.enabled = False
        self.current_setting = 0.0  # mA

    def set_enabled(self, enabled: bool):
        self.enabled = bool(enabled)
        if not self.enabled:
            self.current_setting = 0.0

    def set_current(self, ma: float):
        if ma < 0:
            raise ValueError(f"Laser diode current {ma:.3f} mA must be non-negative")
        if ma > acromag.LASER_DIODE_MAX_CURRENT:
            raise ValueError(
                f"Laser diode current {ma:.3f} mA out of range "
                f"[0, {acromag.LASER_DIODE_MAX_CURRENT:.1f} mA]"
            )
        if not self.enabled and ma != 0:
            raise ValueError("Laser diode is disabled; enable it before setting a current")
        self.current_setting = float(ma)

    def copy(self) -> "LaserDiodeTarget":
        t = LaserDiodeTarget()
        t.enabled = self.enabled
        t.current_setting = self.current_setting
        return t


# ---------------------------------------------------------------------------
# Interlock
# ---------------------------------------------------------------------------
class InterlockSupervisor:
    """Latching comparison of HV setting against HV reading.

    Evaluated once per successful poll. Counting is suspended while the
    supply is disabled so sitting at 0 kV never trips.
    """

    def __init__(self, acceptable_difference: float = ACCEPTABLE_VOLTAGE_DIFFERENCE,
                 threshold: int = NUM_POLL_PERIODS_BEFORE_INTERLOCK):
        self.acceptable_difference = acceptable_difference
        self.threshold = threshold
        self.consecutive_mismatches = 0
        self.tripped = False

    def evaluate(self, enabled: bool, voltage_setting: float, voltage_reading: float):
        if self.tripped:
            return
        if not enabled:
            self.consecutive_mismatches = 0
            return

        if abs(voltage_reading - voltage_setting) > self.acceptable_difference:
            self.consecutive_mismatches += 1
        else:
            self.consecutive_mismatches = 0

        if self.consecutive_mismatches >= self.threshold:
            self.tripped = True
            raise InterlockTrippedError(voltage_reading, voltage_setting)

    def reset(self):
        self.consecutive_mismatches = 0
        self.tripped = False


# ---------------------------------------------------------------------------
# HVPSController class
# ---------------------------------------------------------------------------
class HVPSController:
    """Supervisor for one HVPS + laser diode behind one Acromag module.

    The front end only calls the setters and reads :meth:`read_state`;
    the device connection belongs to the poll loop.

    Usage::

        ctl = HVPSController(ControllerConfig(address="192.168.100.57"))
        ctl.add_listener(print)
        ctl.start()
        ctl.set_power_supply_enabled(True)
        ctl.set_power_supply_voltage(10.0)
    """

    def __init__(self, config: Optional[ControllerConfig] = None,
                 client: Optional[AcromagClient] = None):
        self._config = config.copy() if config is not None else ControllerConfig()
        self._client = client if client is not None else AcromagClient()

        self._target = PowerSupplyTarget()
        self._ld_target = LaserDiodeTarget()
        self._interlock = InterlockSupervisor()

        self._voltage_reading: Optional[float] = None
        self._current_reading: Optional[float] = None
        self._status = "Not connected"
        self._last_error: Optional[dict] = None
        self._reconnect_requested = False

        self._conditioning = False
        self._ramp_step = 0.0  # kV per poll

        self._listeners: list[Callable] = []
        self._events = collections.deque(maxlen=EVENT_HISTORY)

        # _lock guards state shared with the front end; _cycle_lock keeps
        # poll cycles from overlapping
        self._lock = threading.RLock()
        self._cycle_lock = threading.Lock()

        self._thread: Optional[threading.Thread] = None
        self._stop = threading.Event()

    # -- Properties ----------------------------------------------------------

    @property
    def config(self) -> ControllerConfig:
        with self._lock:
            return self._config.copy()

    @property
    def status(self) -> str:
        with self._lock:
            return self._status

    @property
    def interlock_tripped(self) -> bool:
        with self._lock:
            return self._interlock.tripped

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -- Events --------------------------------------------------------------

    def add_listener(self, callback: Callable):
        """Register ``callback(event: dict)``, called from the poll thread."""
        with self._lock:
            self._listeners.append(callback)

    def remove_listener(self, callback: Callable):
        with self._lock:
            if callback in self._listeners:
                self._listeners.remove(callback)

    def recent_events(self, limit: Optional[int] = None) -> list[dict]:
        with self._lock:
            events = list(self._events)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def _emit(self, event: str, **fields):
        payload = {"event": event, "time": time.time(), **fields}
        with self._lock:
            self._events.append(payload)
            listeners = list(self._listeners)
        for callback in listeners:
            try:
                callback(payload)
            except Exception:
                logger.exception("Listener %r failed on %s event", callback, event)

    def _set_status(self, status: str):
        with self._lock:
            changed = status != self._status
            self._status = status
        if changed:
            self._emit("status", status=status)

    def _emit_state(self):
        self._emit("state", **self._target_fields())

    def _target_fields(self) -> dict:
        with self._lock:
            return {
                "hv_enabled": self._target.enabled,
                "voltage_setting": self._target.voltage_setting,
                "current_setting": self._target.current_setting,
                "ld_enabled": self._ld_target.enabled,
                "ld_current_setting": self._ld_target.current_setting,
                "conditioning": self._conditioning,
            }

    # -- Operator commands ---------------------------------------------------

    def set_power_supply_enabled(self, enabled: bool):
        """Turn the HVPS on or off. Turning it off zeroes both settings.

        Enabling is refused while the interlock is tripped; call
        :meth:`reset_interlock` first.
        """
        with self._lock:
            if enabled and self._interlock.tripped:
                raise InterlockTrippedError(
                    self._voltage_reading if self._voltage_reading is not None else 0.0,
                    self._target.voltage_setting,
                )
            self._target.set_enabled(enabled)
            if not enabled:
                self._conditioning = False
        self._emit_state()

    def set_power_supply_voltage(self, kv: float):
        with self._lock:
            self._target.set_voltage(kv)
        self._emit_state()

    def set_power_supply_current(self, ma: float):
        with self._lock:
            self._target.set_current(ma)
        self._emit_state()

    def set_power_supply_target(self, enabled: bool, voltage: float = 0.0, current: float = 0.0):
        """Apply a complete HVPS target atomically."""
        if voltage < 0 or current < 0:
            raise ValueError("Voltage and current must be non-negative")
        if not enabled and (voltage or current):
            raise ValueError("A disabled power supply must have zero voltage and current")
        with self._lock:
            if enabled and self._interlock.tripped:
                raise InterlockTrippedError(
                    self._voltage_reading if self._voltage_reading is not None else 0.0,
                    self._target.voltage_setting,
                )
            self._target.set_enabled(enabled)
            if enabled:
                self._target.set_voltage(voltage)
                self._target.set_current(current)
            else:
                self._conditioning = False
        self._emit_state()

    def set_laser_diode_enabled(self, enabled: bool):
        with self._lock:
            self._ld_target.set_enabled(enabled)
        self._emit_state()

    def set_laser_diode_current(self, ma: float):
        with self._lock:
            self._ld_target.set_current(ma)
        self._emit_state()

    def set_laser_diode_target(self, enabled: bool, current: float = 0.0):
        """Apply a complete laser diode target atomically."""
        if current < 0 or current > acromag.LASER_DIODE_MAX_CURRENT:
            raise ValueError(
                f"Laser diode current {current:.3f} mA out of range "
                f"[0, {acromag.LASER_DIODE_MAX_CURRENT:.1f} mA]"
            )
        if not enabled and current:
            raise ValueError("A disabled laser diode must have zero current")
        with self._lock:
            self._ld_target.set_enabled(enabled)
            if enabled:
                self._ld_target.set_current(current)
        self._emit_state()

    def reset_interlock(self):
        """Operator acknowledgement after a trip; counting restarts from zero."""
        with self._lock:
            was_tripped = self._interlock.tripped
            self._interlock.reset()
        if was_tripped:
            logger.warning("Interlock reset by operator")
            self._emit("interlock_reset")

    def start_conditioning(self, minutes: float):
        """Ramp the voltage setting up to the configured maximum over ``minutes``."""
        if minutes <= 0:
            raise ValueError(f"Conditioning time must be positive, got {minutes} min")
        with self._lock:
            if not self._target.enabled:
                raise ValueError("Power supply is disabled; enable it before conditioning")
            if self._interlock.tripped:
                raise ValueError("Interlock is tripped; reset it before conditioning")
            ceiling = _voltage_ceiling(self._config)
            total_ms = minutes * 60 * 1000
            self._ramp_step = (self._config.poll_period_ms * ceiling) / total_ms
            self._conditioning = True
        logger.info("Conditioning to %.1f kV over %s min", ceiling, minutes)
        self._emit_state()

    def abort_conditioning(self):
        with self._lock:
            was_conditioning = self._conditioning
            self._conditioning = False
        if was_conditioning:
            logger.info("Conditioning aborted")
            self._emit_state()

    # -- Configuration commands ---------------------------------------------

    def set_channel(self, role: str, channel: int):
        with self._lock:
            self._config.channels.set_address_for(role, channel)

    def set_poll_period(self, ms: int):
        if ms <= 0:
            raise ValueError(f"Poll period must be positive, got {ms} ms")
        with self._lock:
            self._config.poll_period_ms = int(ms)

    def set_device_address(self, address: str, port: Optional[int] = None):
        """Point at another module; the switch happens on the next cycle."""
        with self._lock:
            self._config.address = address
            if port is not None:
                self._config.port = int(port)
            self._reconnect_requested = True

    def set_limits(self, max_voltage: Optional[float] = None, max_current: Optional[float] = None):
        with self._lock:
            if max_voltage is not None:
                if max_voltage < 0:
                    raise ValueError("Maximum voltage must be non-negative")
                self._config.max_voltage = float(max_voltage)
            if max_current is not None:
                if max_current < 0:
                    raise ValueError("Maximum current must be non-negative")
                self._config.max_current = float(max_current)

    def update_config(self, config: ControllerConfig):
        with self._lock:
            if (config.address, config.port) != (self._config.address, self._config.port):
                self._reconnect_requested = True
            self._config = config.copy()

    def request_reconnect(self):
        with self._lock:
            self._reconnect_requested = True

    # -- State reading -------------------------------------------------------

    def read_state(self) -> dict:
        """Snapshot of everything the front end displays."""
        with self._lock:
            state = self._target_fields()
            state.update({
                "connected": self._client.is_connected(),
                "status": self._status,
                "address": self._config.address,
                "port": self._config.port,
                "voltage_reading": self._voltage_reading,
                "current_reading": self._current_reading,
                "interlock_tripped": self._interlock.tripped,
                "consecutive_mismatches": self._interlock.consecutive_mismatches,
                "max_voltage": self._config.max_voltage,
                "max_current": self._config.max_current,
                "poll_period_ms": self._config.poll_period_ms,
                "last_error": self._last_error,
            })
            return state

    # -- Poll loop -----------------------------------------------------------

    def start(self):
        """Start polling on a background thread."""
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self.run, name="hvps-poll", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None):
        """Ask the loop to exit after the current cycle and drop the connection."""
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        with self._cycle_lock:
            self._client.disconnect()

    def run(self):
        """Blocking poll loop; returns once :meth:`stop` has been called."""
        while not self._stop.is_set():
            with self._lock:
                period = self._config.poll_period_ms / 1000.0
            if self._stop.wait(period):
                break
            self.poll_once()

    def _snapshot(self):
        with self._lock:
            if self._conditioning:
                self._advance_ramp()
            reconnect = self._reconnect_requested
            self._reconnect_requested = False
            return (
                self._config.copy(),
                self._target.copy(),
                self._ld_target.copy(),
                reconnect,
            )

    def _advance_ramp(self):
        if not self._target.enabled:
            self._conditioning = False
            return
        ceiling = _voltage_ceiling(self._config)
        voltage = self._target.voltage_setting + self._ramp_step
        if voltage >= ceiling:
            voltage = ceiling
            self._conditioning = False
            logger.info("Conditioning complete at %.1f kV", voltage)
        self._target.voltage_setting = voltage

    def poll_once(self) -> bool:
        """Run one command/read/evaluate cycle. Returns True on success.

        Never raises: every failure is logged, published as an event and
        followed by a best-effort shutdown of the outputs.
        """
        with self._cycle_lock:
            config, target, ld_target, reconnect = self._snapshot()
            channels = config.channels
            try:
                if reconnect:
                    self._client.disconnect()
                if not self._client.is_connected():
                    self._set_status(f"Attempting to connect to Acromag at {config.address} ...")
                    self._client.connect(config.address, config.port, config.timeout)

                reference = self._client.read_reference_voltage(channels.address_for("reference"))
                commanded = self._command(config, target, ld_target, reference)
                voltage, current = self._read(config, reference)

                with self._lock:
                    self._voltage_reading = voltage
                    self._current_reading = current
                    self._last_error = None
                self._emit("reading", voltage_reading=voltage, current_reading=current,
                           ld_current_setting=ld_target.current_setting)

                with self._lock:
                    self._interlock.evaluate(target.enabled, commanded, voltage)

                self._set_status(f"Connected to {config.address}")
                return True

            except InterlockTrippedError as e:
                self._on_interlock(config, e)
            except BadReferenceVoltageError as e:
                self._on_error(config, "bad_reference", e)
                self._set_status("Bad connection between Acromag and HVPS.")
            except AcromagConnectionError as e:
                self._on_error(config, "connection", e)
                self._client.disconnect()
                self._set_status(f"Attempting to connect to Acromag at {config.address} ...")
            except ReadError as e:
                self._on_error(config, "read", e)
                self._client.disconnect()
            except WriteError as e:
                self._on_error(config, "write", e)
                self._client.disconnect()
            except ConfigurationError as e:
                self._on_error(config, "configuration", e)
            except Exception as e:
                logger.exception("Controller hit an unidentified exception")
                self._on_error(config, "unidentified", e, log=False)
            return False

    def _command(self, config: ControllerConfig, target: PowerSupplyTarget,
                 ld_target: LaserDiodeTarget, reference: float) -> float:
        """Write both targets. Returns the HV voltage actually commanded (kV)."""
        channels = config.channels
        hv_enable = channels.address_for("hv_enable")
        voltage_control = channels.address_for("voltage_control")
        current_control = channels.address_for("current_control")
        ld_enable = channels.address_for("ld_enable")
        ld_current_control = channels.address_for("ld_current_control")

        voltage = min(_voltage_ceiling(config), target.voltage_setting)
        current = min(acromag.POWER_SUPPLY_MAX_CURRENT, config.max_current, target.current_setting)
        if not target.enabled:
            voltage = current = 0.0
        voltage = max(0.0, voltage)
        current = max(0.0, current)

        self._client.write_channel(hv_enable, reference if target.enabled else 0.0)
        self._client.write_channel(voltage_control, acromag.to_device_voltage(
            voltage, acromag.POWER_SUPPLY_MAX_VOLTAGE, reference))
        self._client.write_channel(current_control, acromag.to_device_voltage(
            current, acromag.POWER_SUPPLY_MAX_CURRENT, reference))

        ld_current = min(acromag.LASER_DIODE_MAX_CURRENT, ld_target.current_setting)
        if not ld_target.enabled:
            ld_current = 0.0
        ld_current = max(0.0, ld_current)

        self._client.write_channel(ld_enable, acromag.LASER_DIODE_ON_VOLTAGE if ld_target.enabled else 0.0)
        self._client.write_channel(ld_current_control, acromag.ld_current_to_voltage(ld_current))
        return voltage

    def _read(self, config: ControllerConfig, reference: float):
        channels = config.channels
        voltage = acromag.from_device_voltage(
            self._client.read_channel(channels.address_for("voltage_monitor")),
            reference, acromag.POWER_SUPPLY_MAX_VOLTAGE,
        )
        current = acromag.from_device_voltage(
            self._client.read_channel(channels.address_for("current_monitor")),
            reference, acromag.POWER_SUPPLY_MAX_CURRENT,
        )
        return voltage, current

    # -- Failure handling ----------------------------------------------------

    def _force_shutdown(self, config: ControllerConfig):
        """Drive every output to 0 V without consulting the reference."""
        channels = config.channels
        groups = (
            ("HVPS", ("hv_enable", "voltage_control", "current_control")),
            ("laser diode", ("ld_enable", "ld_current_control")),
        )
        for name, roles in groups:
            try:
                for role in roles:
                    self._client.write_channel(channels.address_for(role), 0.0)
            except (AcromagError, ConfigurationError, ValueError) as e:
                logger.warning("Controller is unable to confirm the state of the %s: %s", name, e)

    def _blank_readings(self):
        with self._lock:
            self._voltage_reading = None
            self._current_reading = None

    def _on_error(self, config: ControllerConfig, kind: str, error: Exception, log: bool = True):
        if log:
            logger.error("%s", error)
        self._force_shutdown(config)
        self._blank_readings()
        with self._lock:
            self._last_error = {"type": kind, "message": str(error)}
        self._emit("error", type=kind, message=str(error))

    def _on_interlock(self, config: ControllerConfig, error: InterlockTrippedError):
        logger.critical("Interlock tripped: %s", error)
        with self._lock:
            self._target.set_enabled(False)
            self._conditioning = False
            self._last_error = {"type": "interlock", "message": str(error)}
        self._force_shutdown(config)
        self._emit(
            "interlock",
            voltage_reading=error.voltage_reading,
            voltage_setting=error.voltage_setting,
            message=str(error),
        )
        self._emit_state()
