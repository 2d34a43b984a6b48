#!/usr/bin/env python3
"""
HVPS Supervisor MCP Server

Exposes the HVPS/laser diode supervisor as MCP tools so a front end (or an
LLM client) can set targets and read back state.

Requires: Python 3.10+, fastmcp (`pip install fastmcp`), pymodbus

Run:
    python hvps_mcp.py                        # stdio transport (default)
    python hvps_mcp.py --transport sse        # SSE transport for web clients
"""

import json
import logging
from typing import Optional

from fastmcp import FastMCP

from hvps_controller import ControllerConfig, HVPSController

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "Acromag HVPS Supervisor",
    instructions=(
        "Supervises a high-voltage power supply (0-50 kV, 0-1.5 mA) and a laser "
        "diode driver (0-20 mA) through an Acromag analog I/O module. Call "
        "start() first; the supervisor then polls the hardware once per poll "
        "period. Targets set here are applied on the next poll. If readings "
        "stay more than 1 kV away from the setting for 10 polls, the software "
        "interlock trips and turns the supply off; someone must visually "
        "verify the vault is clear and call reset_interlock() before the "
        "supply can be enabled again."
    ),
)

# One supervisor per server process
_controller: Optional[HVPSController] = None


def _require_controller() -> HVPSController:
    if _controller is None:
        raise RuntimeError("Not running. Call start() first.")
    return _controller


def _fmt(value: Optional[float], decimals: int = 3) -> Optional[float]:
    """Round a float for clean JSON output."""
    return None if value is None else round(value, decimals)


def _ok(**fields) -> str:
    return json.dumps({"status": "ok", **fields})


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


def start(address: str, port: int = 502, poll_period_ms: int = 1000) -> str:
    """Start supervising the Acromag module at ``address``.

    Connection happens in the background on the first poll; check
    read_state() for the connection status.

    Args:
        address: IP address or hostname of the Acromag module.
        port: Modbus/TCP port.
        poll_period_ms: Time between polls in milliseconds.
    """
    global _controller
    if _controller is not None:
        return json.dumps({"error": "Already running. stop() first."})

    controller = HVPSController(ControllerConfig(
        address=address, port=port, poll_period_ms=poll_period_ms,
    ))
    controller.start()
    _controller = controller
    return json.dumps({"status": "running", "address": address, "port": port,
                       "poll_period_ms": poll_period_ms})


def stop() -> str:
    """Stop polling and close the connection to the module.

    The outputs keep their last commanded values; turn the supply off
    first if that is what you want.
    """
    global _controller
    if _controller is None:
        return json.dumps({"status": "already stopped"})

    _controller.stop(timeout=5.0)
    _controller = None
    return json.dumps({"status": "stopped"})


def read_state() -> str:
    """Read the supervisor state.

    Includes connection status, HV and laser diode targets, the latest
    voltage (kV) and current (mA) readings, interlock state and the last
    error, if any.
    """
    ctl = _require_controller()
    state = ctl.read_state()
    for key in ("voltage_setting", "voltage_reading", "max_voltage"):
        state[key] = _fmt(state[key], 2)
    for key in ("current_setting", "current_reading", "max_current", "ld_current_setting"):
        state[key] = _fmt(state[key], 3)
    return json.dumps(state)


def recent_events(limit: int = 20) -> str:
    """Return the most recent supervisor events (errors, interlock trips, status).

    Args:
        limit: Maximum number of events to return, newest last.
    """
    ctl = _require_controller()
    return json.dumps({"events": ctl.recent_events(limit)})


def set_power_supply(enabled: bool, voltage: float = 0.0, current: float = 0.0) -> str:
    """Set the complete HVPS target in one step.

    Args:
        enabled: Whether the HV output is on.
        voltage: Voltage setting in kV (must be 0 when disabled).
        current: Current setting in mA (must be 0 when disabled).
    """
    ctl = _require_controller()
    ctl.set_power_supply_target(enabled, voltage, current)
    return _ok(hv_enabled=enabled, voltage_setting=_fmt(voltage, 2),
               current_setting=_fmt(current))


def set_voltage(kv: float) -> str:
    """Set the HV voltage setting. The supply must already be on.

    Values above the configured maximum are clamped when applied.

    Args:
        kv: Voltage in kilovolts.
    """
    ctl = _require_controller()
    ctl.set_power_supply_voltage(kv)
    return _ok(voltage_setting=_fmt(kv, 2))


def set_current(ma: float) -> str:
    """Set the HV current setting. The supply must already be on.

    Args:
        ma: Current in milliamps.
    """
    ctl = _require_controller()
    ctl.set_power_supply_current(ma)
    return _ok(current_setting=_fmt(ma))


def power_supply_on() -> str:
    """Enable the HV output. Refused while the interlock is tripped."""
    ctl = _require_controller()
    ctl.set_power_supply_enabled(True)
    return _ok(hv_enabled=True)


def power_supply_off() -> str:
    """Disable the HV output and zero the voltage and current settings."""
    ctl = _require_controller()
    ctl.set_power_supply_enabled(False)
    return _ok(hv_enabled=False)


def set_laser_diode(enabled: bool, current: float = 0.0) -> str:
    """Set the laser diode target.

    Args:
        enabled: Whether the laser diode is on.
        current: Drive current in mA (0-20, must be 0 when disabled).
    """
    ctl = _require_controller()
    ctl.set_laser_diode_target(enabled, current)
    return _ok(ld_enabled=enabled, ld_current_setting=_fmt(current))


def laser_diode_on() -> str:
    """Enable the laser diode."""
    ctl = _require_controller()
    ctl.set_laser_diode_enabled(True)
    return _ok(ld_enabled=True)


def laser_diode_off() -> str:
    """Disable the laser diode and zero its current setting."""
    ctl = _require_controller()
    ctl.set_laser_diode_enabled(False)
    return _ok(ld_enabled=False)


def set_channel(role: str, channel: int) -> str:
    """Assign an Acromag channel (0-15) to a role.

    Roles: reference, voltage_monitor, current_monitor, hv_enable,
    voltage_control, current_control, ld_enable, ld_current_control.
    Takes effect on the next poll.
    """
    ctl = _require_controller()
    ctl.set_channel(role, channel)
    return _ok(role=role, channel=channel)


def set_poll_period(ms: int) -> str:
    """Change the poll period in milliseconds."""
    ctl = _require_controller()
    ctl.set_poll_period(ms)
    return _ok(poll_period_ms=ms)


def set_device_address(address: str, port: Optional[int] = None) -> str:
    """Switch to another Acromag module; reconnects on the next poll."""
    ctl = _require_controller()
    ctl.set_device_address(address, port)
    return _ok(address=address, port=ctl.config.port)


def set_limits(max_voltage: Optional[float] = None, max_current: Optional[float] = None) -> str:
    """Set the operator maximum voltage (kV) and/or current (mA)."""
    ctl = _require_controller()
    ctl.set_limits(max_voltage, max_current)
    config = ctl.config
    return _ok(max_voltage=_fmt(config.max_voltage, 2), max_current=_fmt(config.max_current))


def reconnect() -> str:
    """Drop and re-open the connection on the next poll."""
    ctl = _require_controller()
    ctl.request_reconnect()
    return _ok(reconnect="requested")


def reset_interlock() -> str:
    """Acknowledge a tripped interlock.

    Only call this after visually verifying that all personnel have left
    the vault. The supply stays off until it is enabled again.
    """
    ctl = _require_controller()
    ctl.reset_interlock()
    return _ok(interlock_tripped=False)


def start_conditioning(minutes: float) -> str:
    """Ramp the voltage setting to the configured maximum over ``minutes``.

    The supply must be on. Typical presets are 5, 10, 15, 30 or 60 minutes.
    """
    ctl = _require_controller()
    ctl.start_conditioning(minutes)
    return _ok(conditioning=True, minutes=minutes)


def abort_conditioning() -> str:
    """Stop a conditioning ramp, leaving the voltage setting where it is."""
    ctl = _require_controller()
    ctl.abort_conditioning()
    return _ok(conditioning=False)


# Registered without rebinding so the tool functions stay plain callables
for _tool in (
    start, stop, read_state, recent_events,
    set_power_supply, set_voltage, set_current, power_supply_on, power_supply_off,
    set_laser_diode, laser_diode_on, laser_diode_off,
    set_channel, set_poll_period, set_device_address, set_limits, reconnect,
    reset_interlock, start_conditioning, abort_conditioning,
):
    mcp.tool()(_tool)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------
def main():
    import argparse

    parser = argparse.ArgumentParser(prog="hvps-mcp", description=__doc__.strip().splitlines()[0])
    parser.add_argument("--transport", default="stdio", choices=("stdio", "sse", "http"))
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    # stdout belongs to the stdio transport
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
