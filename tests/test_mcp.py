"""MCP server tool tests -- calls the tool functions directly."""

import json
from unittest.mock import MagicMock, patch

import pytest

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

import hvps_mcp
from hvps_controller import ControllerConfig, HVPSController


@pytest.fixture(autouse=True)
def reset_controller():
    """Reset global _controller before each test."""
    hvps_mcp._controller = None
    yield
    hvps_mcp._controller = None


def _make_mock_controller():
    """Create a mock HVPSController with a realistic state dict."""
    ctl = MagicMock(spec=HVPSController)
    ctl.config = ControllerConfig(address="10.0.0.1")
    ctl.read_state.return_value = {
        "hv_enabled": True,
        "voltage_setting": 25.0,
        "current_setting": 0.75,
        "ld_enabled": False,
        "ld_current_setting": 0.0,
        "conditioning": False,
        "connected": True,
        "status": "Connected to 10.0.0.1",
        "address": "10.0.0.1",
        "port": 502,
        "voltage_reading": 24.98765,
        "current_reading": 0.74912,
        "interlock_tripped": False,
        "consecutive_mismatches": 0,
        "max_voltage": 50.0,
        "max_current": 1.5,
        "poll_period_ms": 1000,
        "last_error": None,
    }
    return ctl


# ---------------------------------------------------------------------------
# start / stop
# ---------------------------------------------------------------------------

class TestStart:

    @patch("hvps_mcp.HVPSController")
    def test_start(self, MockController):
        instance = _make_mock_controller()
        MockController.return_value = instance

        result = json.loads(hvps_mcp.start("10.0.0.1", 502, 500))
        assert result["status"] == "running"
        assert result["poll_period_ms"] == 500
        instance.start.assert_called_once()

        config = MockController.call_args[0][0]
        assert config.address == "10.0.0.1"
        assert config.poll_period_ms == 500

    @patch("hvps_mcp.HVPSController")
    def test_double_start(self, MockController):
        MockController.return_value = _make_mock_controller()

        hvps_mcp.start("10.0.0.1")
        result = json.loads(hvps_mcp.start("10.0.0.1"))
        assert "error" in result


class TestStop:

    def test_stop_not_running(self):
        result = json.loads(hvps_mcp.stop())
        assert result["status"] == "already stopped"

    @patch("hvps_mcp.HVPSController")
    def test_stop_running(self, MockController):
        instance = _make_mock_controller()
        MockController.return_value = instance
        hvps_mcp.start("10.0.0.1")

        result = json.loads(hvps_mcp.stop())
        assert result["status"] == "stopped"
        instance.stop.assert_called_once()
        assert hvps_mcp._controller is None


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

class TestQueries:

    def test_read_state_rounds(self):
        hvps_mcp._controller = _make_mock_controller()
        result = json.loads(hvps_mcp.read_state())
        assert result["voltage_reading"] == 24.99
        assert result["current_reading"] == 0.749
        assert result["status"] == "Connected to 10.0.0.1"
        assert result["interlock_tripped"] is False

    def test_read_state_blank_readings(self):
        ctl = _make_mock_controller()
        ctl.read_state.return_value["voltage_reading"] = None
        ctl.read_state.return_value["current_reading"] = None
        hvps_mcp._controller = ctl
        result = json.loads(hvps_mcp.read_state())
        assert result["voltage_reading"] is None

    def test_recent_events(self):
        ctl = _make_mock_controller()
        ctl.recent_events.return_value = [{"event": "status", "status": "Connected"}]
        hvps_mcp._controller = ctl
        result = json.loads(hvps_mcp.recent_events(5))
        assert result["events"][0]["event"] == "status"
        ctl.recent_events.assert_called_once_with(5)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

class TestCommands:

    def _setup(self):
        ctl = _make_mock_controller()
        hvps_mcp._controller = ctl
        return ctl

    def test_set_power_supply(self):
        ctl = self._setup()
        result = json.loads(hvps_mcp.set_power_supply(True, 25.0, 0.75))
        assert result["status"] == "ok"
        ctl.set_power_supply_target.assert_called_once_with(True, 25.0, 0.75)

    def test_set_voltage(self):
        ctl = self._setup()
        result = json.loads(hvps_mcp.set_voltage(12.5))
        assert result["voltage_setting"] == 12.5
        ctl.set_power_supply_voltage.assert_called_once_with(12.5)

    def test_set_current(self):
        ctl = self._setup()
        hvps_mcp.set_current(1.2)
        ctl.set_power_supply_current.assert_called_once_with(1.2)

    def test_power_supply_on_off(self):
        ctl = self._setup()
        assert json.loads(hvps_mcp.power_supply_on())["hv_enabled"] is True
        assert json.loads(hvps_mcp.power_supply_off())["hv_enabled"] is False
        assert ctl.set_power_supply_enabled.call_args_list[0][0] == (True,)
        assert ctl.set_power_supply_enabled.call_args_list[1][0] == (False,)

    def test_set_laser_diode(self):
        ctl = self._setup()
        result = json.loads(hvps_mcp.set_laser_diode(True, 12.0))
        assert result["ld_enabled"] is True
        ctl.set_laser_diode_target.assert_called_once_with(True, 12.0)

    def test_set_laser_diode_rejected(self):
        ctl = self._setup()
        ctl.set_laser_diode_target.side_effect = ValueError("out of range")
        with pytest.raises(ValueError):
            hvps_mcp.set_laser_diode(True, 25.0)
        ctl.set_laser_diode_enabled.assert_not_called()

    def test_laser_diode_on_off(self):
        ctl = self._setup()
        hvps_mcp.laser_diode_on()
        hvps_mcp.laser_diode_off()
        assert ctl.set_laser_diode_enabled.call_count == 2

    def test_set_channel(self):
        ctl = self._setup()
        hvps_mcp.set_channel("reference", 9)
        ctl.set_channel.assert_called_once_with("reference", 9)

    def test_set_poll_period(self):
        ctl = self._setup()
        hvps_mcp.set_poll_period(250)
        ctl.set_poll_period.assert_called_once_with(250)

    def test_set_device_address(self):
        ctl = self._setup()
        result = json.loads(hvps_mcp.set_device_address("10.0.0.9"))
        assert result["address"] == "10.0.0.9"
        ctl.set_device_address.assert_called_once_with("10.0.0.9", None)

    def test_set_limits(self):
        ctl = self._setup()
        hvps_mcp.set_limits(max_voltage=30.0)
        ctl.set_limits.assert_called_once_with(30.0, None)

    def test_reconnect(self):
        ctl = self._setup()
        hvps_mcp.reconnect()
        ctl.request_reconnect.assert_called_once()

    def test_reset_interlock(self):
        ctl = self._setup()
        result = json.loads(hvps_mcp.reset_interlock())
        assert result["interlock_tripped"] is False
        ctl.reset_interlock.assert_called_once()

    def test_conditioning(self):
        ctl = self._setup()
        hvps_mcp.start_conditioning(15)
        hvps_mcp.abort_conditioning()
        ctl.start_conditioning.assert_called_once_with(15)
        ctl.abort_conditioning.assert_called_once()


# ---------------------------------------------------------------------------
# Without start -- raises RuntimeError
# ---------------------------------------------------------------------------

class TestWithoutController:

    @pytest.mark.parametrize("call", [
        lambda: hvps_mcp.read_state(),
        lambda: hvps_mcp.set_voltage(5.0),
        lambda: hvps_mcp.power_supply_on(),
        lambda: hvps_mcp.set_laser_diode(True, 1.0),
        lambda: hvps_mcp.reset_interlock(),
        lambda: hvps_mcp.set_channel("reference", 8),
    ])
    def test_requires_start(self, call):
        with pytest.raises(RuntimeError, match="Not running"):
            call()
