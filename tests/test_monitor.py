"""Tests for the pulse monitor runner and CLI."""

import asyncio
import json
import sys

import pytest

from pulse_bridge import cli
from pulse_bridge.ble.link import ScannedDevice
from pulse_bridge.config import AppConfig
from pulse_bridge.monitor import PulseMonitor, run_acquisition

from conftest import drain


def make_config(tmp_path):
    config = AppConfig()
    config.logging.dir = str(tmp_path / "logs")
    return config


def read_records(tmp_path):
    records = []
    for path in (tmp_path / "logs").glob("pulse_*.ndjson"):
        with path.open(encoding="utf-8") as f:
            records.extend(json.loads(line) for line in f if line.strip())
    return sorted(records, key=lambda r: r["seq"])


class TestPulseMonitor:
    """Acquisition runs recorded to the event log."""

    def test_broadcast_run_logs_result(self, tmp_path, fake_link, clock):
        async def scenario():
            monitor = PulseMonitor(make_config(tmp_path), link=fake_link, sleep=clock.sleep)
            run = asyncio.create_task(monitor.run_once())
            await drain(lambda: monitor.controller.is_active)
            fake_link.broadcast(75)
            result = await run
            await monitor.close()
            return result

        result = asyncio.run(scenario())
        assert result.main_pulse == "平和脉"
        assert result.pulse_rate == 75

        records = read_records(tmp_path)
        results = [r for r in records if r["msg"] == "RESULT"]
        assert len(results) == 1
        assert results[0]["type"] == "event"
        assert results[0]["session"] == 1
        assert results[0]["data"]["main_pulse"] == "平和脉"
        # Regular mode drops per-tick progress records
        assert not any(r["msg"] == "progress" for r in records)
        assert records[-1]["msg"] == "Monitor stopped"

    def test_gatt_device_selected_when_seen(self, tmp_path, fake_link, clock):
        fake_link.discoverable = (ScannedDevice("AA:BB", "Watch", -50),)

        def notify_after_connect(seconds):
            if seconds == 0.5 and ("connect", "AA:BB") in fake_link.calls and not fake_link.live_heart_rate.value:
                fake_link.broadcast(70)
        clock.hooks.append(notify_after_connect)

        async def scenario():
            monitor = PulseMonitor(make_config(tmp_path), link=fake_link, sleep=clock.sleep)
            try:
                return await monitor.run_once("AA:BB")
            finally:
                await monitor.close()

        result = asyncio.run(scenario())
        assert ("connect", "AA:BB") in fake_link.calls
        assert result.pulse_rate == 70

    def test_timeout_returns_none_and_logs_error(self, tmp_path, fake_link, clock):
        async def scenario():
            monitor = PulseMonitor(make_config(tmp_path), link=fake_link, sleep=clock.sleep)
            try:
                return await monitor.run_once()
            finally:
                await monitor.close()

        assert asyncio.run(scenario()) is None
        errors = [r for r in read_records(tmp_path) if r["type"] == "error"]
        assert errors[-1]["msg"] == "Acquisition error"
        assert "heart-rate broadcast" in errors[-1]["data"]["message"]

    def test_verbose_mode_logs_progress(self, tmp_path, fake_link, clock):
        config = make_config(tmp_path)
        config.logging.mode = "verbose"

        async def scenario():
            monitor = PulseMonitor(config, link=fake_link, sleep=clock.sleep)
            run = asyncio.create_task(monitor.run_once())
            await drain(lambda: monitor.controller.is_active)
            fake_link.broadcast(64)
            await run
            await monitor.close()

        asyncio.run(scenario())
        progress = [r for r in read_records(tmp_path) if r["msg"] == "progress"]
        assert [r["data"]["percent"] for r in progress] == list(range(5, 101, 5))


class TestRunAcquisition:
    """Config-driven entry point."""

    def test_invalid_config_returns_none(self, tmp_path):
        path = tmp_path / "pulse.yaml"
        path.write_text(
            f"session:\n  step_sec: 7\nlogging:\n  dir: {tmp_path / 'logs'}\n",
            encoding="utf-8",
        )
        assert asyncio.run(run_acquisition(str(path))) is None


class TestCli:
    """Exit codes of the command-line entry point."""

    def test_missing_config(self, tmp_path, monkeypatch):
        monkeypatch.setattr(sys, "argv", ["pulse-bridge", "--config", str(tmp_path / "absent.yaml")])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 1

    def test_no_result(self, tmp_path, monkeypatch):
        path = tmp_path / "pulse.yaml"
        path.write_text("session: {}\n", encoding="utf-8")

        async def no_result(config_path, device_address=None):
            return None

        monkeypatch.setattr(cli, "run_acquisition", no_result)
        monkeypatch.setattr(sys, "argv", ["pulse-bridge", "--config", str(path)])
        with pytest.raises(SystemExit) as exc_info:
            cli.main()
        assert exc_info.value.code == 2

    def test_prints_result(self, tmp_path, monkeypatch, capsys):
        from pulse_bridge.classifier import analyze_heart_rate

        path = tmp_path / "pulse.yaml"
        path.write_text("session: {}\n", encoding="utf-8")

        async def fixed_result(config_path, device_address=None):
            return analyze_heart_rate([100, 102])

        monkeypatch.setattr(cli, "run_acquisition", fixed_result)
        monkeypatch.setattr(sys, "argv", ["pulse-bridge", "--config", str(path), "--device", "AA:BB"])
        cli.main()

        out = capsys.readouterr().out
        assert "数脉" in out
        assert "阴虚内热" in out
