"""Pulse monitor that wires the watch link, acquisition controller and event log."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional

from .ble.link import ConnectionState, HeartRateLink, LinkStatus
from .classifier import ClassificationResult
from .config import AppConfig
from .logs import NdjsonLogger
from .session import AcquisitionController, Error, Progress, Scanning, SessionState, Success

logger = logging.getLogger(__name__)


class PulseMonitor:
    """Runs acquisitions and records every transition to the NDJSON log."""

    def __init__(
        self,
        config: AppConfig,
        link: Optional[Any] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._sleep = sleep

        self.logger = NdjsonLogger(
            config.logging.dir,
            config.logging.file_prefix,
            config.logging.debug_dir or None,
        )
        self.logger.mode = config.logging.mode
        if config.logging.verbose_whitelist:
            self.logger.verbose_whitelist.update(config.logging.verbose_whitelist)

        if link is None:
            link = HeartRateLink(
                adapter=config.link.adapter,
                paired_devices=config.link.paired_devices,
                vendor_payloads=config.link.vendor_payloads,
                connect_timeout_sec=config.link.connect_timeout_sec,
            )
        self.link = link
        self.controller = AcquisitionController(link, config.session, sleep=sleep)

        self._session_count = 0
        self._unsubscribers: List[Callable[[], None]] = [
            self.link.connection_state.subscribe(self._on_link_state),
            self.link.live_heart_rate.subscribe(self._on_heart_rate),
            self.link.scanned_devices.subscribe(self._on_devices),
            self.controller.collection_state.subscribe(self._on_session_state),
        ]

    async def run_once(self, device_address: Optional[str] = None) -> Optional[ClassificationResult]:
        """Run one acquisition. Returns the result, or None on error."""
        self._session_count += 1
        self.logger.begin_session(self._session_count)
        self.logger.status("Acquisition starting", {
            "window_sec": self.config.session.window_duration_sec,
            "step_sec": self.config.session.step_sec,
            "device": device_address,
        })

        try:
            await self.controller.start()
            if device_address:
                await self._select_when_seen(device_address)
            final = await self.controller.wait()
        finally:
            self.logger.end_session()

        if isinstance(final, Success):
            return final.result
        return None

    async def close(self) -> None:
        """Release the watch and close the event log."""
        await self.controller.cancel()
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.logger.status("Monitor stopped")
        self.logger.close()

    async def _select_when_seen(self, address: str) -> None:
        """Select `address` over GATT once it shows up in the scan list."""
        poll_sec = self.config.session.discovery_poll_sec

        while self.controller.state == Scanning():
            if self.link.connection_state.value.status is LinkStatus.MEASURING:
                # Broadcast data arrived first
                return
            if any(d.address == address for d in self.link.scanned_devices.value):
                await self.controller.select_device(address)
                return
            await self._sleep(poll_sec)

    def _on_link_state(self, state: ConnectionState) -> None:
        data = {"status": state.status.value}
        if state.message:
            data["message"] = state.message
        if state.status is LinkStatus.ERROR:
            self.logger.error("Link error", data)
        else:
            self.logger.status("Link state", data)

    def _on_heart_rate(self, bpm: int) -> None:
        if bpm <= 0:
            return
        self.logger.debug("heart_rate", {
            "bpm": bpm,
            "source": self.link.source_address,
            "measurement": getattr(self.link, "last_measurement", None),
        })

    def _on_devices(self, devices: tuple) -> None:
        if devices:
            self.logger.debug("scan_devices", {"devices": [d.to_dict() for d in devices]})

    def _on_session_state(self, state: SessionState) -> None:
        if isinstance(state, Progress):
            self.logger.debug("progress", {
                "percent": state.percent,
                "quality": state.quality,
                "bpm": state.bpm,
            })
        elif isinstance(state, Success):
            self.logger.event("RESULT", data=state.result.to_dict())
            logger.info(
                f"Pulse: {state.result.main_pulse} ({state.result.main_confidence:.2f}), "
                f"rate {state.result.pulse_rate} bpm"
            )
        elif isinstance(state, Error):
            self.logger.error("Acquisition error", {"message": state.message})
            logger.warning(f"Acquisition error: {state.message}")
        else:
            self.logger.status("Acquisition state", {"state": type(state).__name__})


async def run_acquisition(
    config_path: str,
    device_address: Optional[str] = None,
) -> Optional[ClassificationResult]:
    """Run a single acquisition with the specified configuration."""
    from .config import load_config, validate_config

    config = load_config(config_path)
    errors = validate_config(config)

    if errors:
        logger.error("Configuration validation failed:")
        for error in errors:
            logger.error(f"  - {error}")
        return None

    monitor = PulseMonitor(config)
    try:
        return await monitor.run_once(device_address)
    finally:
        await monitor.close()
