"""Heart-rate watch BLE link manager: broadcast mode first, GATT as fallback."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from bleak import BleakClient, BleakScanner
from bleak.exc import BleakDeviceNotFoundError

from ..observable import Observable
from .hr_parse import decode_bpm, decode_vendor_bpm, parse_heart_rate_measurement

logger = logging.getLogger(__name__)

HR_SERVICE_UUID = "0000180d-0000-1000-8000-00805f9b34fb"
HR_MEASUREMENT_UUID = "00002a37-0000-1000-8000-00805f9b34fb"

# Paired devices are listed before any advertisement has been seen
PAIRED_RSSI = -127


class LinkStatus(Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    CONNECTING = "connecting"
    MEASURING = "measuring"
    DISCONNECTED = "disconnected"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionState:
    """Link state; `message` is only set for ERROR."""

    status: LinkStatus
    message: str = ""

    @classmethod
    def error(cls, message: str) -> ConnectionState:
        return cls(LinkStatus.ERROR, message)

    @property
    def is_error(self) -> bool:
        return self.status is LinkStatus.ERROR


IDLE = ConnectionState(LinkStatus.IDLE)
SCANNING = ConnectionState(LinkStatus.SCANNING)
CONNECTING = ConnectionState(LinkStatus.CONNECTING)
MEASURING = ConnectionState(LinkStatus.MEASURING)
DISCONNECTED = ConnectionState(LinkStatus.DISCONNECTED)


@dataclass(frozen=True)
class ScannedDevice:
    """A GATT candidate seen during discovery."""

    address: str
    name: str
    rssi: int
    is_bonded: bool = False

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "name": self.name,
            "rssi": self.rssi,
            "bonded": self.is_bonded,
        }


def sort_devices(devices: Iterable[ScannedDevice]) -> Tuple[ScannedDevice, ...]:
    """Bonded devices first, then strongest signal, then address."""
    return tuple(sorted(devices, key=lambda d: (not d.is_bonded, -d.rssi, d.address)))


def describe_ble_error(exc: BaseException, action: str = "Bluetooth operation") -> str:
    """Translate a bleak/OS failure into an operator-actionable message."""
    if isinstance(exc, BleakDeviceNotFoundError):
        return "Watch not found. Make sure it is nearby and awake, then scan again"
    if isinstance(exc, asyncio.TimeoutError):
        return f"{action} timed out. Move the watch closer and retry"

    text = str(exc).lower()
    if "inprogress" in text or "in progress" in text or "busy" in text:
        return (
            "Watch is busy: another application holds its connection. "
            "Close other apps using the watch and retry"
        )
    if "notpermitted" in text or "notauthorized" in text or "permission" in text or "denied" in text:
        return "Bluetooth permission denied. Grant Bluetooth access and retry"
    if (
        "notready" in text
        or "not ready" in text
        or "powered off" in text
        or "turned off" in text
        or "no bluetooth adapters" in text
    ):
        return "Bluetooth is off. Turn on Bluetooth and retry"
    return f"{action} failed: {exc}"


class HeartRateLink:
    """Owns the scanner and GATT client for one heart-rate watch.

    State is published through three observables:
    `connection_state`, `live_heart_rate` (0 = no data) and
    `scanned_devices`. Commands never raise for hardware failures; they
    move the link to an ERROR state instead.
    """

    def __init__(
        self,
        adapter: str = "",
        paired_devices: Optional[Dict[str, str]] = None,
        vendor_payloads: Optional[Dict[int, int]] = None,
        connect_timeout_sec: float = 20.0,
        scanner_factory: Callable[..., Any] = BleakScanner,
        client_factory: Callable[..., Any] = BleakClient,
    ) -> None:
        self.adapter = adapter
        self.paired_devices = dict(paired_devices or {})
        self.vendor_payloads = dict(vendor_payloads or {})
        self.connect_timeout_sec = connect_timeout_sec
        self._scanner_factory = scanner_factory
        self._client_factory = client_factory

        self.connection_state: Observable[ConnectionState] = Observable(IDLE)
        self.live_heart_rate: Observable[int] = Observable(0)
        self.scanned_devices: Observable[Tuple[ScannedDevice, ...]] = Observable(())

        self._scanner: Optional[Any] = None
        self._client: Optional[Any] = None
        self._found: Dict[str, Tuple[ScannedDevice, Any]] = {}
        self._source_address: Optional[str] = None

        # Last decoded measurement, for debug logging
        self.last_measurement: Optional[Dict[str, Any]] = None

    @property
    def source_address(self) -> Optional[str]:
        """Address of the device currently supplying heart-rate data."""
        return self._source_address

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    # ---- discovery ----

    async def start_discovery(self) -> None:
        """Scan for heart-rate broadcasts and GATT candidates."""
        await self._stop_scanner()
        await self._release_client()

        self._found.clear()
        self._source_address = None
        self.last_measurement = None
        self.scanned_devices.set(())
        self.live_heart_rate.set(0)
        self.connection_state.set(SCANNING)

        for address, name in self.paired_devices.items():
            device = ScannedDevice(address, name or address, PAIRED_RSSI, is_bonded=True)
            self._found[address] = (device, address)
        self._publish_devices()

        try:
            scanner = self._scanner_factory(
                detection_callback=self._on_advertisement,
                **self._adapter_kwargs(),
            )
            self._scanner = scanner
            await scanner.start()
        except Exception as e:
            self._scanner = None
            logger.warning(f"BLE scan failed to start: {e}")
            self.connection_state.set(ConnectionState.error(describe_ble_error(e, "Scan")))
            return

        logger.info(f"Scanning for heart-rate watches ({len(self.paired_devices)} paired)")

    async def stop_discovery(self) -> None:
        """Stop scanning; a broadcast-only link goes back to IDLE."""
        await self._stop_scanner()

        if self._client is None and self.connection_state.value in (SCANNING, MEASURING):
            self.live_heart_rate.set(0)
            self.connection_state.set(IDLE)

    # ---- GATT fallback ----

    async def connect(self, address: str) -> None:
        """Connect to a discovered device and subscribe to 0x2A37."""
        await self._stop_scanner()

        entry = self._found.get(address)
        if entry is None:
            self.connection_state.set(
                ConnectionState.error("Device not found. Please scan again")
            )
            return

        await self._release_client()
        self.connection_state.set(CONNECTING)
        logger.info(f"Connecting to {entry[0].name} at {address}")

        try:
            client = self._client_factory(
                entry[1],
                disconnected_callback=self._on_device_disconnect,
                timeout=self.connect_timeout_sec,
                **self._adapter_kwargs(),
            )
        except Exception as e:
            self.connection_state.set(ConnectionState.error(describe_ble_error(e, "Connection")))
            return
        self._client = client

        try:
            await client.connect()
            if self._client is not client:
                # Released while connecting
                return

            characteristic = client.services.get_characteristic(HR_MEASUREMENT_UUID)
            if characteristic is None:
                await self._release_client()
                self.connection_state.set(ConnectionState.error(
                    "Heart-rate service (0x180D) not found on this device. "
                    "Enable heart-rate broadcast on the watch and scan again"
                ))
                return

            await client.start_notify(HR_MEASUREMENT_UUID, self._handle_notification)
        except Exception as e:
            if self._client is not client:
                return
            logger.warning(f"GATT connection to {address} failed: {e}")
            await self._release_client()
            self.connection_state.set(ConnectionState.error(describe_ble_error(e, "Connection")))
            return

        if self._client is not client:
            return

        self._source_address = address
        self.connection_state.set(MEASURING)
        logger.info(f"Connected to {address}, heart-rate notifications enabled")

    async def disconnect(self) -> None:
        """Release every radio resource and return to IDLE. Safe from any state."""
        await self._stop_scanner()
        await self._release_client()

        self._source_address = None
        self.live_heart_rate.set(0)
        self.connection_state.set(IDLE)

    # ---- callbacks ----

    def _on_advertisement(self, device: Any, advertisement: Any) -> None:
        """Bleak detection callback."""
        if self._scanner is None:
            return

        bpm = self._broadcast_bpm(advertisement)
        if bpm is not None:
            self._source_address = device.address
            self.live_heart_rate.set(bpm)
            if self.connection_state.value != MEASURING:
                logger.info(f"Heart-rate broadcast from {device.address}: {bpm} bpm")
                self.connection_state.set(MEASURING)
            return

        self._add_candidate(device, advertisement)

    def _broadcast_bpm(self, advertisement: Any) -> Optional[int]:
        service_data = getattr(advertisement, "service_data", None) or {}
        payload = service_data.get(HR_SERVICE_UUID)
        if payload:
            measurement = parse_heart_rate_measurement(payload)
            if measurement is not None:
                self.last_measurement = measurement
                return measurement["bpm"]

        manufacturer_data = getattr(advertisement, "manufacturer_data", None) or {}
        for company_id, offset in self.vendor_payloads.items():
            payload = manufacturer_data.get(company_id)
            if payload:
                bpm = decode_vendor_bpm(payload, offset)
                if bpm is not None:
                    return bpm
        return None

    def _add_candidate(self, device: Any, advertisement: Any) -> None:
        address = device.address
        existing = self._found.get(address)

        if existing is None:
            service_uuids = [u.lower() for u in (getattr(advertisement, "service_uuids", None) or [])]
            if HR_SERVICE_UUID not in service_uuids:
                return
            name = device.name or getattr(advertisement, "local_name", None)
            if not name:
                return
            candidate = ScannedDevice(address, name, advertisement.rssi)
        else:
            candidate = ScannedDevice(
                address, existing[0].name, advertisement.rssi, existing[0].is_bonded
            )
            if candidate == existing[0]:
                return

        self._found[address] = (candidate, device)
        self._publish_devices()

    def _handle_notification(self, sender: Any, data: bytes) -> None:
        """Handle 0x2A37 notifications in GATT mode."""
        if self._client is None:
            return

        measurement = parse_heart_rate_measurement(data)
        if measurement is None:
            logger.debug(f"Dropped heart-rate payload: {bytes(data).hex()}")
            return

        self.last_measurement = measurement
        self.live_heart_rate.set(measurement["bpm"])

    def _on_device_disconnect(self, client: Any) -> None:
        """Handle disconnection reported by bleak."""
        if client is not self._client:
            return

        logger.warning("Watch disconnected")
        self._client = None
        self._source_address = None
        self.live_heart_rate.set(0)
        self.connection_state.set(DISCONNECTED)

    # ---- helpers ----

    def _publish_devices(self) -> None:
        devices: List[ScannedDevice] = [entry[0] for entry in self._found.values()]
        self.scanned_devices.set(sort_devices(devices))

    def _adapter_kwargs(self) -> Dict[str, Any]:
        return {"adapter": self.adapter} if self.adapter else {}

    async def _stop_scanner(self) -> None:
        scanner = self._scanner
        self._scanner = None
        if scanner is None:
            return

        try:
            await scanner.stop()
        except Exception as e:
            logger.warning(f"Error stopping BLE scan: {e}")

    async def _release_client(self) -> None:
        client = self._client
        self._client = None
        if client is None:
            return

        try:
            if client.is_connected:
                await client.disconnect()
        except Exception as e:
            logger.warning(f"Error during watch disconnect: {e}")
