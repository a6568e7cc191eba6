"""Shared fakes for link and session tests."""

import asyncio

import pytest

from pulse_bridge.ble.link import (
    CONNECTING,
    DISCONNECTED,
    IDLE,
    MEASURING,
    SCANNING,
    ConnectionState,
)
from pulse_bridge.observable import Observable


class FakeLink:
    """In-memory stand-in for HeartRateLink."""

    def __init__(self):
        self.connection_state = Observable(IDLE)
        self.live_heart_rate = Observable(0)
        self.scanned_devices = Observable(())
        self.source_address = None
        self.last_measurement = None
        self.calls = []
        self.discovery_error = None
        self.discoverable = ()

    async def start_discovery(self):
        self.calls.append("start_discovery")
        self.live_heart_rate.set(0)
        if self.discovery_error:
            self.connection_state.set(ConnectionState.error(self.discovery_error))
            return
        self.connection_state.set(SCANNING)
        self.scanned_devices.set(self.discoverable)

    async def stop_discovery(self):
        self.calls.append("stop_discovery")
        if self.connection_state.value in (SCANNING, MEASURING):
            self.connection_state.set(IDLE)

    async def connect(self, address):
        self.calls.append(("connect", address))
        self.connection_state.set(CONNECTING)
        self.source_address = address

    async def disconnect(self):
        self.calls.append("disconnect")
        self.live_heart_rate.set(0)
        self.source_address = None
        self.connection_state.set(IDLE)

    def broadcast(self, bpm):
        """Simulate a heart-rate broadcast received while scanning."""
        self.live_heart_rate.set(bpm)
        self.connection_state.set(MEASURING)

    def drop(self):
        self.live_heart_rate.set(0)
        self.connection_state.set(DISCONNECTED)


class VirtualClock:
    """Replacement for asyncio.sleep that advances virtual time instantly."""

    def __init__(self):
        self.elapsed = 0.0
        self.calls = []
        self.hooks = []

    async def sleep(self, seconds):
        self.calls.append(seconds)
        self.elapsed += seconds
        for hook in list(self.hooks):
            hook(seconds)
        await asyncio.sleep(0)


async def drain(predicate=lambda: False, limit=10_000):
    """Yield to the event loop until `predicate` holds or `limit` is reached."""
    for _ in range(limit):
        if predicate():
            return True
        await asyncio.sleep(0)
    return predicate()


@pytest.fixture
def fake_link():
    return FakeLink()


@pytest.fixture
def clock():
    return VirtualClock()
