"""Acquisition session controller: scan, timed sampling window, analysis."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Union

import numpy as np

from .ble.hr_parse import is_valid_bpm
from .ble.link import ConnectionState, LinkStatus
from .classifier import ClassificationResult, analyze_heart_rate
from .config import SessionConfig
from .observable import Observable
from .waveform import signal_quality, synthesize_waveform

logger = logging.getLogger(__name__)

DISCOVERY_TIMEOUT_MESSAGE = (
    "No heart-rate signal received. Turn on heart-rate broadcast on the watch "
    "(Settings > Health monitoring > Heart rate broadcast), keep it close to "
    "this device, then retry"
)
DISCONNECTED_MESSAGE = "Watch connection lost during collection, please collect again"


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Scanning:
    """Waiting for a heart-rate signal."""

    source_device: str = ""


@dataclass(frozen=True)
class Collecting:
    pass


@dataclass(frozen=True)
class Progress:
    percent: int
    quality: float
    bpm: int = 0


@dataclass(frozen=True)
class Analyzing:
    pass


@dataclass(frozen=True)
class Success:
    result: ClassificationResult


@dataclass(frozen=True)
class Error:
    message: str


SessionState = Union[Idle, Scanning, Collecting, Progress, Analyzing, Success, Error]

TERMINAL_STATES = (Success, Error)


@dataclass(frozen=True)
class HeartRateSample:
    bpm: int


@dataclass
class AcquisitionSession:
    """Sample buffer and timing of the active acquisition."""

    generation: int
    started_at: float
    window_duration_sec: int
    step_sec: int
    samples: List[HeartRateSample] = field(default_factory=list)

    @property
    def bpm_values(self) -> List[int]:
        return [s.bpm for s in self.samples]


class AcquisitionController:
    """Drives one heart-rate acquisition at a time over a link manager.

    Every session owns a generation number. Cancelling or replacing a
    session bumps the generation before any teardown, and every state
    publication checks it, so a tick in flight can never publish after
    cancellation.
    """

    def __init__(
        self,
        link: Any,
        params: Optional[SessionConfig] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.link = link
        self.params = params or SessionConfig()
        self._sleep = sleep
        self._rng = rng

        self.collection_state: Observable[SessionState] = Observable(Idle())
        self.waveform_samples: Observable[tuple] = Observable(())

        self.session: Optional[AcquisitionSession] = None
        self._generation = 0
        self._task: Optional[asyncio.Task] = None
        self._signal = asyncio.Event()
        self._waited_sec = 0.0
        self._unsubscribers: List[Callable[[], None]] = []

    @property
    def state(self) -> SessionState:
        return self.collection_state.value

    @property
    def is_active(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start a new acquisition, replacing any active one."""
        await self._invalidate()
        self._generation += 1
        generation = self._generation

        self.session = AcquisitionSession(
            generation=generation,
            started_at=time.time(),
            window_duration_sec=self.params.window_duration_sec,
            step_sec=self.params.step_sec,
        )
        self._signal = asyncio.Event()
        self._waited_sec = 0.0
        self.waveform_samples.set(())

        await self.link.disconnect()
        if generation != self._generation:
            return

        self._publish(generation, Scanning())
        self._watch_link(generation)
        logger.info(f"Acquisition {generation} started")

        await self.link.start_discovery()
        if generation != self._generation:
            return

        self._task = asyncio.create_task(self._run(generation))

    async def cancel(self) -> None:
        """Abort the active acquisition and release the watch."""
        await self._invalidate()
        await self.link.disconnect()

        self.session = None
        self.collection_state.set(Idle())
        self.waveform_samples.set(())
        logger.info("Acquisition cancelled")

    async def select_device(self, address: str) -> None:
        """Connect to a GATT device picked from the scan list."""
        generation = self._generation
        if not isinstance(self.state, Scanning):
            logger.warning(f"Ignoring device selection {address} in state {self.state}")
            return

        self._waited_sec = 0.0
        self._publish(generation, Scanning(source_device=address))
        await self.link.connect(address)

    async def wait(self) -> SessionState:
        """Wait for the active acquisition to finish and return its final state."""
        task = self._task
        if task is not None:
            await asyncio.wait({task})
        return self.state

    # ---- session task ----

    async def _run(self, generation: int) -> None:
        try:
            if not await self._wait_for_signal(generation):
                if generation == self._generation:
                    await self.link.stop_discovery()
                    self._finish(generation, Error(DISCOVERY_TIMEOUT_MESSAGE))
                return

            await self._collect(generation)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception(f"Acquisition {generation} failed")
            if generation == self._generation:
                self._finish(generation, Error(f"Acquisition failed: {e}"))
                await self.link.disconnect()

    async def _wait_for_signal(self, generation: int) -> bool:
        poll_sec = self.params.discovery_poll_sec

        while self._waited_sec < self.params.discovery_timeout_sec:
            if self._signal.is_set():
                return True
            await self._sleep(poll_sec)
            if generation != self._generation:
                return False
            self._waited_sec += poll_sec

        return self._signal.is_set()

    async def _collect(self, generation: int) -> None:
        session = self.session
        session.samples.clear()
        self._publish(generation, Collecting())

        total = self.params.total_ticks
        for tick in range(1, total + 1):
            await self._sleep(self.params.step_sec)
            if generation != self._generation:
                return

            # Only the value at the tick boundary counts
            bpm = self.link.live_heart_rate.value
            if is_valid_bpm(bpm):
                session.samples.append(HeartRateSample(bpm))

            self.waveform_samples.set(tuple(synthesize_waveform(bpm, rng=self._rng)))
            self._publish(generation, Progress(
                percent=tick * 100 // total,
                quality=signal_quality(bpm),
                bpm=bpm,
            ))

        self._publish(generation, Analyzing())
        await self._sleep(self.params.analysis_delay_sec)
        if generation != self._generation:
            return

        result = analyze_heart_rate(
            session.bpm_values,
            self.link.live_heart_rate.value,
            self.params.default_bpm,
        )

        # Measurement is complete, release the watch
        self._unwatch_link()
        await self.link.disconnect()
        self._finish(generation, Success(result))

    # ---- link observation ----

    def _watch_link(self, generation: int) -> None:
        self._unwatch_link()
        self._unsubscribers = [
            self.link.connection_state.subscribe(
                lambda state: self._on_link_state(generation, state)
            ),
            self.link.live_heart_rate.subscribe(
                lambda bpm: self._on_live_bpm(generation, bpm)
            ),
        ]

    def _unwatch_link(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_link_state(self, generation: int, state: ConnectionState) -> None:
        if generation != self._generation:
            return

        current = self.state
        if state.status is LinkStatus.MEASURING:
            if isinstance(current, Scanning):
                self._signal.set()
        elif state.status is LinkStatus.ERROR:
            if isinstance(current, (Scanning, Collecting, Progress)):
                self._fail(generation, state.message)
        elif state.status is LinkStatus.DISCONNECTED:
            # A signal already seen counts as the start of collection
            if isinstance(current, (Collecting, Progress)) or (
                isinstance(current, Scanning) and self._signal.is_set()
            ):
                self._fail(generation, DISCONNECTED_MESSAGE)

    def _on_live_bpm(self, generation: int, bpm: int) -> None:
        if generation != self._generation:
            return
        if is_valid_bpm(bpm) and isinstance(self.state, Scanning):
            self._signal.set()

    # ---- state publication ----

    def _publish(self, generation: int, state: SessionState) -> None:
        if generation != self._generation:
            return
        logger.debug(f"Acquisition {generation}: {state}")
        self.collection_state.set(state)

    def _finish(self, generation: int, state: SessionState) -> None:
        if generation != self._generation:
            return
        self._unwatch_link()
        self._publish(generation, state)

    def _fail(self, generation: int, message: str) -> None:
        """Session-fatal error raised from a link callback."""
        if generation != self._generation:
            return

        logger.warning(f"Acquisition {generation} failed: {message}")
        if self.session is not None:
            self.session.samples.clear()
        self._finish(generation, Error(message))

        # Stop the session task; nothing it does can publish any more
        self._generation += 1
        task = self._task
        if task is not None and not task.done():
            task.cancel()

    async def _invalidate(self) -> None:
        self._generation += 1
        self._unwatch_link()

        task = self._task
        self._task = None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})
