"""Display waveform synthesis from an instantaneous heart rate."""

from __future__ import annotations

from typing import List, Optional

import numpy as np

from .ble.hr_parse import is_valid_bpm

WAVEFORM_LENGTH = 200
WAVEFORM_RATE_HZ = 50.0
IDLE_FREQUENCY_HZ = 1.2

RISING_GAIN = 0.6
FALLING_GAIN = 0.25
DICROTIC_AMPLITUDE = 0.15
JITTER = 0.03


def synthesize_waveform(
    bpm: int,
    length: int = WAVEFORM_LENGTH,
    sample_rate_hz: float = WAVEFORM_RATE_HZ,
    rng: Optional[np.random.Generator] = None,
) -> List[float]:
    """
    Generate a pulse-like trace for display.

    The primary sinusoid runs at bpm/60 Hz with a taller positive half to
    mimic the upstroke, plus a dicrotic harmonic at twice the frequency and
    uniform jitter. Not used for classification.
    """
    if rng is None:
        rng = np.random.default_rng()

    freq = bpm / 60.0 if bpm > 0 else IDLE_FREQUENCY_HZ
    t = np.arange(length) / sample_rate_hz

    primary = np.sin(2 * np.pi * freq * t)
    pulse = np.where(primary > 0, primary * RISING_GAIN, primary * FALLING_GAIN)
    dicrotic = np.sin(2 * np.pi * freq * 2 * t) * DICROTIC_AMPLITUDE
    noise = rng.uniform(-JITTER, JITTER, length)

    return (pulse + dicrotic + noise).tolist()


def signal_quality(bpm: int) -> float:
    """Plausibility score for an instantaneous heart rate."""
    if 50 <= bpm <= 120:
        return 0.85
    if is_valid_bpm(bpm):
        return 0.60
    return 0.30
