"""
Heart Rate Measurement (0x2A37) payload parser.

Byte layout of a Heart Rate Measurement value:
- bytes[0]: Flags
    bit 0: heart-rate value format (0 = uint8, 1 = uint16 little-endian)
    bits 1-2: sensor contact status (bit 2 = supported, bit 1 = detected)
    bit 3: energy expended present (uint16 LE, kJ)
    bit 4: RR intervals present (uint16 LE each, 1/1024 s)
- bytes[1] or bytes[1-2]: heart rate in BPM
- optional energy expended, then zero or more RR intervals

The same layout is carried in broadcast mode as Heart Rate service data.
Vendor manufacturer payloads carry a single uint8 BPM at a known offset.
"""

from __future__ import annotations

import logging
import struct
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MIN_BPM = 30
MAX_BPM = 250
VENDOR_MAX_BPM = 220

FLAG_UINT16 = 0x01
FLAG_CONTACT_DETECTED = 0x02
FLAG_CONTACT_SUPPORTED = 0x04
FLAG_ENERGY_PRESENT = 0x08
FLAG_RR_PRESENT = 0x10


def is_valid_bpm(bpm: int, max_bpm: int = MAX_BPM) -> bool:
    """True if `bpm` is a plausible heart rate."""
    return MIN_BPM <= bpm <= max_bpm


def decode_bpm(payload: bytes) -> Optional[int]:
    """
    Decode the heart-rate field of a 0x2A37 payload.

    Returns None when the payload is too short for its declared encoding or
    the value falls outside [MIN_BPM, MAX_BPM].
    """
    if not payload:
        return None

    flags = payload[0]
    if flags & FLAG_UINT16:
        if len(payload) < 3:
            return None
        bpm = payload[1] | (payload[2] << 8)
    else:
        if len(payload) < 2:
            return None
        bpm = payload[1]

    if not is_valid_bpm(bpm):
        logger.debug(f"Heart rate out of range: {bpm}")
        return None
    return bpm


def parse_heart_rate_measurement(payload: bytes) -> Optional[Dict[str, Any]]:
    """
    Parse a full Heart Rate Measurement record.

    Args:
        payload: Raw notification or service-data bytes

    Returns:
        Dict with bpm, contact, energy and RR fields, or None if the
        heart-rate field itself is unusable. Truncated optional fields are
        left out rather than failing the whole record.
    """
    bpm = decode_bpm(payload)
    if bpm is None:
        return None

    flags = payload[0]
    offset = 3 if flags & FLAG_UINT16 else 2

    contact: Optional[bool] = None
    if flags & FLAG_CONTACT_SUPPORTED:
        contact = bool(flags & FLAG_CONTACT_DETECTED)

    energy_kj: Optional[int] = None
    if flags & FLAG_ENERGY_PRESENT and offset + 2 <= len(payload):
        energy_kj = struct.unpack_from("<H", payload, offset)[0]
        offset += 2

    rr_intervals_ms: List[float] = []
    if flags & FLAG_RR_PRESENT:
        while offset + 2 <= len(payload):
            rr_raw = struct.unpack_from("<H", payload, offset)[0]
            rr_intervals_ms.append(round(rr_raw * 1000.0 / 1024.0, 1))
            offset += 2

    return {
        "bpm": bpm,
        "format": "uint16" if flags & FLAG_UINT16 else "uint8",
        "sensor_contact": contact,
        "energy_kj": energy_kj,
        "rr_intervals_ms": rr_intervals_ms,
        "raw_hex": bytes(payload).hex().upper(),
    }


def decode_vendor_bpm(payload: bytes, offset: int) -> Optional[int]:
    """Read a uint8 BPM from a manufacturer payload at `offset`."""
    if offset < 0 or len(payload) <= offset:
        return None

    bpm = payload[offset]
    if not is_valid_bpm(bpm, VENDOR_MAX_BPM):
        return None
    return bpm
