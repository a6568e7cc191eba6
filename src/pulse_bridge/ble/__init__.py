"""BLE package for heart-rate watch discovery and connections."""

from .link import ConnectionState, HeartRateLink, LinkStatus, ScannedDevice

__all__ = ["ConnectionState", "HeartRateLink", "LinkStatus", "ScannedDevice"]
