"""TCM Pulse Bridge - heart-rate watch acquisition and pulse classification."""

__version__ = "0.1.0"
__author__ = "TCM Pulse Development"
__email__ = "dev@example.com"

from .classifier import ClassificationResult, analyze_heart_rate, classify_rate
from .config import AppConfig, load_config
from .logs import NdjsonLogger
from .monitor import PulseMonitor
from .session import AcquisitionController

__all__ = [
    "AcquisitionController",
    "AppConfig",
    "ClassificationResult",
    "NdjsonLogger",
    "PulseMonitor",
    "analyze_heart_rate",
    "classify_rate",
    "load_config",
]
