"""CLI entry point for the Pulse Bridge."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from .monitor import run_acquisition


def setup_logging(debug: bool = False) -> None:
    """Set up logging configuration."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%H:%M:%S",
    )


def main() -> None:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        description="TCM Pulse Bridge - heart-rate watch pulse acquisition"
    )
    parser.add_argument(
        "--config",
        required=True,
        help="Path to YAML configuration file",
    )
    parser.add_argument(
        "--device",
        help="Watch address to connect over GATT if no broadcast is received",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()
    setup_logging(args.debug)

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Configuration file not found: {config_path}", file=sys.stderr)
        sys.exit(1)

    try:
        result = asyncio.run(run_acquisition(str(config_path), args.device))
    except KeyboardInterrupt:
        print("\nAcquisition stopped by user")
        sys.exit(130)
    except Exception as e:
        print(f"Acquisition failed: {e}", file=sys.stderr)
        sys.exit(1)

    if result is None:
        sys.exit(2)

    print(f"Pulse type: {result.main_pulse} (confidence {result.main_confidence:.2f})")
    print(f"Pulse rate: {result.pulse_rate} bpm ({result.features.rate_category})")
    if result.syndrome:
        print(f"Syndrome:   {result.syndrome} (confidence {result.syndrome_confidence:.2f})")


if __name__ == "__main__":
    main()
