"""NDJSON event logging with sequence numbers and daily rotation."""

from __future__ import annotations

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, TextIO


class NdjsonLogger:
    """Structured event log for acquisition sessions.

    Records go to `<prefix>_<YYYYMMDD>.ndjson`, rotated when the date
    changes. In regular mode `debug` records are dropped unless their
    message is whitelisted. When `debug_dir` is given, every record is
    also written unfiltered to a per-run debug file.
    """

    def __init__(
        self,
        log_dir: str,
        file_prefix: str = "pulse",
        debug_dir: Optional[str] = None,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.file_prefix = file_prefix
        self.mode = "regular"  # regular or verbose
        self.verbose_whitelist: set[str] = set()

        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._seq = 0
        self._current_file: Optional[TextIO] = None
        self._current_date: Optional[str] = None
        self._start_time_ns = time.monotonic_ns()
        self._session_start_ns: Optional[int] = None
        self.session_id: Optional[int] = None

        self._debug_file: Optional[TextIO] = None
        if debug_dir:
            debug_path = Path(debug_dir)
            debug_path.mkdir(parents=True, exist_ok=True)
            run_stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
            self._debug_file = (debug_path / f"{file_prefix}_debug_{run_stamp}.ndjson").open(
                "a", encoding="utf-8", buffering=1
            )

        self._rotate_if_needed()

    def begin_session(self, session_id: int) -> None:
        """Tag subsequent records with `session_id` and restart t_rel_ms."""
        self.session_id = session_id
        self._session_start_ns = time.monotonic_ns()

    def end_session(self) -> None:
        self.session_id = None
        self._session_start_ns = None

    def log(
        self,
        msg_type: str,
        msg: str,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log a structured message to NDJSON."""
        self._rotate_if_needed()
        self._seq += 1

        now_ns = time.monotonic_ns()
        record: Dict[str, Any] = {
            "seq": self._seq,
            "type": msg_type,
            "ts_ms": round((now_ns - self._start_time_ns) / 1_000_000, 3),
            "msg": msg,
        }
        if self.session_id is not None:
            record["session"] = self.session_id
            record["t_rel_ms"] = round((now_ns - self._session_start_ns) / 1_000_000, 3)
        if data is not None:
            record["data"] = data
        record["hms"] = datetime.now().strftime("%H:%M:%S.%f")[:-3]

        if self._debug_file:
            self._write(self._debug_file, record)

        if msg_type == "debug" and self.mode == "regular" and msg not in self.verbose_whitelist:
            return

        if self._current_file:
            self._write(self._current_file, record)

    def event(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log an event message."""
        self.log("event", msg, data=data)

    def status(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log a status message."""
        self.log("status", msg, data=data)

    def error(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log an error message."""
        self.log("error", msg, data=data)

    def debug(self, msg: str, data: Optional[Dict[str, Any]] = None) -> None:
        """Log a debug message (subject to filtering)."""
        self.log("debug", msg, data=data)

    def close(self) -> None:
        """Close the log files."""
        if self._current_file:
            self._current_file.close()
            self._current_file = None
        if self._debug_file:
            self._debug_file.close()
            self._debug_file = None

    @staticmethod
    def _write(handle: TextIO, record: Dict[str, Any]) -> None:
        json.dump(record, handle, separators=(",", ":"), ensure_ascii=False)
        handle.write("\n")
        handle.flush()

    def _rotate_if_needed(self) -> None:
        """Rotate log file if date has changed."""
        current_date = datetime.now().strftime("%Y%m%d")

        if self._current_date != current_date:
            if self._current_file:
                self._current_file.close()

            log_path = self.log_dir / f"{self.file_prefix}_{current_date}.ndjson"
            self._current_file = log_path.open("a", encoding="utf-8", buffering=1)
            self._current_date = current_date

    def __enter__(self) -> NdjsonLogger:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
