"""Logging module for WalkSim."""

import json
import threading
from datetime import datetime
from typing import Optional, Callable


class Logger:
    """Logs simulator events to stdout and an optional file"""

    def __init__(self, log_path: Optional[str] = None, callback: Optional[Callable] = None,
                 echo: bool = True):
        self.log_path = log_path
        self.callback = callback
        self.echo = echo
        self.file = None
        # Ticks and ledger syncs log from different threads
        self._lock = threading.Lock()
        if log_path:
            self.file = open(log_path, "a")
            self._write_header()

    def _write_header(self):
        if self.file:
            self.file.write(f"\n{'='*60}\n")
            self.file.write(f"WalkSim Log - {datetime.now().isoformat()}\n")
            self.file.write(f"{'='*60}\n\n")
            self.file.flush()

    def log(self, message: str, data: Optional[dict] = None):
        """Log a message with optional structured data"""
        timestamp = datetime.now().isoformat()
        line = f"[{timestamp}] {message}"
        if data:
            line += f" | {json.dumps(data, default=str)}"
        with self._lock:
            if self.echo:
                print(line)
            if self.file:
                self.file.write(line + "\n")
                self.file.flush()
        if self.callback:
            self.callback(message, data)

    def close(self):
        with self._lock:
            if self.file:
                self.file.close()
                self.file = None
