"""Recording of emitted position fixes."""

import json
import threading
import time
from datetime import datetime

from .models import LocationUpdate


class PathRecorder:
    """Records every emitted fix to a JSON trace file"""

    def __init__(self, record_path: str):
        self.record_path = record_path
        self.trace: list[dict] = []
        self.start_time = time.time()
        self._lock = threading.Lock()

    def __call__(self, update: LocationUpdate):
        entry = {
            "elapsed": update.timestamp - self.start_time,
            "location": update.to_dict(),
        }
        with self._lock:
            self.trace.append(entry)

    def save(self):
        """Save trace to file"""
        with self._lock:
            trace = list(self.trace)
        with open(self.record_path, "w") as f:
            json.dump({
                "recorded_at": datetime.now().isoformat(),
                "trace": trace
            }, f, indent=2)
        print(f"Walk trace saved to {self.record_path} ({len(trace)} entries)")
