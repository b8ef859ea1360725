"""Read outcome counters, one pair per polled endpoint."""

import threading
from typing import Dict


class ReadCounters:
    """Successful and failed read cycles of one endpoint."""

    def __init__(self, endpoint: str):
        self.endpoint = endpoint
        self.read_success = 0
        self.read_error = 0
        self.lock = threading.Lock()

    def incr_read_success(self):
        with self.lock:
            self.read_success += 1

    def incr_read_error(self):
        with self.lock:
            self.read_error += 1

    def get_stats(self) -> Dict:
        """Return counter values"""
        with self.lock:
            return {
                'endpoint': self.endpoint,
                'read_success': self.read_success,
                'read_error': self.read_error,
            }
