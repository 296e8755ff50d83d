"""
Small in-process TTL cache used for admin analytics
"""

import threading
import time
from collections import OrderedDict


class TTLCache:
    """Keeps at most max_size entries; the oldest insert is evicted first"""

    def __init__(self, ttl=300, max_size=100, clock=time.monotonic):
        self.ttl = ttl
        self.max_size = max_size
        self._clock = clock
        self._data = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, stored_at = entry
            if self._clock() - stored_at > self.ttl:
                del self._data[key]
                return None
            return value

    def set(self, key, value):
        with self._lock:
            if key in self._data:
                del self._data[key]
            elif len(self._data) >= self.max_size:
                self._data.popitem(last=False)
            self._data[key] = (value, self._clock())

    def invalidate(self, pattern=None):
        """Drop keys containing pattern, or everything"""
        with self._lock:
            if pattern is None:
                self._data.clear()
                return
            for key in [k for k in self._data if pattern in k]:
                del self._data[key]

    def cleanup(self):
        now = self._clock()
        with self._lock:
            expired = [k for k, (_, stored_at) in self._data.items() if now - stored_at > self.ttl]
            for key in expired:
                del self._data[key]
        return len(expired)

    def stats(self):
        with self._lock:
            return {
                'size': len(self._data),
                'max_size': self.max_size,
                'ttl': self.ttl,
                'keys': list(self._data),
            }

    def __len__(self):
        return len(self._data)

    @staticmethod
    def generate_key(range_name, admin, start_date=None, end_date=None):
        key = f'analytics:{range_name}:{admin}'
        if start_date and end_date:
            key = f'{key}:{start_date}:{end_date}'
        return key
