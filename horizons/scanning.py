import threading
import time
from typing import Callable, Optional


class ScanDebouncer:
    """Drop a QR code read again by the same station within ``window_seconds``.

    Scanners fire several times while a label stays in front of the camera;
    only the first read inside the window counts.
    """

    def __init__(self, window_seconds: float = 1.0, clock: Optional[Callable[[], float]] = None) -> None:
        self.window = float(window_seconds)
        self._clock = clock or time.monotonic
        self._seen: dict[tuple[str, str], float] = {}
        self._lock = threading.Lock()

    def accept(self, station: str, code: str) -> bool:
        now = self._clock()
        key = (station, code)
        with self._lock:
            last = self._seen.get(key)
            if last is not None and now - last < self.window:
                return False
            self._seen[key] = now
            self._prune(now)
        return True

    def reset(self) -> None:
        with self._lock:
            self._seen.clear()

    def _prune(self, now: float) -> None:
        stale = [key for key, seen in self._seen.items() if now - seen >= self.window]
        for key in stale:
            del self._seen[key]
