from __future__ import annotations

from typing import Optional

import cv2


class TickMeter:
    """Accumulating stopwatch on OpenCV's tick counter."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._start: Optional[int] = None
        self._sum = 0
        self._counter = 0

    def start(self) -> None:
        self._start = cv2.getTickCount()

    def stop(self) -> None:
        """Accumulate since the pending start(); no-op if none is pending."""
        now = cv2.getTickCount()
        if self._start is None:
            return
        self._counter += 1
        self._sum += now - self._start
        self._start = None

    def __enter__(self) -> "TickMeter":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()

    @property
    def time_ticks(self) -> int:
        return self._sum

    @property
    def time_sec(self) -> float:
        return self._sum / cv2.getTickFrequency()

    @property
    def time_milli(self) -> float:
        return self.time_sec * 1e3

    @property
    def time_micro(self) -> float:
        return self.time_milli * 1e3

    @property
    def counter(self) -> int:
        return self._counter
