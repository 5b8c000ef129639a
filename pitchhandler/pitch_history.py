# v1.0
from collections import deque
from typing import List, Optional

from pitchhandler.mpm_processor import ConfigurationError, is_positive_integer


class PitchHistory:
    """
    直近の推定値（ノート番号 or clarity）を保持する固定長FIFO。
    容量を超えると最も古い値から捨てる。読み出しは古い順。
    """
    def __init__(self, capacity: int = 400):
        if not is_positive_integer(capacity):
            raise ConfigurationError(f"history capacity must be a positive integer: {capacity}")
        self.capacity = int(capacity)
        self._values = deque(maxlen=self.capacity)

    def push(self, value: float):
        self._values.append(float(value))

    def values(self) -> List[float]:
        return list(self._values)

    def latest(self) -> Optional[float]:
        return self._values[-1] if self._values else None

    def clear(self):
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)
