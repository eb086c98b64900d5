"""
Temporal windowing of normalized feature vectors.

Keeps the most recent window_size vectors and flattens them into a
single fixed-length input for sequence-aware models.
"""

from collections import deque
from typing import Deque, Optional, Sequence

import numpy as np


class TemporalWindow:
    """
    FIFO of the last window_size normalized vectors.

    flatten() always returns window_size * feature_count values once a
    vector has been pushed: missing (not yet seen) frames are zero-filled
    at the oldest positions so the model input shape never changes.
    """

    def __init__(self, window_size: int = 1):
        self._window_size = max(1, int(window_size))
        self._buffer: Deque[np.ndarray] = deque(maxlen=self._window_size)

    @property
    def window_size(self) -> int:
        return self._window_size

    @window_size.setter
    def window_size(self, size: int):
        # Input dimensionality changes: flush, and any trained model is stale
        self._window_size = max(1, int(size))
        self._buffer = deque(maxlen=self._window_size)

    def push(self, vector: Sequence[float]):
        vector = np.asarray(vector, dtype=np.float32)
        if self._buffer and self._buffer[-1].shape != vector.shape:
            # Feature count changed (source switch); old frames are meaningless
            self._buffer.clear()
        self._buffer.append(vector)

    def flatten(self) -> Optional[np.ndarray]:
        if not self._buffer:
            return None
        latest = self._buffer[-1]
        if self._window_size == 1:
            return latest.copy()

        missing = self._window_size - len(self._buffer)
        parts = [np.zeros_like(latest)] * missing + list(self._buffer)
        return np.concatenate(parts)

    def snapshot(self) -> np.ndarray:
        """Buffered vectors, oldest first, shape (n, feature_count)."""
        if not self._buffer:
            return np.zeros((0, 0), dtype=np.float32)
        return np.stack(list(self._buffer))

    def clear(self):
        self._buffer.clear()

    @property
    def is_full(self) -> bool:
        return len(self._buffer) == self._window_size

    def __len__(self) -> int:
        return len(self._buffer)
