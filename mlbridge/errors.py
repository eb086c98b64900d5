"""
Pipeline exceptions.

All are ValueError subclasses: they describe bad input (a frame, a
feature vector), never a broken pipeline.
"""

from typing import Optional


class PipelineError(ValueError):
    """Base class for recoverable pipeline errors."""


class FrameRejected(PipelineError):
    """A frame failed validation and was discarded as a whole."""

    def __init__(self, reason: str, key: Optional[str] = None):
        self.reason = reason
        self.key = key
        if key is not None:
            super().__init__(f"frame ignored: {reason} ({key})")
        else:
            super().__init__(f"frame ignored: {reason}")


class DimensionMismatchError(PipelineError):
    """Feature vector length differs from what the trained model expects."""

    def __init__(self, expected: int, got: int):
        self.expected = expected
        self.got = got
        super().__init__(
            f"model expects {expected} features, got {got} - clear and retrain"
        )
