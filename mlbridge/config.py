"""
Pipeline configuration.

One PipelineConfig per session; it is passed to Pipeline explicitly and
never shared globally. Out-of-range values are clamped.
"""

import json
from dataclasses import dataclass, asdict, fields
from typing import Any, Dict, Optional

from .dispatch import TRANSPORTS
from .schema import AUTO, DataType, InputSource
from .stabilizer import (
    DEFAULT_SMOOTHING_WINDOW, DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_PREDICTION_COOLDOWN_MS
)


@dataclass
class PipelineConfig:
    window_size: int = 1                      # frames per model input (>= 1)
    threshold: float = 0.5                    # gesture trigger signal strength
    confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD   # 0-1
    smoothing_window: int = DEFAULT_SMOOTHING_WINDOW             # 1-20
    prediction_cooldown_ms: int = DEFAULT_PREDICTION_COOLDOWN_MS  # 0-1000
    gesture_mode: bool = False                # IMU normalization for captures
    gesture_prediction_mode: bool = False     # predict once per gesture, not per frame
    auto_capture: bool = False                # record gestures automatically while training
    source: str = InputSource.SERIAL.value
    data_type: str = AUTO                     # 'auto' or a DataType name
    detection_cache: bool = False             # detect once per key set
    transport: str = TRANSPORTS[0]            # where predictions are sent

    def __post_init__(self):
        self.window_size = max(1, int(self.window_size))
        self.threshold = float(self.threshold)
        self.confidence_threshold = max(0.0, min(1.0, float(self.confidence_threshold)))
        self.smoothing_window = max(1, min(20, int(self.smoothing_window)))
        self.prediction_cooldown_ms = max(0, min(1000, int(self.prediction_cooldown_ms)))
        self.source = InputSource(self.source).value
        if self.data_type != AUTO:
            self.data_type = DataType(self.data_type).value
        if self.transport not in TRANSPORTS:
            raise ValueError(f"Unknown transport: {self.transport} (expected one of {TRANSPORTS})")

    def resolve_data_type(self, for_gesture: bool = False) -> Optional[DataType]:
        """
        Data type to normalize with, or None to auto-detect.

        Webcam and upload sources are always image data; gesture captures
        from other sources use IMU normalization when gesture_mode is on.
        """
        if self.data_type != AUTO:
            return DataType(self.data_type)
        if self.source in (InputSource.WEBCAM.value, InputSource.UPLOAD.value):
            return DataType.IMAGE
        if for_gesture and self.gesture_mode:
            return DataType.IMU
        return None

    @property
    def is_gesture_input(self) -> bool:
        return self.source not in (InputSource.WEBCAM.value, InputSource.UPLOAD.value)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'PipelineConfig':
        known = {f.name for f in fields(cls)}
        unknown = set(d) - known
        if unknown:
            raise ValueError(f"Unknown config keys: {sorted(unknown)}")
        return cls(**d)

    def save(self, path: str):
        with open(path, 'w') as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> 'PipelineConfig':
        with open(path, 'r') as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")
        return cls.from_dict(data)
