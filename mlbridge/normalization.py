"""
Per-type normalization of raw sensor values.

Sensors report in very different native ranges (raw ADC counts,
firmware pre-scaled floats, microvolts). Each DataType maps values to
a canonical range, treating small magnitudes as already normalized.
"""

import math
from typing import List, Optional, Sequence, Union

import numpy as np

from .detection import detect_data_type
from .schema import (
    DataType, FeatureFrame, NORMALIZATION_RANGES,
    IMU_RAW_SCALE, EEG_MICROVOLT_SCALE, SENSOR_DEFAULT_SCALE,
    IMU_PASSTHROUGH_LIMIT, SENSOR_PASSTHROUGH_LIMIT
)


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def normalize_value(value: float, data_type: DataType) -> float:
    """
    Normalize one raw value.

    Total: non-finite input returns 0.0, everything else lands in the
    type's canonical range ([0, 1] for image, [-1, 1] otherwise). Sensor
    values within +/-1.1 are returned unchanged.
    """
    value = float(value)
    if not math.isfinite(value):
        return 0.0

    if data_type == DataType.IMAGE:
        lo, hi = NORMALIZATION_RANGES[DataType.IMAGE]
        return _clamp(value, lo, hi)

    lo, hi = NORMALIZATION_RANGES[DataType.IMU]
    if data_type == DataType.IMU:
        # Serial bridges often send pre-normalized IMU data
        if abs(value) <= IMU_PASSTHROUGH_LIMIT:
            return _clamp(value, lo, hi)
        return _clamp(value / IMU_RAW_SCALE, lo, hi)

    if data_type == DataType.EEG:
        return _clamp(value / EEG_MICROVOLT_SCALE, lo, hi)

    # Generic sensor
    if abs(value) <= SENSOR_PASSTHROUGH_LIMIT:
        return value
    return _clamp(value / SENSOR_DEFAULT_SCALE, lo, hi)


def feature_keys(frame: FeatureFrame, selected: Optional[Sequence[str]] = None) -> List[str]:
    """Selected features sorted, or every numeric key of the frame sorted."""
    if selected:
        return sorted(selected)
    return sorted(k for k, v in frame.items()
                  if isinstance(v, (int, float)) and not isinstance(v, bool))


def normalize_frame(frame: FeatureFrame, keys: Sequence[str],
                    data_type: DataType) -> np.ndarray:
    """Normalize a frame into a vector ordered by keys. Missing keys read as 0."""
    return np.array([normalize_value(frame.get(k, 0) or 0, data_type) for k in keys],
                    dtype=np.float32)


def normalize_sequence(frames: Sequence[FeatureFrame],
                       selected: Optional[Sequence[str]] = None,
                       data_type: Union[DataType, str, None] = 'auto') -> Optional[np.ndarray]:
    """
    Normalize and flatten a frame sequence (e.g. a captured gesture).

    [frame1, frame2, ...] -> [frame1 features..., frame2 features..., ...]

    Args:
        frames: Raw frames, oldest first
        selected: Feature keys (default: numeric keys of the first frame)
        data_type: DataType, or 'auto' to detect from the first frame

    Returns:
        Flat float32 vector of len(frames) * len(keys), or None if
        there are no frames or no features
    """
    if not frames:
        return None
    keys = feature_keys(frames[0], selected)
    if not keys:
        return None

    resolved = DataType.parse(data_type)
    if resolved is None:
        resolved = detect_data_type(frames[0], keys)

    return np.concatenate([normalize_frame(f, keys, resolved) for f in frames])
