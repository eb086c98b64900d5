"""
Data Type Detection

Guesses the physical data type of a feature frame (image, imu, eeg or
generic sensor) from its key names and value ranges.

Detection is an ordered list of rules. Each rule looks at a
FrameSample and either returns a DataType or None to pass; the first
rule that returns a type wins. New rules can be inserted into
DETECTION_RULES (or a custom list passed to detect_data_type) and
tested on their own.

Known limitation: values already inside [-1.2, 1.2] are always treated
as pre-normalized (rule 'already_normalized'), so a genuinely
small-amplitude EEG or raw sensor reading is classified as image/sensor.
"""

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, List, Optional, Sequence, Tuple

import numpy as np

from .schema import DataType, FeatureFrame

logger = logging.getLogger(__name__)

RANGE_SAMPLE_SIZE = 20   # keys sampled for the global magnitude check
RULE_SAMPLE_SIZE = 10    # keys sampled inside individual rules
EMBEDDING_KEY_COUNT = 100

IMU_AXES = ('ax', 'ay', 'az', 'gx', 'gy', 'gz', 'mx', 'my', 'mz')
COLOR_NAMES = ('r', 'g', 'b', 'red', 'green', 'blue', 'clear', 'proximity')
CHANNEL_PATTERNS = (
    re.compile(r'^ch[_\s]?\d+$', re.IGNORECASE),
    re.compile(r'^channel[_\s]?\d+$', re.IGNORECASE),
)


@dataclass
class FrameSample:
    """Values of a frame read in key order, missing keys as 0."""
    keys: List[str]
    values: np.ndarray

    @classmethod
    def from_frame(cls, frame: FeatureFrame, keys: Sequence[str]) -> 'FrameSample':
        keys = list(keys)
        values = np.array([float(frame.get(k, 0) or 0) for k in keys], dtype=np.float64)
        return cls(keys=keys, values=values)

    def max_abs(self, n: int = RANGE_SAMPLE_SIZE) -> float:
        head = np.abs(self.values[:n])
        return float(head.max()) if head.size else 0.0

    def value_range(self, n: int = RULE_SAMPLE_SIZE) -> Tuple[float, float]:
        head = self.values[:n]
        if not head.size:
            return 0.0, 0.0
        return float(head.min()), float(head.max())

    def has_negative(self) -> bool:
        return bool(np.any(self.values < 0))

    def key_contains(self, names: Sequence[str]) -> bool:
        lowered = [k.lower() for k in self.keys]
        return any(name == k or name in k for name in names for k in lowered)


Rule = Callable[[FrameSample], Optional[DataType]]


# =============================================================================
# RULES (evaluated in order)
# =============================================================================

def rule_already_normalized(sample: FrameSample) -> Optional[DataType]:
    """Values already in [-1.2, 1.2]: image if non-negative and <= 1, else sensor."""
    max_abs = sample.max_abs()
    if max_abs > 1.2:
        return None
    if not sample.has_negative() and max_abs <= 1.0:
        return DataType.IMAGE
    return DataType.SENSOR


def rule_pixel_keys(sample: FrameSample) -> Optional[DataType]:
    """px_* keys, or a large f0..fN embedding, with values in [0, 1.1]."""
    many = len(sample.keys) > EMBEDDING_KEY_COUNT
    if not any(k.startswith('px_') or (many and k.startswith('f')) for k in sample.keys):
        return None
    lo, hi = sample.value_range()
    if lo >= 0 and hi <= 1.1:
        return DataType.IMAGE
    return None


def rule_imu_axes(sample: FrameSample) -> Optional[DataType]:
    if not sample.key_contains(IMU_AXES):
        return None
    max_abs = sample.max_abs(RULE_SAMPLE_SIZE)
    if 0.1 < max_abs < 100:
        return DataType.IMU
    return None


def rule_generic_channels(sample: FrameSample) -> Optional[DataType]:
    """ch_N / channel_N keys, disambiguated by magnitude."""
    if not any(p.match(k) for p in CHANNEL_PATTERNS for k in sample.keys):
        return None
    max_abs = sample.max_abs(RULE_SAMPLE_SIZE)
    if max_abs > 50:
        return DataType.EEG
    if 0.1 < max_abs < 20:
        return DataType.IMU
    if max_abs <= 1.1:
        return DataType.IMAGE
    return None


def rule_eeg_keys(sample: FrameSample) -> Optional[DataType]:
    if any('eeg' in k.lower() or 'electrode' in k.lower() for k in sample.keys):
        return DataType.EEG
    return None


def rule_color_sensor(sample: FrameSample) -> Optional[DataType]:
    if not sample.key_contains(COLOR_NAMES):
        return None
    lo, hi = sample.value_range()
    if lo >= 0 and hi <= 1.1:
        return DataType.IMAGE
    return None


def rule_magnitude_fallback(sample: FrameSample) -> Optional[DataType]:
    max_abs = sample.max_abs()
    if 0.1 < max_abs < 20:
        return DataType.IMU
    if max_abs > 50:
        return DataType.EEG
    return DataType.SENSOR


DETECTION_RULES: List[Tuple[str, Rule]] = [
    ('already_normalized', rule_already_normalized),
    ('pixel_keys', rule_pixel_keys),
    ('imu_axes', rule_imu_axes),
    ('generic_channels', rule_generic_channels),
    ('eeg_keys', rule_eeg_keys),
    ('color_sensor', rule_color_sensor),
    ('magnitude_fallback', rule_magnitude_fallback),
]


def detect_data_type(frame: FeatureFrame, keys: Optional[Sequence[str]] = None,
                     rules: Optional[List[Tuple[str, Rule]]] = None) -> DataType:
    """
    Classify a frame's data type.

    Args:
        frame: Channel name -> value
        keys: Feature keys to inspect, in order (default: sorted frame keys)
        rules: Rule list to evaluate (default: DETECTION_RULES)

    Returns:
        First DataType returned by a rule, DataType.SENSOR if none match
    """
    if keys is None:
        keys = sorted(frame)
    if not keys:
        return DataType.SENSOR

    sample = FrameSample.from_frame(frame, keys)
    for name, rule in (rules or DETECTION_RULES):
        result = rule(sample)
        if result is not None:
            logger.debug("detected %s via rule %s", result.value, name)
            return result
    return DataType.SENSOR


class DetectionCache:
    """
    Memoizes detection per feature-key set.

    The first frame seen for a key set decides the type for every later
    frame with the same keys, so normalization does not flip mid-session.
    """

    def __init__(self, rules: Optional[List[Tuple[str, Rule]]] = None):
        self.rules = rules
        self._types: Dict[FrozenSet[str], DataType] = {}

    def detect(self, frame: FeatureFrame, keys: Optional[Sequence[str]] = None) -> DataType:
        if keys is None:
            keys = sorted(frame)
        key_set = frozenset(keys)
        cached = self._types.get(key_set)
        if cached is None:
            cached = detect_data_type(frame, keys, self.rules)
            self._types[key_set] = cached
            logger.info("data type for %d features: %s", len(key_set), cached.value)
        return cached

    def clear(self):
        self._types.clear()

    def __len__(self) -> int:
        return len(self._types)
