"""
ML Bridge Data Schema

Defines the data types, normalization ranges and record structures
shared by the signal pipeline (detection, normalization, windowing,
gesture capture and prediction stabilization).
"""

from enum import Enum
from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any, Union
import time


# =============================================================================
# ENUMS - Data Types
# =============================================================================

class DataType(str, Enum):
    """
    Physical data type of a feature frame.

    Selects the normalization rule applied to every value of the frame.
    """
    IMAGE = "image"      # Pixels / embeddings / colour, already in [0, 1]
    IMU = "imu"          # Accelerometer, gyroscope, magnetometer
    EEG = "eeg"          # Electrode potentials in microvolts
    SENSOR = "sensor"    # Generic sensor, passthrough when pre-normalized

    @classmethod
    def names(cls) -> List[str]:
        return [t.value for t in cls]

    @classmethod
    def parse(cls, value: Union[str, 'DataType', None]) -> Optional['DataType']:
        """Parse a type name; 'auto' and None mean "detect it"."""
        if value is None or isinstance(value, cls):
            return value
        if value.lower() == AUTO:
            return None
        return cls(value.lower())


class CapturePhase(str, Enum):
    """Phase of the gesture auto-capture state machine."""
    LISTENING = "listening"
    CAPTURING = "capturing"


class InputSource(str, Enum):
    """Where frames come from. Affects the default data type."""
    SERIAL = "serial"
    WEBCAM = "webcam"
    OSC = "osc"
    UPLOAD = "upload"


AUTO = "auto"

# Canonical output ranges per data type
NORMALIZATION_RANGES = {
    DataType.IMAGE: (0.0, 1.0),
    DataType.IMU: (-1.0, 1.0),
    DataType.EEG: (-1.0, 1.0),
    DataType.SENSOR: (-1.0, 1.0),
}

# Native scale divisors (half range of the typical raw signal)
IMU_RAW_SCALE = 4.0          # accelerometer/gyro raw range -4..+4
EEG_MICROVOLT_SCALE = 200.0  # -200..+200 uV
SENSOR_DEFAULT_SCALE = 10.0  # conservative guess for unknown sensors

# Magnitudes treated as "already normalized"
IMU_PASSTHROUGH_LIMIT = 1.2
SENSOR_PASSTHROUGH_LIMIT = 1.1

# Frames with any |value| above this are treated as corrupt
MAX_ABS_VALUE = 1e6

FeatureFrame = Dict[str, float]


# =============================================================================
# PREDICTIONS
# =============================================================================

@dataclass
class PredictionRecord:
    """
    One raw classifier output, as produced per frame or per gesture.
    """
    label: str
    confidence: float
    confidences: Dict[str, float] = field(default_factory=dict)
    timestamp: float = field(default_factory=lambda: time.time() * 1000.0)

    @classmethod
    def from_confidences(cls, confidences: Dict[str, float],
                         timestamp: Optional[float] = None) -> 'PredictionRecord':
        """Build a record whose label is the arg-max class."""
        if not confidences:
            raise ValueError("confidences must contain at least one class")
        # Sorted so ties resolve to the first class in class order
        label = max(sorted(confidences), key=lambda c: confidences[c])
        record = cls(label=label, confidence=float(confidences[label]),
                     confidences=dict(confidences))
        if timestamp is not None:
            record.timestamp = timestamp
        return record

    def to_dict(self) -> Dict[str, Any]:
        return {
            'label': self.label,
            'confidence': self.confidence,
            'confidences': dict(self.confidences),
            'timestamp': self.timestamp
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> 'PredictionRecord':
        return cls(
            label=d['label'],
            confidence=float(d.get('confidence', 0.0)),
            confidences=dict(d.get('confidences', {})),
            timestamp=d.get('timestamp', time.time() * 1000.0)
        )


@dataclass
class StableLabel:
    """
    Stabilized prediction handed to the dispatch layer.

    low_confidence is set when the latest raw prediction was below the
    confidence threshold and this is the previously accepted label.
    """
    label: str
    confidence: float
    confidences: Dict[str, float] = field(default_factory=dict)
    low_confidence: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = {
            'label': self.label,
            'confidence': self.confidence,
            'confidences': dict(self.confidences)
        }
        if self.low_confidence:
            d['lowConfidence'] = True
        return d


@dataclass
class RegressionResult:
    """Regression output: one value per output id."""
    regression: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {'regression': dict(self.regression)}
