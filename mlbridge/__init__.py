"""
ML Bridge Signal Pipeline

Modules:
    schema - Data types, prediction records and normalization constants
    detection - Heuristic data type detection (ordered rules)
    normalization - Per-type value normalization and sequence flattening
    windowing - Temporal window of normalized feature vectors
    capture - Gesture auto-capture state machine
    stabilizer - Prediction stabilization and regression smoothing
    ingest - Payload parsing, frame validation, latest-wins handoff
    models - Reference k-NN inference collaborators
    dispatch - Per-transport dispatch rate limiting
    config - Per-session pipeline configuration
    pipeline - The per-session pipeline tying it all together
    replay - Replay a recorded session from the command line
"""

from .schema import DataType, CapturePhase, InputSource, PredictionRecord, StableLabel, RegressionResult
from .errors import PipelineError, FrameRejected, DimensionMismatchError
from .detection import detect_data_type, DetectionCache
from .normalization import normalize_value, normalize_frame, normalize_sequence
from .windowing import TemporalWindow
from .capture import GestureAutoCapture, signal_strength
from .stabilizer import PredictionStabilizer, RegressionSmoother
from .ingest import parse_payload, validate_frame, LatestFrameSlot
from .dispatch import DispatchThrottle, TRANSPORTS
from .config import PipelineConfig
from .pipeline import Pipeline, FrameResult

__all__ = [
    'DataType',
    'CapturePhase',
    'InputSource',
    'PredictionRecord',
    'StableLabel',
    'RegressionResult',
    'PipelineError',
    'FrameRejected',
    'DimensionMismatchError',
    'detect_data_type',
    'DetectionCache',
    'normalize_value',
    'normalize_frame',
    'normalize_sequence',
    'TemporalWindow',
    'GestureAutoCapture',
    'signal_strength',
    'PredictionStabilizer',
    'RegressionSmoother',
    'parse_payload',
    'validate_frame',
    'LatestFrameSlot',
    'DispatchThrottle',
    'TRANSPORTS',
    'PipelineConfig',
    'Pipeline',
    'FrameResult'
]
