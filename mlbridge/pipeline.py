"""
ML Bridge Signal Pipeline

Per-session pipeline from raw sensor frames to stabilized predictions:

    raw payload -> parse/validate -> detect type -> normalize
        -> temporal window (per-frame models)
        -> gesture auto-capture (gesture models)
        -> inference collaborator -> stabilizer / regression smoother

Every buffer is owned by the Pipeline instance; nothing is global, so
independent sessions (or tests) never interfere. Frames are processed
synchronously, one at a time. Errors from a single frame are logged and
the frame is skipped; they never stop the pipeline.
"""

import logging
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import numpy as np

from .capture import GestureAutoCapture
from .config import PipelineConfig
from .detection import DetectionCache, detect_data_type
from .dispatch import DispatchThrottle
from .errors import DimensionMismatchError, FrameRejected
from .ingest import LatestFrameSlot, parse_payload, validate_frame
from .normalization import feature_keys, normalize_frame, normalize_sequence
from .schema import (
    AUTO, DataType, FeatureFrame, PredictionRecord, RegressionResult, StableLabel
)
from .stabilizer import PredictionStabilizer, RegressionSmoother
from .windowing import TemporalWindow

logger = logging.getLogger(__name__)

Prediction = Union[StableLabel, RegressionResult]


def _coerce_raw(raw: Dict[str, Any]) -> Union[PredictionRecord, RegressionResult]:
    """Accept plain-dict model output: {'regression': {...}} or {'label', 'confidences'}."""
    if 'regression' in raw:
        return RegressionResult({str(k): float(v) for k, v in raw['regression'].items()})
    if 'confidence' not in raw:
        return PredictionRecord.from_confidences(raw['confidences'])
    return PredictionRecord.from_dict(raw)


@dataclass
class FrameResult:
    """Outcome of processing one frame."""
    ignored: bool = False
    reason: Optional[str] = None
    frame: Optional[FeatureFrame] = None           # validated raw frame
    data_type: Optional[DataType] = None
    features: Optional[np.ndarray] = None          # current model input
    gesture: Optional[List[FeatureFrame]] = None   # completed capture, raw frames
    example_added: bool = False
    prediction: Optional[Prediction] = None
    error: Optional[str] = None
    dispatch: bool = False                         # prediction should go out on the transport


class Pipeline:
    """
    Args:
        config: Session configuration (default PipelineConfig())
        model: Inference collaborator with `predict(vector)`; optional
            `add_example`, `clear` and `classes` are used when present
        clock: Millisecond clock for the prediction cooldown
    """

    def __init__(self, config: Optional[PipelineConfig] = None, model: Any = None,
                 clock: Optional[Callable[[], float]] = None):
        self.config = config or PipelineConfig()
        self.clock = clock
        self.model = model
        self.selected_features: Optional[List[str]] = None
        self.recording_label: Optional[Any] = None
        self.running = False

        cfg = self.config
        self.window = TemporalWindow(cfg.window_size)
        self.capture = GestureAutoCapture(cfg.threshold, capture_length=cfg.window_size)
        stabilizer_kwargs = {'clock': clock} if clock is not None else {}
        self.stabilizer = PredictionStabilizer(
            smoothing_window=cfg.smoothing_window,
            confidence_threshold=cfg.confidence_threshold,
            prediction_cooldown_ms=cfg.prediction_cooldown_ms,
            **stabilizer_kwargs
        )
        self.regression_smoother = RegressionSmoother()
        self.detector = DetectionCache()
        self.throttle = DispatchThrottle(cfg.transport)

        self.last_features: Optional[np.ndarray] = None
        self.last_prediction: Optional[Prediction] = None
        self.frames_processed = 0
        self.frames_ignored = 0
        self.gestures_captured = 0

    # ------------------------------------------------------------------
    # Configuration

    def update_config(self, **changes) -> PipelineConfig:
        """Apply config changes (clamped) and propagate them to the stages."""
        old = self.config
        self.config = replace(old, **changes)
        cfg = self.config

        if cfg.window_size != old.window_size:
            self.set_window_size(cfg.window_size)
        if cfg.source != old.source:
            self.switch_source(cfg.source)
        if cfg.transport != old.transport:
            self.throttle = DispatchThrottle(cfg.transport)
        if cfg.data_type != old.data_type or cfg.detection_cache != old.detection_cache:
            self.detector.clear()

        self.capture.threshold = cfg.threshold
        self.stabilizer.smoothing_window = cfg.smoothing_window
        self.stabilizer.confidence_threshold = cfg.confidence_threshold
        self.stabilizer.prediction_cooldown_ms = cfg.prediction_cooldown_ms
        return cfg

    def set_window_size(self, size: int):
        """
        Change frames per model input. Flushes the window and capture
        buffers and clears the model, whose input dimension is now wrong.
        """
        size = max(1, int(size))
        self.config = replace(self.config, window_size=size)
        self.window.window_size = size
        self.capture.capture_length = size
        self.capture.reset()
        self.last_features = None
        if self.model is not None and hasattr(self.model, 'clear'):
            logger.warning("window size changed to %d: clearing trained model", size)
            self.model.clear()

    def select_features(self, keys: Optional[Sequence[str]]):
        self.selected_features = sorted(keys) if keys else None
        self.flush()

    # ------------------------------------------------------------------
    # Session lifecycle

    def flush(self):
        """Drop all buffered frames and prediction state (not the model)."""
        self.window.clear()
        self.capture.reset()
        self.stabilizer.reset()
        self.regression_smoother.reset()
        self.detector.clear()
        self.throttle.reset()
        self.last_features = None
        self.last_prediction = None

    def switch_source(self, source: str):
        """Switch input source; nothing from the old source survives."""
        self.config = replace(self.config, source=source)
        self.selected_features = None
        self.flush()
        logger.info("input source switched to %s", self.config.source)

    def clear(self):
        """Flush all buffers and forget the trained model."""
        self.flush()
        if self.model is not None and hasattr(self.model, 'clear'):
            self.model.clear()

    def start(self):
        """Start inference. Auto-capture recording is switched off."""
        self.running = True
        self.recording_label = None
        self.stabilizer.reset()
        self.regression_smoother.reset()

    def stop(self):
        self.running = False
        self.last_prediction = None

    # ------------------------------------------------------------------
    # Frame processing

    def ingest(self, payload: Any) -> FrameResult:
        """Parse a raw transport payload and process it."""
        return self.process_frame(parse_payload(payload))

    def process_frame(self, data: Dict[str, Any]) -> FrameResult:
        try:
            frame = validate_frame(data)
        except FrameRejected as e:
            self.frames_ignored += 1
            logger.debug("%s", e)
            return FrameResult(ignored=True, reason=str(e))

        try:
            result = self._process(frame)
        except Exception as e:
            self.frames_ignored += 1
            logger.exception("frame processing failed, frame skipped")
            return FrameResult(ignored=True, reason=f"processing error: {e}")

        if result.prediction is not None:
            now_ms = self.clock() if self.clock is not None else None
            result.dispatch = self.throttle.should_send(result.prediction, now_ms)
        self.frames_processed += 1
        return result

    def serve(self, slot: LatestFrameSlot, on_result: Callable[[FrameResult], None],
              timeout: Optional[float] = None):
        """
        Process frames handed over by a sensor thread until the slot is
        closed (or a get() times out).
        """
        while True:
            frame = slot.get(timeout)
            if frame is None:
                return
            on_result(self.process_frame(frame))

    def _data_type(self, frame: FeatureFrame, keys: List[str],
                   for_gesture: bool = False) -> DataType:
        resolved = self.config.resolve_data_type(for_gesture)
        if resolved is not None:
            return resolved
        if self.config.detection_cache:
            return self.detector.detect(frame, keys)
        return detect_data_type(frame, keys)

    def _capture_active(self) -> bool:
        cfg = self.config
        if self.running:
            return cfg.gesture_prediction_mode and cfg.is_gesture_input
        return cfg.auto_capture and self.recording_label is not None

    def _process(self, frame: FeatureFrame) -> FrameResult:
        keys = feature_keys(frame, self.selected_features)
        data_type = self._data_type(frame, keys)
        result = FrameResult(frame=frame, data_type=data_type)

        self.window.push(normalize_frame(frame, keys, data_type))
        result.features = self.last_features = self.window.flatten()

        if self._capture_active():
            sample = self.capture.push(frame)
            if sample is not None:
                self.gestures_captured += 1
                result.gesture = sample
                self._handle_gesture(sample, keys, result)
            return result

        if self.running and not (self.config.gesture_prediction_mode and
                                 self.config.is_gesture_input):
            result.prediction, result.error = self._predict(result.features)
        return result

    def _handle_gesture(self, sample: List[FeatureFrame], keys: List[str],
                        result: FrameResult):
        if self.running:
            result.prediction, result.error = self.predict_gesture(sample)
        else:
            try:
                result.example_added = self.add_gesture_example(sample, self.recording_label)
            except DimensionMismatchError as e:
                logger.warning("gesture example rejected: %s", e)
                result.error = str(e)

    # ------------------------------------------------------------------
    # Training examples

    def gesture_vector(self, sample: Sequence[FeatureFrame]) -> Optional[np.ndarray]:
        data_type = self.config.resolve_data_type(for_gesture=True)
        return normalize_sequence(sample, self.selected_features,
                                  data_type if data_type is not None else AUTO)

    def add_gesture_example(self, sample: Sequence[FeatureFrame], label: Any) -> bool:
        vector = self.gesture_vector(sample)
        if vector is None or self.model is None:
            return False
        self.model.add_example(vector, label)
        return True

    def add_example(self, label: Any) -> bool:
        """
        Record the current window as a training example.

        Raises:
            DimensionMismatchError: feature count differs from earlier examples
        """
        if self.last_features is None or self.model is None:
            return False
        self.model.add_example(self.last_features, label)
        return True

    # ------------------------------------------------------------------
    # Inference

    def predict_gesture(self, sample: Sequence[FeatureFrame]):
        """Predict on a complete captured gesture; cooldown is bypassed."""
        vector = self.gesture_vector(sample)
        if vector is None:
            return None, None
        return self._predict(vector, gesture=True)

    def _predict(self, vector: Optional[np.ndarray], gesture: bool = False):
        if vector is None or self.model is None:
            return None, None
        try:
            raw = self.model.predict(vector)
        except DimensionMismatchError as e:
            logger.warning("prediction skipped: %s", e)
            return None, str(e)
        if raw is None:
            return None, None
        if isinstance(raw, dict):
            raw = _coerce_raw(raw)

        if isinstance(raw, RegressionResult):
            prediction = RegressionResult(self.regression_smoother.smooth(raw.regression))
        else:
            classes = getattr(self.model, 'classes', None)
            if classes:
                self.stabilizer.class_order = list(classes)
            if gesture:
                prediction = self.stabilizer.submit_bypass_cooldown(raw)
            else:
                prediction = self.stabilizer.submit(raw)

        self.last_prediction = prediction
        return prediction, None

    def stats(self) -> Dict[str, Any]:
        return {
            'frames_processed': self.frames_processed,
            'frames_ignored': self.frames_ignored,
            'gestures_captured': self.gestures_captured,
            'window_fill': len(self.window),
            'capture_phase': self.capture.phase.value,
            'stable_label': self.stabilizer.stable.label if self.stabilizer.stable else None,
        }
