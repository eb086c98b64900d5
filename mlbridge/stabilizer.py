"""
Prediction Stabilization

Turns noisy per-frame classifier output into a steady label using three
combined techniques:

1. Confidence gating: low-confidence outputs keep the previous label
2. Majority vote over the last smoothing_window confident outputs
3. Cooldown: a label change needs prediction_cooldown ms since the last one

Gating alone still flickers between two confident classes, voting
alone still switches the instant the signal crosses a boundary, and
cooldown alone lets a single confident misfire win.

Also provides RegressionSmoother, an exponential moving average for
regression outputs.
"""

import logging
import time
from collections import deque
from typing import Callable, Deque, Dict, List, Optional, Sequence

from .schema import PredictionRecord, StableLabel

logger = logging.getLogger(__name__)

DEFAULT_SMOOTHING_WINDOW = 7
DEFAULT_CONFIDENCE_THRESHOLD = 0.65
DEFAULT_PREDICTION_COOLDOWN_MS = 200
REGRESSION_ALPHA = 0.15


def _now_ms() -> float:
    return time.monotonic() * 1000.0


class PredictionStabilizer:
    """
    Majority vote + confidence gate + cooldown over raw predictions.

    Args:
        smoothing_window: History length for voting (1-20)
        confidence_threshold: Minimum confidence to count (0-1)
        prediction_cooldown_ms: Minimum ms between label changes (0-1000)
        class_order: Class list used for vote tie-breaks and the
            smoothed confidence map (default: sorted classes seen so far)
        clock: Callable returning the current time in milliseconds
    """

    def __init__(self,
                 smoothing_window: int = DEFAULT_SMOOTHING_WINDOW,
                 confidence_threshold: float = DEFAULT_CONFIDENCE_THRESHOLD,
                 prediction_cooldown_ms: float = DEFAULT_PREDICTION_COOLDOWN_MS,
                 class_order: Optional[Sequence[str]] = None,
                 clock: Callable[[], float] = _now_ms):
        self.clock = clock
        self.class_order = list(class_order) if class_order else None
        self.history: Deque[PredictionRecord] = deque(maxlen=DEFAULT_SMOOTHING_WINDOW)
        self.smoothing_window = smoothing_window
        self.confidence_threshold = confidence_threshold
        self.prediction_cooldown_ms = prediction_cooldown_ms

        self.stable: Optional[StableLabel] = None
        self.last_change_ms: Optional[float] = None

    # ------------------------------------------------------------------
    # Configuration (clamped)

    @property
    def smoothing_window(self) -> int:
        return self.history.maxlen

    @smoothing_window.setter
    def smoothing_window(self, size: int):
        size = max(1, min(20, int(size)))
        self.history = deque(self.history, maxlen=size)

    @property
    def confidence_threshold(self) -> float:
        return self._confidence_threshold

    @confidence_threshold.setter
    def confidence_threshold(self, threshold: float):
        self._confidence_threshold = max(0.0, min(1.0, float(threshold)))

    @property
    def prediction_cooldown_ms(self) -> float:
        return self._prediction_cooldown_ms

    @prediction_cooldown_ms.setter
    def prediction_cooldown_ms(self, ms: float):
        self._prediction_cooldown_ms = max(0.0, min(1000.0, float(ms)))

    # ------------------------------------------------------------------

    def submit(self, raw: PredictionRecord) -> Optional[StableLabel]:
        """Stabilize a per-frame prediction."""
        return self._smooth(raw, bypass_cooldown=False)

    def submit_bypass_cooldown(self, raw: PredictionRecord) -> Optional[StableLabel]:
        """Stabilize a gesture-triggered prediction; these are infrequent, so no cooldown."""
        return self._smooth(raw, bypass_cooldown=True)

    def _classes(self) -> List[str]:
        if self.class_order:
            seen = set(self.class_order)
            extra = sorted(({c for p in self.history for c in p.confidences} |
                            {p.label for p in self.history}) - seen)
            return self.class_order + extra
        return sorted({c for p in self.history for c in p.confidences} |
                      {p.label for p in self.history})

    def _smooth(self, raw: PredictionRecord, bypass_cooldown: bool) -> Optional[StableLabel]:
        now = self.clock()
        self.history.append(raw)
        threshold = self._confidence_threshold

        if raw.confidence < threshold:
            if self.stable is not None:
                return StableLabel(self.stable.label, self.stable.confidence,
                                   dict(self.stable.confidences), low_confidence=True)
            return None

        classes = self._classes()
        confident = [p for p in self.history if p.confidence >= threshold]

        votes = {cls: 0 for cls in classes}
        for pred in confident:
            votes[pred.label] += 1
        # max() keeps the first of equal counts, i.e. class order
        majority = max(classes, key=lambda cls: votes[cls])

        majority_confs = [p.confidence for p in confident if p.label == majority]
        avg_confidence = (sum(majority_confs) / len(majority_confs)
                          if majority_confs else raw.confidence)

        smoothed = self._smoothed_confidences(classes)

        current = self.stable.label if self.stable is not None else None
        should_update = (current is None or
                         majority == current or
                         bypass_cooldown or
                         now - self.last_change_ms >= self._prediction_cooldown_ms)

        if should_update and avg_confidence >= threshold:
            if majority != current:
                logger.debug("stable label %s -> %s", current, majority)
                self.last_change_ms = now
            self.stable = StableLabel(majority, avg_confidence, smoothed)
        elif majority != current:
            logger.debug("label change %s -> %s held by cooldown", current, majority)

        if self.stable is not None:
            return StableLabel(self.stable.label, self.stable.confidence, smoothed)
        return StableLabel(majority, avg_confidence, smoothed)

    def _smoothed_confidences(self, classes: List[str]) -> Dict[str, float]:
        """Linearly recency-weighted mean of per-class confidences over the history."""
        n = len(self.history)
        smoothed = {cls: 0.0 for cls in classes}
        total_weight = 0.0
        for idx, pred in enumerate(self.history):
            weight = (idx + 1) / n
            for cls in classes:
                smoothed[cls] += pred.confidences.get(cls, 0.0) * weight
            total_weight += weight
        return {cls: v / total_weight for cls, v in smoothed.items()}

    def reset(self):
        self.history.clear()
        self.stable = None
        self.last_change_ms = None


class RegressionSmoother:
    """
    Exponential moving average per regression output.

    alpha=0.15 keeps 85% of the previous value each step. The first value
    seen for an output passes through unchanged.
    """

    def __init__(self, alpha: float = REGRESSION_ALPHA):
        if not 0.0 < alpha <= 1.0:
            raise ValueError(f"alpha must be in (0, 1], got {alpha}")
        self.alpha = alpha
        self.previous: Dict[str, float] = {}

    def smooth(self, values: Dict[str, float]) -> Dict[str, float]:
        result = {}
        for out_id, value in values.items():
            prev = self.previous.get(out_id, value)
            smoothed = self.alpha * value + (1 - self.alpha) * prev
            self.previous[out_id] = smoothed
            result[out_id] = smoothed
        return result

    def reset(self):
        self.previous.clear()
