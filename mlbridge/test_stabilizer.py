"""
Test prediction stabilization: confidence gate, majority vote,
weighted confidences, cooldown, and regression smoothing.
"""

import pytest

from mlbridge.schema import PredictionRecord
from mlbridge.stabilizer import PredictionStabilizer, RegressionSmoother


class FakeClock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


def pred(label, confidence=0.9, classes=('A', 'B', 'C')):
    rest = (1.0 - confidence) / (len(classes) - 1)
    confidences = {c: (confidence if c == label else rest) for c in classes}
    return PredictionRecord(label=label, confidence=confidence, confidences=confidences)


@pytest.mark.parametrize('sequence', [
    'AAABBAA',
    'BBAAAAA',
    'AABABAA',
])
def test_majority_vote(sequence):
    stabilizer = PredictionStabilizer(smoothing_window=7, prediction_cooldown_ms=0,
                                      clock=FakeClock())
    result = None
    for label in sequence:
        result = stabilizer.submit(pred(label))
    assert result.label == 'A'


def test_history_is_bounded():
    stabilizer = PredictionStabilizer(smoothing_window=3, prediction_cooldown_ms=0,
                                      clock=FakeClock())
    for label in 'AAAAABBB':
        result = stabilizer.submit(pred(label))
    assert len(stabilizer.history) == 3
    assert result.label == 'B'


def test_tie_break_uses_class_order_not_history_order():
    stabilizer = PredictionStabilizer(smoothing_window=2, prediction_cooldown_ms=0,
                                      clock=FakeClock())
    assert stabilizer.submit(pred('B')).label == 'B'
    # One vote each: A wins because it comes first in class order
    assert stabilizer.submit(pred('A')).label == 'A'

    ordered = PredictionStabilizer(smoothing_window=2, prediction_cooldown_ms=0,
                                   class_order=['C', 'B', 'A'], clock=FakeClock())
    ordered.submit(pred('A'))
    assert ordered.submit(pred('B')).label == 'B'


def test_cooldown_gate():
    clock = FakeClock(0)
    stabilizer = PredictionStabilizer(smoothing_window=1, prediction_cooldown_ms=200,
                                      clock=clock)
    assert stabilizer.submit(pred('A')).label == 'A'

    clock.t = 50
    held = stabilizer.submit(pred('B'))
    assert held.label == 'A'
    # Confidences are refreshed even though the label is held
    assert held.confidences['B'] == pytest.approx(0.9)

    clock.t = 250
    assert stabilizer.submit(pred('B')).label == 'B'


def test_bypass_cooldown():
    clock = FakeClock(0)
    stabilizer = PredictionStabilizer(smoothing_window=1, prediction_cooldown_ms=1000,
                                      clock=clock)
    stabilizer.submit(pred('A'))
    clock.t = 10
    assert stabilizer.submit(pred('B')).label == 'A'
    assert stabilizer.submit_bypass_cooldown(pred('B')).label == 'B'


def test_confidence_gate_keeps_previous_label():
    stabilizer = PredictionStabilizer(confidence_threshold=0.65, clock=FakeClock())
    stabilizer.submit(pred('A', 0.9))
    result = stabilizer.submit(pred('C', 0.40))
    assert result.label == 'A'
    assert result.low_confidence
    assert result.to_dict()['lowConfidence'] is True


def test_confidence_gate_without_stable_label():
    stabilizer = PredictionStabilizer(confidence_threshold=0.65, clock=FakeClock())
    assert stabilizer.submit(pred('A', 0.5)) is None


def test_low_confidence_entries_do_not_vote():
    stabilizer = PredictionStabilizer(smoothing_window=5, confidence_threshold=0.6,
                                      prediction_cooldown_ms=0, clock=FakeClock())
    for _ in range(3):
        stabilizer.submit(pred('B', 0.5))
    result = stabilizer.submit(pred('A', 0.8))
    assert result.label == 'A'
    assert result.confidence == pytest.approx(0.8)


def test_average_confidence_of_majority():
    stabilizer = PredictionStabilizer(smoothing_window=5, prediction_cooldown_ms=0,
                                      clock=FakeClock())
    stabilizer.submit(pred('A', 0.8))
    result = stabilizer.submit(pred('A', 0.9))
    assert result.confidence == pytest.approx(0.85)


def test_weighted_confidences_favour_recent():
    stabilizer = PredictionStabilizer(smoothing_window=5, confidence_threshold=0.5,
                                      prediction_cooldown_ms=0, clock=FakeClock())
    stabilizer.submit(PredictionRecord('A', 1.0, {'A': 1.0, 'B': 0.0}))
    result = stabilizer.submit(PredictionRecord('B', 1.0, {'A': 0.0, 'B': 1.0}))
    # weights 1/2 and 2/2
    assert result.confidences['A'] == pytest.approx(1 / 3)
    assert result.confidences['B'] == pytest.approx(2 / 3)


def test_partial_history_is_fine():
    stabilizer = PredictionStabilizer(smoothing_window=20, clock=FakeClock())
    result = stabilizer.submit(pred('C'))
    assert result.label == 'C'
    assert sum(result.confidences.values()) == pytest.approx(1.0)


def test_settings_are_clamped():
    stabilizer = PredictionStabilizer(smoothing_window=50, confidence_threshold=2.0,
                                      prediction_cooldown_ms=-5)
    assert stabilizer.smoothing_window == 20
    assert stabilizer.confidence_threshold == 1.0
    assert stabilizer.prediction_cooldown_ms == 0
    stabilizer.smoothing_window = 0
    assert stabilizer.smoothing_window == 1


def test_reset():
    stabilizer = PredictionStabilizer(clock=FakeClock())
    stabilizer.submit(pred('A'))
    stabilizer.reset()
    assert stabilizer.stable is None
    assert len(stabilizer.history) == 0
    assert stabilizer.submit(pred('B', 0.3)) is None


def test_prediction_record_from_confidences():
    record = PredictionRecord.from_confidences({'b': 0.3, 'a': 0.3, 'c': 0.4})
    assert record.label == 'c'
    tie = PredictionRecord.from_confidences({'b': 0.5, 'a': 0.5})
    assert tie.label == 'a'
    with pytest.raises(ValueError):
        PredictionRecord.from_confidences({})


def test_regression_smoother():
    smoother = RegressionSmoother()
    assert smoother.smooth({'x': 1.0}) == {'x': 1.0}
    assert smoother.smooth({'x': 0.0})['x'] == pytest.approx(0.85)
    assert smoother.smooth({'x': 0.0})['x'] == pytest.approx(0.7225)
    smoother.reset()
    assert smoother.smooth({'x': 0.0}) == {'x': 0.0}
    with pytest.raises(ValueError):
        RegressionSmoother(alpha=0)
