"""
Test the per-session pipeline end to end with the reference k-NN model.
"""

import numpy as np
import pytest

from mlbridge.config import PipelineConfig
from mlbridge.ingest import LatestFrameSlot
from mlbridge.models import KnnClassifier, KnnRegressor
from mlbridge.pipeline import Pipeline
from mlbridge.schema import CapturePhase, DataType, RegressionResult, StableLabel


class FakeClock:
    def __init__(self, t=0.0):
        self.t = t

    def __call__(self):
        return self.t


def imu(ax, ay=0.5):
    return {'ax': ax, 'ay': ay}


def quiet():
    return {f'ch_{c}': 0.0 for c in range(6)}


def loud(value=2.0):
    return {f'ch_{c}': value for c in range(6)}


def trained_pipeline(**config):
    model = KnnClassifier(k=3)
    pipeline = Pipeline(PipelineConfig(**config), model=model, clock=FakeClock())
    for label, ax in (('up', 3.0), ('down', -3.0)):
        for _ in range(3):
            pipeline.process_frame(imu(ax))
            assert pipeline.add_example(label)
    return pipeline, model


def test_invalid_frame_is_ignored_not_fatal():
    pipeline = Pipeline()
    result = pipeline.process_frame({'ax': float('nan'), 'ay': 1.0})
    assert result.ignored
    assert 'NaN' in result.reason
    assert pipeline.frames_ignored == 1

    result = pipeline.process_frame(imu(2.0))
    assert not result.ignored
    assert pipeline.frames_processed == 1


def test_ingest_parses_text_payload():
    pipeline = Pipeline()
    result = pipeline.ingest('ax:2.0,ay:-4.0')
    assert result.data_type == DataType.IMU
    np.testing.assert_allclose(result.features, [0.5, -1.0])


def test_windowed_features_have_fixed_shape():
    pipeline = Pipeline(PipelineConfig(window_size=4))
    for i in range(6):
        result = pipeline.process_frame({'a': 5.0, 'b': 6.0, 'c': 7.0})
        assert result.features.shape == (12,)


def test_forced_data_type():
    pipeline = Pipeline(PipelineConfig(data_type='eeg'))
    result = pipeline.process_frame({'ax': 100.0})
    assert result.data_type == DataType.EEG
    np.testing.assert_allclose(result.features, [0.5])


def test_webcam_source_is_image():
    pipeline = Pipeline(PipelineConfig(source='webcam'))
    assert pipeline.process_frame({'f0': 7.0}).data_type == DataType.IMAGE


def test_detection_cache_pins_type():
    pipeline = Pipeline(PipelineConfig(detection_cache=True))
    assert pipeline.process_frame({'ch_0': 5.0}).data_type == DataType.IMU
    assert pipeline.process_frame({'ch_0': 500.0}).data_type == DataType.IMU

    uncached = Pipeline()
    uncached.process_frame({'ch_0': 5.0})
    assert uncached.process_frame({'ch_0': 500.0}).data_type == DataType.EEG


def test_continuous_classification():
    pipeline, model = trained_pipeline()
    assert model.input_dim == 2
    pipeline.start()

    result = pipeline.process_frame(imu(3.2))
    assert isinstance(result.prediction, StableLabel)
    assert result.prediction.label == 'up'
    assert result.prediction.confidence == pytest.approx(1.0)

    result = pipeline.process_frame(imu(3.1))
    assert result.prediction.label == 'up'


def test_no_prediction_when_stopped():
    pipeline, _ = trained_pipeline()
    assert pipeline.process_frame(imu(3.0)).prediction is None


def test_dimension_mismatch_is_reported_not_raised():
    pipeline, _ = trained_pipeline()
    pipeline.start()
    result = pipeline.process_frame({'ax': 3.0, 'ay': 0.5, 'az': 0.1})
    assert not result.ignored
    assert result.prediction is None
    assert 'model expects 2 features, got 3' in result.error

    # The pipeline keeps working for matching frames
    assert pipeline.process_frame(imu(-3.0)).prediction.label == 'down'


def test_add_example_with_wrong_dimension_raises():
    pipeline, _ = trained_pipeline()
    pipeline.process_frame({'ax': 3.0, 'ay': 0.5, 'az': 0.1})
    with pytest.raises(ValueError, match='clear and retrain'):
        pipeline.add_example('up')


def test_window_size_change_clears_model():
    pipeline, model = trained_pipeline()
    pipeline.set_window_size(3)
    assert not model.is_trained
    assert model.input_dim is None
    assert len(pipeline.window) == 0
    assert pipeline.capture.capture_length == 3


def test_switch_source_flushes_everything():
    pipeline, model = trained_pipeline(window_size=1, auto_capture=True)
    pipeline.start()
    pipeline.process_frame(imu(3.0))
    assert pipeline.stabilizer.stable is not None

    pipeline.capture.push(quiet())
    pipeline.switch_source('osc')

    assert len(pipeline.window) == 0
    assert pipeline.stabilizer.stable is None
    assert len(pipeline.stabilizer.history) == 0
    assert len(pipeline.capture.pre_roll) == 0
    assert pipeline.capture.phase == CapturePhase.LISTENING
    assert pipeline.config.source == 'osc'
    # Switching source keeps the model; clear() drops it
    assert model.is_trained
    pipeline.clear()
    assert not model.is_trained


def test_auto_capture_records_gesture_examples():
    model = KnnClassifier()
    pipeline = Pipeline(PipelineConfig(window_size=3, threshold=0.5, auto_capture=True,
                                       gesture_mode=True), model=model)
    pipeline.recording_label = 'wave'

    assert pipeline.process_frame(quiet()).gesture is None
    assert pipeline.process_frame(quiet()).gesture is None
    assert pipeline.process_frame(loud(2.0)).gesture is None
    result = pipeline.process_frame(loud(2.0))

    # One pre-roll frame, the trigger and the frame after it
    assert len(result.gesture) == 3
    assert result.gesture[0] == quiet()
    assert result.example_added
    assert model.num_examples == 1
    assert model.input_dim == 18          # 3 frames x 6 channels
    assert pipeline.gestures_captured == 1

    # Gesture mode normalizes captures as IMU: 2.0 / 4
    vector = pipeline.gesture_vector(result.gesture)
    np.testing.assert_allclose(vector[-6:], [0.5] * 6)


def test_no_capture_without_recording_label():
    pipeline = Pipeline(PipelineConfig(window_size=2, threshold=0.5, auto_capture=True))
    pipeline.process_frame(quiet())
    assert pipeline.process_frame(loud()).gesture is None
    assert pipeline.capture.phase == CapturePhase.LISTENING


def test_gesture_prediction_mode():
    config = PipelineConfig(window_size=3, threshold=0.5, gesture_mode=True,
                            gesture_prediction_mode=True)
    model = KnnClassifier()
    pipeline = Pipeline(config, model=model, clock=FakeClock())

    wave = pipeline.gesture_vector([quiet(), loud(2.0), loud(2.0)])
    punch = pipeline.gesture_vector([quiet(), loud(-2.0), loud(-2.0)])
    for _ in range(3):
        model.add_example(wave, 'wave')
        model.add_example(punch, 'punch')

    pipeline.start()
    assert pipeline.process_frame(quiet()).prediction is None
    assert pipeline.process_frame(quiet()).prediction is None
    assert pipeline.process_frame(loud(2.0)).prediction is None
    result = pipeline.process_frame(loud(2.0))
    assert result.gesture is not None
    assert result.prediction.label == 'wave'

    # Capture cooldown: the tail of the gesture is ignored
    for _ in range(40):
        assert pipeline.process_frame(loud(-2.0)).gesture is None

    pipeline.process_frame(quiet())
    pipeline.process_frame(quiet())
    pipeline.process_frame(loud(-2.0))
    result = pipeline.process_frame(loud(-2.0))
    # Gesture predictions bypass the stabilizer cooldown
    assert result.prediction.label == 'punch'


def test_regression_predictions_are_smoothed():
    model = KnnRegressor(k=1)
    pipeline = Pipeline(PipelineConfig(data_type='imu'), model=model)
    pipeline.process_frame(imu(-4.0))
    model.add_example(pipeline.last_features, {'level': 0.0})
    pipeline.process_frame(imu(4.0))
    model.add_example(pipeline.last_features, {'level': 1.0})

    pipeline.start()
    first = pipeline.process_frame(imu(4.0)).prediction
    assert isinstance(first, RegressionResult)
    assert first.regression['level'] == pytest.approx(1.0)
    second = pipeline.process_frame(imu(-4.0)).prediction
    assert second.regression['level'] == pytest.approx(0.85)


def test_plain_dict_model_output():
    class DictModel:
        input_dim = 1

        def predict(self, vector):
            return {'label': 'x', 'confidences': {'x': 0.9, 'y': 0.1}}

    pipeline = Pipeline(PipelineConfig(data_type='sensor'), model=DictModel())
    pipeline.start()
    prediction = pipeline.process_frame({'v': 0.5}).prediction
    assert prediction.label == 'x'
    assert prediction.confidence == pytest.approx(0.9)


def test_model_exception_is_caught_at_frame_boundary():
    class BrokenModel:
        def predict(self, vector):
            raise RuntimeError('boom')

    pipeline = Pipeline(model=BrokenModel())
    pipeline.start()
    result = pipeline.process_frame(imu(2.0))
    assert result.ignored
    assert 'boom' in result.reason
    assert pipeline.frames_ignored == 1


def test_update_config_propagates():
    pipeline = Pipeline()
    pipeline.update_config(confidence_threshold=0.9, smoothing_window=3,
                           prediction_cooldown_ms=5000, threshold=1.5)
    assert pipeline.stabilizer.confidence_threshold == 0.9
    assert pipeline.stabilizer.smoothing_window == 3
    assert pipeline.stabilizer.prediction_cooldown_ms == 1000
    assert pipeline.capture.threshold == 1.5


def test_sessions_do_not_share_state():
    a = Pipeline(PipelineConfig(window_size=2))
    b = Pipeline(PipelineConfig(window_size=2))
    a.process_frame(imu(2.0))
    assert len(a.window) == 1
    assert len(b.window) == 0


def test_serve_from_slot():
    pipeline = Pipeline()
    slot = LatestFrameSlot()
    slot.put(imu(1.0))
    slot.put(imu(2.0))
    slot.close()

    results = []
    pipeline.serve(slot, results.append)
    assert len(results) == 1
    np.testing.assert_allclose(results[0].features, [0.5, 0.5])
    assert slot.dropped == 1


def test_dispatch_flag_follows_transport():
    pipeline, _ = trained_pipeline()
    pipeline.start()
    assert pipeline.process_frame(imu(3.2)).dispatch
    assert pipeline.process_frame(imu(3.1)).dispatch

    serial, _ = trained_pipeline(transport='serial-http')
    serial.start()
    assert serial.process_frame(imu(3.2)).dispatch
    # Same label again: serial-http only sends changes
    assert not serial.process_frame(imu(3.1)).dispatch
    # No prediction, nothing to send
    assert not serial.process_frame({'ax': 3.0, 'ay': 0.5, 'az': 0.1}).dispatch


def test_update_config_source_change_matches_switch_source():
    pipeline = Pipeline()
    pipeline.select_features(['ax'])
    pipeline.process_frame(imu(2.0))
    assert len(pipeline.window) == 1

    pipeline.update_config(source='osc')
    assert pipeline.config.source == 'osc'
    assert pipeline.selected_features is None
    assert len(pipeline.window) == 0
