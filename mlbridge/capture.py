"""
Gesture Auto-Capture

Detects the onset of a motion gesture from raw frames and records a
fixed-length sample, including a short pre-roll so the start of the
movement is not lost.

State machine:

    LISTENING --(signal strength > threshold)--> CAPTURING
    CAPTURING --(capture_length frames)--> emit sample, cooldown, LISTENING

A capture is seeded with the trigger frame and as much pre-roll as fits
while leaving post_roll slots for the frames that follow the trigger, so
the body of the gesture is always part of the sample.

Frames are kept raw. Normalization and flattening happen downstream
(normalize_sequence), so the same sample can be used as a training
example or as an inference input.
"""

import logging
from collections import deque
from typing import Deque, List, Optional, Sequence

from .schema import CapturePhase, FeatureFrame

logger = logging.getLogger(__name__)

PRE_ROLL_FRAMES = 20
COOLDOWN_TICKS = 40   # ~0.8s at 50Hz
TRIGGER_CHANNELS = ('ch_0', 'ch_1', 'ch_2', 'ch_3', 'ch_4', 'ch_5')


def signal_strength(frame: FeatureFrame,
                    channels: Sequence[str] = TRIGGER_CHANNELS) -> float:
    """Mean absolute value over the trigger channels; missing channels count as 0."""
    total = sum(abs(float(frame.get(ch, 0) or 0)) for ch in channels)
    return total / len(channels)


class GestureAutoCapture:
    """
    Two-phase trigger/capture state machine.

    Args:
        threshold: Signal strength that starts a capture
        capture_length: Frames per emitted sample (the model's window size)
        pre_roll: Max frames kept from before the trigger
        post_roll: Frames recorded after the trigger (default half the
            capture length, at least 1; 0 when capture_length is 1)
        cooldown_ticks: Frames ignored after each completed capture
        channels: Channels summed for the signal strength
    """

    def __init__(self, threshold: float, capture_length: int,
                 pre_roll: int = PRE_ROLL_FRAMES,
                 post_roll: Optional[int] = None,
                 cooldown_ticks: int = COOLDOWN_TICKS,
                 channels: Sequence[str] = TRIGGER_CHANNELS):
        self.threshold = float(threshold)
        self.capture_length = capture_length
        self.post_roll = post_roll
        self.cooldown_ticks = int(cooldown_ticks)
        self.channels = tuple(channels)

        self.phase = CapturePhase.LISTENING
        self.pre_roll: Deque[FeatureFrame] = deque(maxlen=max(0, int(pre_roll)))
        self.active: List[FeatureFrame] = []
        self.cooldown = 0

    @property
    def capture_length(self) -> int:
        return self._capture_length

    @capture_length.setter
    def capture_length(self, length: int):
        self._capture_length = max(1, int(length))

    def _seed_count(self) -> int:
        """Pre-roll frames that fit in front of the trigger."""
        length = self._capture_length
        if length == 1:
            return 0
        post = self.post_roll if self.post_roll is not None else length // 2
        post = max(1, min(length - 1, int(post)))
        return min(len(self.pre_roll), length - 1 - post)

    @property
    def is_capturing(self) -> bool:
        return self.phase == CapturePhase.CAPTURING

    def push(self, frame: FeatureFrame) -> Optional[List[FeatureFrame]]:
        """
        Feed one raw frame.

        Returns:
            The completed sample (exactly capture_length frames, oldest
            first) when a capture finishes on this frame, else None
        """
        if self.cooldown > 0:
            self.cooldown -= 1
            return None

        if self.phase == CapturePhase.LISTENING:
            strength = signal_strength(frame, self.channels)
            if strength > self.threshold:
                logger.debug("gesture trigger: strength %.3f > %.3f (pre-roll %d)",
                             strength, self.threshold, len(self.pre_roll))
                self.phase = CapturePhase.CAPTURING
                seed = self._seed_count()
                self.active = list(self.pre_roll)[len(self.pre_roll) - seed:] + [frame]
            else:
                self.pre_roll.append(frame)
                return None
        else:
            self.active.append(frame)

        if len(self.active) >= self._capture_length:
            return self._complete()
        return None

    def _complete(self) -> List[FeatureFrame]:
        sample = self.active[-self._capture_length:]
        logger.info("gesture captured: %d frames", len(sample))
        self.active = []
        self.pre_roll.clear()
        self.cooldown = self.cooldown_ticks
        self.phase = CapturePhase.LISTENING
        return sample

    def reset(self):
        """Abort any capture and flush all buffers and cooldown."""
        self.phase = CapturePhase.LISTENING
        self.pre_roll.clear()
        self.active = []
        self.cooldown = 0
