"""
Frame ingestion: payload parsing, validation and thread handoff.

Sensor bridges deliver frames as objects, JSON strings, loose
"key:value" text or bare comma/space separated numbers. Everything is
turned into a FeatureFrame (name -> float) and validated as a whole:
a frame with any bad value is rejected, never partially used.
"""

import json
import logging
import math
import re
import threading
from typing import Any, Dict, Optional

from .errors import FrameRejected
from .schema import FeatureFrame, MAX_ABS_VALUE

logger = logging.getLogger(__name__)

_PAIR_RE = re.compile(r'^\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*:\s*(-?[\d.]+)\s*$')
_SPLIT_RE = re.compile(r'[,\s]+')


def _parse_float(text: str) -> Optional[float]:
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def parse_loose(raw: str) -> Dict[str, float]:
    """
    Parse non-JSON text payloads.

    "x:1.5,y:2.3" or "{x:1.5, y:2.3}" -> {'x': 1.5, 'y': 2.3}
    "0.1 0.2 0.3"                     -> {'ch_0': 0.1, 'ch_1': 0.2, 'ch_2': 0.3}
    """
    out: Dict[str, float] = {}
    if ':' in raw:
        cleaned = raw.replace('{', '').replace('}', '').strip()
        for pair in cleaned.split(','):
            match = _PAIR_RE.match(pair)
            if match:
                value = _parse_float(match.group(2))
                if value is not None:
                    out[match.group(1)] = value
        if out:
            return out

    parts = [p for p in _SPLIT_RE.split(raw) if p.strip()]
    for index, part in enumerate(parts):
        if ':' in part:
            key, _, text = part.partition(':')
            value = _parse_float(text)
            if value is not None and key.strip():
                out[key.strip()] = value
        else:
            value = _parse_float(part)
            if value is not None:
                out[f'ch_{index}'] = value
    return out


def parse_payload(raw: Any) -> Dict[str, Any]:
    """
    Turn a raw transport payload into a key -> value mapping.

    Single-element numeric lists are unwrapped ([940] -> 940). Values are
    not validated here; see validate_frame.
    """
    if isinstance(raw, bytes):
        raw = raw.decode('utf-8', errors='replace')

    if isinstance(raw, dict):
        processed = raw
    elif isinstance(raw, str):
        text = raw.strip()
        processed = {}
        if text.startswith('{') or text.startswith('['):
            try:
                decoded = json.loads(text)
            except json.JSONDecodeError:
                decoded = None
            if isinstance(decoded, dict):
                processed = decoded
            elif isinstance(decoded, list):
                processed = {f'ch_{i}': v for i, v in enumerate(decoded)}
        if not processed:
            processed = parse_loose(text)
    else:
        return {}

    flattened = {}
    for key, value in processed.items():
        if isinstance(value, list) and len(value) == 1 and isinstance(value[0], (int, float)):
            value = value[0]
        flattened[str(key)] = value
    return flattened


def validate_frame(data: Dict[str, Any], max_abs: float = MAX_ABS_VALUE) -> FeatureFrame:
    """
    Validate every value of a frame.

    Raises:
        FrameRejected: empty frame, or any value non-numeric, NaN,
            infinite or larger than max_abs in magnitude
    """
    if not data:
        raise FrameRejected("empty frame")

    frame: FeatureFrame = {}
    for key, value in data.items():
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise FrameRejected("non-numeric value", key)
        value = float(value)
        if math.isnan(value):
            raise FrameRejected("NaN value", key)
        if math.isinf(value):
            raise FrameRejected("infinite value", key)
        if abs(value) > max_abs:
            raise FrameRejected(f"magnitude above {max_abs:g}", key)
        frame[key] = value
    return frame


class LatestFrameSlot:
    """
    Single-slot, latest-wins handoff between a sensor thread and a
    processing thread.

    put() never blocks and overwrites an unconsumed frame; get() waits
    for a frame. At most one frame is ever pending.
    """

    def __init__(self):
        self._cond = threading.Condition()
        self._frame: Optional[FeatureFrame] = None
        self._closed = False
        self.dropped = 0

    def put(self, frame: FeatureFrame):
        with self._cond:
            if self._frame is not None:
                self.dropped += 1
            self._frame = frame
            self._cond.notify()

    def get(self, timeout: Optional[float] = None) -> Optional[FeatureFrame]:
        """Take the pending frame; None on timeout or once closed and empty."""
        with self._cond:
            self._cond.wait_for(lambda: self._frame is not None or self._closed, timeout)
            frame, self._frame = self._frame, None
            return frame

    def clear(self):
        with self._cond:
            self._frame = None

    def close(self):
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def pending(self) -> bool:
        with self._cond:
            return self._frame is not None
