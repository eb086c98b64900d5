"""
Dispatch rate limiting.

The serial-http transport is slow, so it only receives regression
values at most every 500 ms and classifications only when the label
changes. OSC and WebSocket transports send every prediction.
"""

import logging
import time
from typing import Optional, Union

from .schema import RegressionResult, StableLabel

logger = logging.getLogger(__name__)

TRANSPORTS = ('osc', 'websocket', 'serial-http')
SERIAL_REGRESSION_INTERVAL_MS = 500


class DispatchThrottle:
    """Decides whether a prediction should be sent on a transport."""

    def __init__(self, transport: str = 'osc',
                 regression_interval_ms: float = SERIAL_REGRESSION_INTERVAL_MS):
        if transport not in TRANSPORTS:
            raise ValueError(f"Unknown transport: {transport} (expected one of {TRANSPORTS})")
        self.transport = transport
        self.regression_interval_ms = regression_interval_ms
        self.last_label: Optional[str] = None
        self.last_regression_ms: Optional[float] = None

    def should_send(self, prediction: Union[StableLabel, RegressionResult, None],
                    now_ms: Optional[float] = None) -> bool:
        if prediction is None:
            return False
        if self.transport != 'serial-http':
            return True
        if now_ms is None:
            now_ms = time.monotonic() * 1000.0

        if isinstance(prediction, RegressionResult):
            if (self.last_regression_ms is not None and
                    now_ms - self.last_regression_ms < self.regression_interval_ms):
                return False
            self.last_regression_ms = now_ms
            return True

        if prediction.label == self.last_label:
            return False
        logger.debug("serial-http label change %s -> %s", self.last_label, prediction.label)
        self.last_label = prediction.label
        return True

    def reset(self):
        self.last_label = None
        self.last_regression_ms = None
