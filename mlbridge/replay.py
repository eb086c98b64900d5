#!/usr/bin/env python3
"""
ML Bridge Session Replay

Replays a recorded sensor session through a pipeline and reports what
the pipeline saw: detected data types, rejected frames and gesture
captures.

Session files are either a bare list of frames or a wrapper object
{"version": "2.0", "samples": [...]}.

Usage:
    python -m mlbridge.replay session.json --window-size 30 --threshold 0.8
    python -m mlbridge.replay session.json --plot out/strength.png
"""

import argparse
import json
import logging
import sys
from collections import Counter
from pathlib import Path
from typing import Any, List

from .capture import signal_strength
from .config import PipelineConfig
from .pipeline import Pipeline
from .visualize import plot_signal_strength

logger = logging.getLogger(__name__)


def load_session_frames(json_path: Path) -> List[Any]:
    """Load raw frames from a session file (list or {'samples': [...]})."""
    with open(json_path, 'r') as f:
        raw_json = json.load(f)

    if isinstance(raw_json, list):
        return raw_json
    if isinstance(raw_json, dict) and 'samples' in raw_json:
        return raw_json['samples']
    raise ValueError(f"Unknown JSON format in {json_path}: expected array or object with 'samples' key")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='Replay a recorded sensor session through the ML Bridge pipeline'
    )
    parser.add_argument('session', type=str, help='Path to session JSON file')
    parser.add_argument(
        '--config', type=str, default=None,
        help='Pipeline config JSON (command line options override it)'
    )
    parser.add_argument(
        '--window-size', type=int, default=None,
        help='Frames per model input / gesture capture length'
    )
    parser.add_argument(
        '--threshold', type=float, default=None,
        help='Gesture trigger signal strength'
    )
    parser.add_argument(
        '--data-type', type=str, default=None,
        choices=['auto', 'image', 'imu', 'eeg', 'sensor'],
        help='Force a data type instead of detecting it'
    )
    parser.add_argument(
        '--detection-cache', action='store_true',
        help='Detect the data type once per feature key set'
    )
    parser.add_argument(
        '--plot', type=str, default=None,
        help='Save a signal strength plot to this path'
    )
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser.parse_args(argv)


def build_config(args) -> PipelineConfig:
    config = PipelineConfig.load(args.config) if args.config else PipelineConfig()
    overrides = {'auto_capture': True}
    if args.window_size is not None:
        overrides['window_size'] = args.window_size
    if args.threshold is not None:
        overrides['threshold'] = args.threshold
    if args.data_type is not None:
        overrides['data_type'] = args.data_type
    if args.detection_cache:
        overrides['detection_cache'] = True
    return PipelineConfig.from_dict({**config.to_dict(), **overrides})


def replay(frames: List[Any], config: PipelineConfig):
    """
    Run frames through a recording pipeline (no model).

    Returns:
        (pipeline, type_counts, capture_ends, strength) where capture_ends
        are the frame indices at which gestures completed and strength is
        the trigger signal per frame (NaN for ignored frames)
    """
    pipeline = Pipeline(config)
    pipeline.recording_label = 'gesture'

    type_counts: Counter = Counter()
    capture_ends = []
    strength = []
    for index, payload in enumerate(frames):
        result = pipeline.ingest(payload)
        if result.ignored:
            strength.append(float('nan'))
            continue
        strength.append(signal_strength(result.frame))
        type_counts[result.data_type.value] += 1
        if result.gesture is not None:
            capture_ends.append(index)
    return pipeline, type_counts, capture_ends, strength


def main(argv=None):
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(name)s %(levelname)s: %(message)s'
    )

    session_path = Path(args.session)
    if not session_path.is_file():
        print(f"Error: {session_path} is not a file")
        return 1

    try:
        config = build_config(args)
        frames = load_session_frames(session_path)
        logger.debug("loaded %d frames from %s", len(frames), session_path)
    except (ValueError, OSError) as e:
        print(f"Error: {e}")
        return 1

    pipeline, type_counts, capture_ends, strength = replay(frames, config)

    print(f"\nSession: {session_path.name}")
    print(f"  Frames:    {len(frames)}")
    print(f"  Processed: {pipeline.frames_processed}")
    print(f"  Ignored:   {pipeline.frames_ignored}")
    print("  Data types:")
    for name, count in type_counts.most_common():
        print(f"    {name:<8} {count:>8}")
    print(f"  Gestures captured: {len(capture_ends)} "
          f"(window={config.window_size}, threshold={config.threshold})")
    for end in capture_ends:
        print(f"    ends at frame {end}")

    if args.plot:
        plot_signal_strength(strength, config.threshold, capture_ends, Path(args.plot),
                             title=session_path.name)
        print(f"  Plot saved: {args.plot}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
