"""
Signal strength plot for replayed sessions.

Shows the gesture trigger signal over time, the trigger threshold and
where each capture completed.
"""

from pathlib import Path
from typing import List, Sequence

import numpy as np
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for batch processing
import matplotlib.pyplot as plt


def plot_signal_strength(strength: Sequence[float], threshold: float,
                         capture_ends: List[int], output_path: Path,
                         title: str = 'Gesture trigger signal'):
    """
    Save a signal-strength-vs-frame plot with capture markers.

    Ignored frames should be NaN in strength; they show as gaps.
    """
    strength = np.asarray(strength, dtype=np.float64)

    fig, ax = plt.subplots(figsize=(12, 4))
    ax.plot(strength, linewidth=0.8, color='#1f77b4', label='signal strength')
    ax.axhline(threshold, color='#d62728', linestyle='--', linewidth=1, label='threshold')
    for i, end in enumerate(capture_ends):
        ax.axvline(end, color='#2ca02c', alpha=0.6, linewidth=1,
                   label='capture complete' if i == 0 else None)

    ax.set_xlabel('Frame')
    ax.set_ylabel('mean |ch_0..ch_5|')
    ax.set_title(title)
    ax.legend(loc='upper right')
    ax.grid(True, alpha=0.3)

    fig.tight_layout()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=100)
    plt.close(fig)
