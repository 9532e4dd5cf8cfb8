"""Distance-based similarity between face embeddings and the match decision."""

from __future__ import annotations

import logging

import numpy as np

LOGGER = logging.getLogger("facefind.recognition.matcher")

# Decision boundary on ``similarity``; tuned for the recognizer's distance
# distribution, not a probability.
MATCH_THRESHOLD = 0.4


def euclidean_distance(a: np.ndarray, b: np.ndarray) -> float:
    a = np.asarray(a, dtype=np.float64).reshape(-1)
    b = np.asarray(b, dtype=np.float64).reshape(-1)
    if a.shape != b.shape:
        raise ValueError(f"Embedding shapes do not match: {a.shape} vs {b.shape}")
    return float(np.linalg.norm(a - b))


def similarity(a: np.ndarray, b: np.ndarray) -> float:
    """``1 - euclidean_distance(a, b)``.

    Not clamped: the value never exceeds 1.0 but drops below 0.0 once the
    embeddings are more than one unit apart.
    """
    return 1.0 - euclidean_distance(a, b)


def is_match(score: float, threshold: float = MATCH_THRESHOLD) -> bool:
    return score > threshold


def summary_message(match_count: int, faces_found: int, max_similarity: float) -> str:
    """Human-readable outcome of a run; zero matches is still a success."""
    if match_count == 0 and faces_found == 0:
        return "no faces detected in the video"
    if match_count == 0:
        return (
            f"{faces_found} faces detected but none matched the reference "
            f"(best similarity = {max_similarity * 100.0:.1f}%)"
        )
    return f"{match_count} matches found"
