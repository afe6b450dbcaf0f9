"""Score post-processing: softmax and top-K ranking against the label table."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from visionx.ml.errors import InitError, InitErrorKind

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

DEFAULT_TOP_K: int = 5

_PROBABILITY_TOLERANCE: float = 1e-3


@dataclass(frozen=True)
class ClassificationResult:
    """A single classification prediction."""

    label: str
    confidence: float


def softmax(scores: NDArray[np.floating]) -> NDArray[np.float64]:
    """Numerically stable softmax over a 1-D score vector."""
    shifted = np.asarray(scores, dtype=np.float64) - np.max(scores)
    exp = np.exp(shifted)
    return exp / exp.sum()


def is_probability_distribution(scores: NDArray[np.floating]) -> bool:
    """Return True if ``scores`` already sums to 1 with every entry in [0, 1]."""
    values = np.asarray(scores, dtype=np.float64)
    if values.size == 0 or values.min() < 0.0 or values.max() > 1.0:
        return False
    return bool(abs(values.sum() - 1.0) <= _PROBABILITY_TOLERANCE)


def rank(
    scores: NDArray[np.floating],
    labels: Sequence[str],
    k: int = DEFAULT_TOP_K,
) -> list[ClassificationResult]:
    """Convert raw scores into the top-``k`` labeled probabilities.

    Exact ties keep the lower class index first.

    Raises:
        ValueError: If ``k`` is less than 1.
        InitError: If the score vector is longer than the label table, which
            means the loaded model and labels do not belong together.
    """
    if k < 1:
        raise ValueError(f"k must be at least 1, got {k}")

    values = np.asarray(scores).reshape(-1)
    if values.size > len(labels):
        raise InitError(
            InitErrorKind.LABEL_MISMATCH,
            f"Model produced {values.size} scores but only {len(labels)} labels are loaded",
        )

    probs = values.astype(np.float64) if is_probability_distribution(values) else softmax(values)
    top = np.argsort(-probs, kind="stable")[:k]
    return [ClassificationResult(label=labels[int(idx)], confidence=float(probs[idx])) for idx in top]
