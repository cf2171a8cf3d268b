"""Weighted audio-feature distance used for nearest-neighbour lookups.

Features are mapped onto comparable 0-1 scales first (loudness over a 60 dB
span, tempo over 200 BPM) and compared with a weighted Euclidean distance.
Similarity is ``1 / (1 + distance)`` so identical vectors score 1.0 and the
score decays smoothly with distance.
"""

from __future__ import annotations

from typing import Iterable

import numpy as np

from src.models.recommendation import AudioFeatures

# (feature name, weight, scale divisor)
_FEATURE_TABLE: tuple[tuple[str, float, float], ...] = (
    ("energy", 0.15, 1.0),
    ("valence", 0.15, 1.0),
    ("danceability", 0.15, 1.0),
    ("acousticness", 0.10, 1.0),
    ("instrumentalness", 0.10, 1.0),
    ("speechiness", 0.05, 1.0),
    ("liveness", 0.05, 1.0),
    ("loudness", 0.10, 60.0),
    ("tempo", 0.15, 200.0),
)

FEATURE_NAMES: tuple[str, ...] = tuple(name for name, _, _ in _FEATURE_TABLE)
_WEIGHTS = np.array([weight for _, weight, _ in _FEATURE_TABLE])
_SCALES = np.array([scale for _, _, scale in _FEATURE_TABLE])


def to_vector(features: AudioFeatures) -> np.ndarray:
    """Return the scaled feature vector in ``FEATURE_NAMES`` order."""
    raw = np.array([float(getattr(features, name)) for name in FEATURE_NAMES])
    return raw / _SCALES


def weighted_distance(a: AudioFeatures, b: AudioFeatures) -> float:
    diff = to_vector(a) - to_vector(b)
    return float(np.sqrt(np.sum(_WEIGHTS * diff * diff)))


def feature_similarity(a: AudioFeatures, b: AudioFeatures) -> float:
    """Similarity in (0, 1]; 1.0 for identical vectors."""
    return 1.0 / (1.0 + weighted_distance(a, b))


def average_features(features: Iterable[AudioFeatures]) -> AudioFeatures:
    """Average a set of feature vectors into one synthetic target.

    Continuous features are averaged; ``key`` and ``time_signature`` are
    truncated means and ``mode`` is the majority vote.
    """
    items = list(features)
    if not items:
        msg = "Cannot average an empty set of audio features"
        raise ValueError(msg)

    def _mean(name: str) -> float:
        return float(np.mean([getattr(f, name) for f in items]))

    major_count = sum(1 for f in items if f.mode == 1)
    return AudioFeatures(
        song_id=-1,
        energy=_mean("energy"),
        valence=_mean("valence"),
        danceability=_mean("danceability"),
        acousticness=_mean("acousticness"),
        instrumentalness=_mean("instrumentalness"),
        speechiness=_mean("speechiness"),
        liveness=_mean("liveness"),
        loudness=_mean("loudness"),
        tempo=_mean("tempo"),
        key=int(_mean("key")),
        mode=1 if major_count > len(items) / 2 else 0,
        time_signature=int(_mean("time_signature")),
    )


def rank_by_similarity(
    target: AudioFeatures,
    candidates: Iterable[AudioFeatures],
    limit: int,
) -> list[tuple[int, float]]:
    """Return ``(song_id, similarity)`` for the ``limit`` closest candidates.

    Vectorised over the whole candidate set; ties keep input order.
    """
    items = list(candidates)
    if not items or limit <= 0:
        return []

    matrix = np.vstack([to_vector(f) for f in items])
    diff = matrix - to_vector(target)
    distances = np.sqrt(np.sum(_WEIGHTS * diff * diff, axis=1))
    similarities = 1.0 / (1.0 + distances)
    order = np.argsort(-similarities, kind="stable")[:limit]
    return [(items[i].song_id, float(similarities[i])) for i in order]
