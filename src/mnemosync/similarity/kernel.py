"""Vector math for the similarity kernel.

Cosine similarity, the deterministic fallback embedding and greedy
single-pass clustering. All functions are pure.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from dataclasses import field

import numpy as np

from mnemosync.errors import InvalidInputError
from mnemosync.text import rolling_hash


def cosine_similarity(a: Sequence[float] | None, b: Sequence[float] | None) -> float:
    """Cosine of the angle between *a* and *b*.

    Returns 0.0 for missing or empty vectors, mismatched dimensions and
    zero-norm inputs.
    """
    if a is None or b is None or len(a) == 0 or len(a) != len(b):
        return 0.0
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    denom = float(np.linalg.norm(left) * np.linalg.norm(right))
    if denom == 0.0:
        return 0.0
    return float(np.dot(left, right) / denom)


def fallback_embedding(text: str, dimensions: int) -> list[float]:
    """Content-seeded pseudo-embedding used when no provider answers.

    Component ``i`` is ``sin(h * (i + 1)) * cos(h / (i + 1))`` for the
    rolling hash ``h`` of *text*, L2-normalized. Identical texts always
    map to identical vectors.
    """
    if dimensions <= 0:
        raise InvalidInputError("dimensions must be > 0")
    seed = float(rolling_hash(text))
    steps = np.arange(1, dimensions + 1, dtype=np.float64)
    vector = np.sin(seed * steps) * np.cos(seed / steps)
    norm = float(np.linalg.norm(vector))
    if norm == 0.0:
        return [0.0] * dimensions
    return (vector / norm).tolist()


# ---------------------------------------------------------------------------
# Clustering
# ---------------------------------------------------------------------------


@dataclass
class Cluster:
    """Members of one greedy cluster plus their pairwise similarities."""

    member_ids: list[str]
    pair_similarity: dict[tuple[str, str], float] = field(default_factory=dict)


def greedy_cluster(
    candidates: Sequence[tuple[str, Sequence[float]]],
    threshold: float,
    *,
    max_window: int,
) -> list[Cluster]:
    """Single-pass greedy clustering over ``(id, vector)`` pairs.

    Each unassigned candidate seeds a cluster and absorbs every later
    unassigned candidate whose similarity to the seed reaches *threshold*.
    Only clusters with more than one member are returned.
    """
    if len(candidates) > max_window:
        msg = f"cluster window of {len(candidates)} exceeds maximum {max_window}"
        raise InvalidInputError(msg)
    if not 0.0 <= threshold <= 1.0:
        raise InvalidInputError("threshold must be within [0, 1]")

    assigned: set[int] = set()
    clusters: list[Cluster] = []
    for i, (seed_id, seed_vec) in enumerate(candidates):
        if i in assigned:
            continue
        members = [i]
        for j in range(i + 1, len(candidates)):
            if j in assigned:
                continue
            if cosine_similarity(seed_vec, candidates[j][1]) >= threshold:
                members.append(j)
        if len(members) < 2:
            continue
        assigned.update(members)
        cluster = Cluster(member_ids=[candidates[m][0] for m in members])
        for x, left in enumerate(members):
            for right in members[x + 1 :]:
                key = (candidates[left][0], candidates[right][0])
                cluster.pair_similarity[key] = cosine_similarity(
                    candidates[left][1], candidates[right][1]
                )
        clusters.append(cluster)
    return clusters
