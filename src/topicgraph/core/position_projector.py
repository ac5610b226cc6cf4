"""
Position Projector
==================
Maps topic embeddings to 3D coordinates for visualisation.

Pipeline (full recompute over all topics of a graph):

  1. fewer than 4 embeddings -> trivial layout (i*5, 0, 0)
  2. PCA to ``pca_components`` dimensions (clamped to the embedding size).
     Components are extracted one at a time from the covariance matrix by
     power iteration, each deflated against all previously found ones.
  3. UMAP to 3 dimensions, n_neighbors = min(max_neighbors, n // 2)
  4. joint min/max normalisation into [-half_range, half_range]

The UMAP reducer is created through a factory so callers can substitute a
lighter reducer with the same ``fit_transform`` interface.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import numpy as np
import umap
from loguru import logger

from .config import ProjectionConfig
from .exceptions import EmptyDatasetError
from .vector_math import as_matrix, normalize_3d

TRIVIAL_LAYOUT_THRESHOLD = 4
TRIVIAL_SPACING = 5.0
# Deflated images shorter than this fraction of the total variance count as zero
_COLLAPSE_RATIO = 1e-10

ReducerFactory = Callable[..., Any]


@dataclass
class PCAResult:
    components: np.ndarray  # (k, d), unit rows
    mean: np.ndarray        # (d,)

    @property
    def n_components(self) -> int:
        return int(self.components.shape[0])


def covariance_matrix(centered: np.ndarray) -> np.ndarray:
    """Sample covariance of already centred rows (denominator n - 1)."""
    n = centered.shape[0]
    return (centered.T @ centered) / max(n - 1, 1)


def _iterate(
    matrix: np.ndarray,
    start: np.ndarray,
    found: List[np.ndarray],
    floor: float,
    max_iterations: int,
    tolerance: float,
) -> Optional[np.ndarray]:
    """Power iteration from ``start`` orthogonal to ``found``; None if it collapses."""
    vec = start
    for _ in range(max_iterations):
        nxt = matrix @ vec
        for prev in found:
            nxt -= np.dot(nxt, prev) * prev
        norm = np.linalg.norm(nxt)
        if not np.isfinite(norm) or norm <= floor:
            return None
        nxt /= norm
        diff = np.linalg.norm(vec - nxt)
        vec = nxt
        if diff < tolerance:
            break
    return vec


def power_iteration_components(
    matrix: np.ndarray,
    num_components: int,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
) -> np.ndarray:
    """
    Dominant eigenvectors of a symmetric matrix, strongest first.

    Component ``c`` starts from the basis vector e_(c mod d); every iteration
    multiplies by the matrix, removes the projection on all earlier
    components, renormalises, and stops once the step is below ``tolerance``.
    A start vector the deflated matrix maps to (numerically) zero, such as
    the basis vector of a constant coordinate, is replaced by the next basis
    vector. Extraction ends only when every start collapses.
    """
    d = matrix.shape[0]
    floor = _COLLAPSE_RATIO * max(float(np.trace(matrix)), 0.0)
    found: List[np.ndarray] = []
    for comp in range(min(num_components, d)):
        vec = None
        for offset in range(d):
            start = np.zeros(d)
            start[(comp + offset) % d] = 1.0
            vec = _iterate(matrix, start, found, floor, max_iterations, tolerance)
            if vec is not None:
                break
        if vec is None:
            break
        found.append(vec)
    if not found:
        return np.zeros((0, d))
    return np.vstack(found)


def pca(
    vectors,
    num_components: int = 100,
    max_iterations: int = 100,
    tolerance: float = 1e-6,
) -> PCAResult:
    """Fit PCA on the rows of ``vectors``."""
    m = as_matrix(vectors)
    if m.shape[0] == 0:
        raise EmptyDatasetError("pca")
    center = m.mean(axis=0)
    cov = covariance_matrix(m - center)
    components = power_iteration_components(cov, num_components, max_iterations, tolerance)
    return PCAResult(components=components, mean=center)


def project_pca(vectors, result: PCAResult) -> np.ndarray:
    """Project rows (or a single vector) onto the fitted components."""
    m = as_matrix(vectors)
    return (m - result.mean) @ result.components.T


def trivial_positions(n: int) -> np.ndarray:
    positions = np.zeros((n, 3))
    positions[:, 0] = np.arange(n) * TRIVIAL_SPACING
    return positions


class PositionProjector:
    """PCA + UMAP projection of embeddings into a bounded 3D cube."""

    def __init__(
        self,
        config: Optional[ProjectionConfig] = None,
        reducer_factory: Optional[ReducerFactory] = None,
    ):
        self.config = config or ProjectionConfig()
        self.reducer_factory = reducer_factory or umap.UMAP

    def umap_params(self, n: int) -> dict:
        # Spectral initialisation is unreliable on a handful of points
        return {
            "n_components": 3,
            "n_neighbors": max(2, min(self.config.max_neighbors, n // 2)),
            "min_dist": self.config.min_dist,
            "spread": self.config.spread,
            "random_state": self.config.random_state,
            "init": "spectral" if n > 10 else "random",
            "n_jobs": 1,
        }

    def project(self, embeddings) -> np.ndarray:
        """
        Compute positions for all embeddings.

        Returns:
            (n, 3) array, row i belonging to embedding i. Empty input gives an
            empty (0, 3) array.
        """
        m = as_matrix(embeddings)
        n = m.shape[0]
        if n == 0:
            return np.zeros((0, 3))
        if n < TRIVIAL_LAYOUT_THRESHOLD:
            return trivial_positions(n)

        fitted = pca(
            m,
            num_components=min(self.config.pca_components, m.shape[1]),
            max_iterations=self.config.power_iterations,
            tolerance=self.config.tolerance,
        )
        reduced = project_pca(m, fitted)
        logger.debug(f"PCA reduced {n} embeddings from {m.shape[1]} to {fitted.n_components} dims")
        if fitted.n_components == 0:
            logger.warning(f"All {n} embeddings are identical; placing them at the origin")
            return np.zeros((n, 3))

        reducer = self.reducer_factory(**self.umap_params(n))
        layout = np.asarray(reducer.fit_transform(reduced), dtype=np.float64)
        return normalize_3d(layout, self.config.half_range)


__all__ = [
    "PCAResult",
    "covariance_matrix",
    "power_iteration_components",
    "pca",
    "project_pca",
    "trivial_positions",
    "PositionProjector",
]
