"""
Vector Math
===========
Cosine similarity, normalization and reductions over dense float embeddings.

Every other component goes through these helpers so that the zero-vector and
empty-input conventions are the same everywhere:

  - cosine similarity with a zero vector is 0 (never a division by zero)
  - normalizing a zero vector returns it unchanged
  - reducing an empty set raises EmptyDatasetError

All functions are pure and return new arrays.
"""

from __future__ import annotations

from typing import List, Sequence, Union

import numpy as np

from .exceptions import DataCorruptionError, DimensionMismatchError, EmptyDatasetError

VectorLike = Union[Sequence[float], np.ndarray]

_FLOAT32_BYTES = 4


def as_vector(v: VectorLike) -> np.ndarray:
    """Coerce to a 1-D float64 array."""
    arr = np.asarray(v, dtype=np.float64)
    if arr.ndim != 1:
        arr = arr.reshape(-1)
    return arr


def as_matrix(vectors) -> np.ndarray:
    """Coerce a sequence of equal-length vectors to a 2-D float64 array."""
    if isinstance(vectors, np.ndarray):
        arr = vectors.astype(np.float64, copy=False)
        return arr.reshape(1, -1) if arr.ndim == 1 else arr
    rows = [as_vector(v) for v in vectors]
    if not rows:
        return np.zeros((0, 0), dtype=np.float64)
    dim = rows[0].shape[0]
    for row in rows[1:]:
        if row.shape[0] != dim:
            raise DimensionMismatchError(dim, row.shape[0], "as_matrix")
    return np.vstack(rows)


def cosine_similarity(a: VectorLike, b: VectorLike) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""
    va = as_vector(a)
    vb = as_vector(b)
    if va.shape[0] != vb.shape[0]:
        raise DimensionMismatchError(va.shape[0], vb.shape[0], "cosine_similarity")
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def cosine_distance(a: VectorLike, b: VectorLike) -> float:
    return 1.0 - cosine_similarity(a, b)


def normalize(v: VectorLike) -> np.ndarray:
    """Unit-length copy of ``v``; a zero vector comes back unchanged."""
    vec = as_vector(v)
    norm = np.linalg.norm(vec)
    if norm == 0.0:
        return vec.copy()
    return vec / norm


def normalize_rows(matrix: np.ndarray) -> np.ndarray:
    """Row-wise normalize; zero rows stay zero."""
    m = as_matrix(matrix)
    norms = np.linalg.norm(m, axis=1, keepdims=True)
    safe = np.where(norms == 0.0, 1.0, norms)
    return m / safe


def mean(vectors) -> np.ndarray:
    """Element-wise average of a non-empty set of vectors."""
    m = as_matrix(vectors)
    if m.shape[0] == 0:
        raise EmptyDatasetError("mean")
    return m.mean(axis=0)


def mean_direction(vectors) -> np.ndarray:
    """Mean of the normalized vectors (direction of the set)."""
    m = as_matrix(vectors)
    if m.shape[0] == 0:
        raise EmptyDatasetError("mean_direction")
    return normalize_rows(m).mean(axis=0)


def similarity_matrix(a, b) -> np.ndarray:
    """
    Batched cosine similarity.

    Args:
        a: (n, d) matrix.
        b: (m, d) matrix.

    Returns:
        (n, m) matrix where entry (i, j) is cosine(a[i], b[j]).
        Rows or columns coming from zero vectors are 0.
    """
    ma = as_matrix(a)
    mb = as_matrix(b)
    if ma.shape[0] == 0 or mb.shape[0] == 0:
        return np.zeros((ma.shape[0], mb.shape[0]), dtype=np.float64)
    if ma.shape[1] != mb.shape[1]:
        raise DimensionMismatchError(ma.shape[1], mb.shape[1], "similarity_matrix")
    return normalize_rows(ma) @ normalize_rows(mb).T


def similarity_batch(query: VectorLike, others) -> np.ndarray:
    """Cosine similarity of one query against each row of ``others``."""
    q = as_vector(query).reshape(1, -1)
    return similarity_matrix(q, others)[0]


def find_semantic_medoid(embeddings, ids: Sequence[str]) -> str:
    """
    Pick the member closest to the set's mean direction.

    Embeddings are normalized, averaged, and the member whose normalized
    embedding has the highest cosine similarity to that mean wins. Ties go to
    the earliest member.
    """
    m = as_matrix(embeddings)
    if m.shape[0] == 0:
        raise EmptyDatasetError("medoid")
    if m.shape[0] != len(ids):
        raise DimensionMismatchError(len(ids), m.shape[0], "find_semantic_medoid")
    if m.shape[0] == 1:
        return ids[0]

    normalized = normalize_rows(m)
    center = normalized.mean(axis=0)
    scores = similarity_batch(center, normalized)
    # argmax returns the first maximum
    return ids[int(np.argmax(scores))]


def normalize_3d(positions, half_range: float = 10.0) -> np.ndarray:
    """
    Map 3D coordinates into [-half_range, half_range] with one shared scale.

    The global min and max are taken jointly over all three axes so every
    axis is scaled by the same factor and relative shape is preserved.
    """
    p = np.asarray(positions, dtype=np.float64)
    if p.size == 0:
        return p.reshape(0, 3)
    lo = float(p.min())
    hi = float(p.max())
    span = hi - lo
    if span == 0.0:
        return p.copy()
    return ((p - lo) / span - 0.5) * (2.0 * half_range)


def encode_vector(v: VectorLike) -> bytes:
    """Serialize to little-endian float32 bytes."""
    return np.asarray(v, dtype="<f4").tobytes()


def decode_vector(buf: bytes, owner_id: str = "<unknown>") -> np.ndarray:
    """Deserialize little-endian float32 bytes produced by encode_vector."""
    if len(buf) % _FLOAT32_BYTES != 0:
        raise DataCorruptionError(
            owner_id,
            reason=f"Vector buffer length {len(buf)} is not a multiple of {_FLOAT32_BYTES}",
        )
    return np.frombuffer(buf, dtype="<f4").astype(np.float64)


__all__: List[str] = [
    "as_vector",
    "as_matrix",
    "cosine_similarity",
    "cosine_distance",
    "normalize",
    "normalize_rows",
    "mean",
    "mean_direction",
    "similarity_matrix",
    "similarity_batch",
    "find_semantic_medoid",
    "normalize_3d",
    "encode_vector",
    "decode_vector",
]
