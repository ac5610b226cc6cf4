"""
Tests for vector_math: cosine, normalization, reductions, medoid, 3D
normalization and the float32 codec.
"""

import numpy as np
import pytest

from topicgraph.core.exceptions import (
    DataCorruptionError,
    DimensionMismatchError,
    EmptyDatasetError,
)
from topicgraph.core.vector_math import (
    cosine_distance,
    cosine_similarity,
    decode_vector,
    encode_vector,
    find_semantic_medoid,
    mean,
    mean_direction,
    normalize,
    normalize_3d,
    similarity_batch,
    similarity_matrix,
)


# ═══════════════════════════════════════════════════════════════════════
# Cosine
# ═══════════════════════════════════════════════════════════════════════

class TestCosine:

    def test_self_similarity_is_one(self):
        v = [0.3, -1.2, 4.0]
        assert cosine_similarity(v, v) == pytest.approx(1.0)

    def test_symmetric(self):
        rng = np.random.default_rng(7)
        a, b = rng.normal(size=16), rng.normal(size=16)
        assert cosine_similarity(a, b) == pytest.approx(cosine_similarity(b, a))

    def test_orthogonal_and_opposite(self):
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 0], [-2, 0]) == pytest.approx(-1.0)

    def test_zero_vector_gives_zero(self):
        assert cosine_similarity([0, 0, 0], [1, 2, 3]) == 0.0
        assert cosine_similarity([0, 0], [0, 0]) == 0.0

    def test_length_mismatch_raises(self):
        with pytest.raises(DimensionMismatchError):
            cosine_similarity([1, 2], [1, 2, 3])

    def test_distance(self):
        assert cosine_distance([1, 0], [1, 0]) == pytest.approx(0.0)
        assert cosine_distance([1, 0], [0, 1]) == pytest.approx(1.0)


class TestBatched:

    def test_matrix_matches_pairwise(self):
        rng = np.random.default_rng(3)
        a = rng.normal(size=(4, 6))
        b = rng.normal(size=(5, 6))
        m = similarity_matrix(a, b)
        assert m.shape == (4, 5)
        for i in range(4):
            for j in range(5):
                assert m[i, j] == pytest.approx(cosine_similarity(a[i], b[j]))

    def test_zero_rows_are_zero(self):
        m = similarity_matrix([[0, 0], [1, 0]], [[1, 0]])
        assert m[0, 0] == 0.0
        assert m[1, 0] == pytest.approx(1.0)

    def test_empty_inputs(self):
        assert similarity_matrix([], [[1, 0]]).shape == (0, 1)

    def test_dimension_mismatch(self):
        with pytest.raises(DimensionMismatchError):
            similarity_matrix([[1, 0]], [[1, 0, 0]])

    def test_batch(self):
        scores = similarity_batch([1, 0], [[1, 0], [0, 1], [1, 1]])
        assert scores == pytest.approx([1.0, 0.0, 1 / np.sqrt(2)])


# ═══════════════════════════════════════════════════════════════════════
# Normalization and reductions
# ═══════════════════════════════════════════════════════════════════════

class TestReductions:

    def test_normalize_unit_length(self):
        assert np.linalg.norm(normalize([3, 4])) == pytest.approx(1.0)

    def test_normalize_zero_unchanged(self):
        assert list(normalize([0, 0, 0])) == [0, 0, 0]

    def test_normalize_returns_copy(self):
        src = np.array([0.0, 0.0])
        out = normalize(src)
        out[0] = 5.0
        assert src[0] == 0.0

    def test_mean(self):
        assert list(mean([[1, 2], [3, 4]])) == [2, 3]

    def test_mean_empty_raises(self):
        with pytest.raises(EmptyDatasetError):
            mean([])

    def test_mean_direction_ignores_magnitude(self):
        d = mean_direction([[10, 0], [0, 1]])
        assert d == pytest.approx([0.5, 0.5])


class TestMedoid:

    def test_picks_member_closest_to_mean_direction(self):
        embeddings = [[1, 0], [0.9, 0.1], [0, 1]]
        assert find_semantic_medoid(embeddings, ["a", "b", "c"]) == "b"

    def test_tie_goes_to_first(self):
        assert find_semantic_medoid([[1, 0], [2, 0]], ["p", "q"]) == "p"

    def test_magnitude_does_not_matter(self):
        embeddings = [[100, 0], [1, 0.2], [0, 1]]
        assert find_semantic_medoid(embeddings, ["x", "y", "z"]) == "y"

    def test_single_member(self):
        assert find_semantic_medoid([[0.2, 0.1]], ["only"]) == "only"

    def test_empty_raises(self):
        with pytest.raises(EmptyDatasetError):
            find_semantic_medoid([], [])


# ═══════════════════════════════════════════════════════════════════════
# 3D normalization
# ═══════════════════════════════════════════════════════════════════════

class TestNormalize3D:

    def test_range_is_bounded(self):
        rng = np.random.default_rng(11)
        p = rng.normal(scale=50, size=(30, 3))
        out = normalize_3d(p, 10.0)
        assert out.min() == pytest.approx(-10.0)
        assert out.max() == pytest.approx(10.0)

    def test_shared_scale_preserves_aspect(self):
        p = np.array([[0.0, 0.0, 0.0], [4.0, 2.0, 1.0]])
        out = normalize_3d(p, 10.0)
        span = out.max(axis=0) - out.min(axis=0)
        assert span[0] / span[1] == pytest.approx(2.0)
        assert span[1] / span[2] == pytest.approx(2.0)

    def test_degenerate_input_unchanged(self):
        p = np.ones((3, 3))
        assert np.array_equal(normalize_3d(p), p)

    def test_empty(self):
        assert normalize_3d(np.zeros((0, 3))).shape == (0, 3)


# ═══════════════════════════════════════════════════════════════════════
# Codec
# ═══════════════════════════════════════════════════════════════════════

class TestCodec:

    def test_float32_layout(self):
        buf = encode_vector([1.0, -2.5, 0.125])
        assert len(buf) == 12
        assert list(decode_vector(buf)) == [1.0, -2.5, 0.125]

    def test_corrupt_length_raises(self):
        with pytest.raises(DataCorruptionError):
            decode_vector(b"\x00\x01\x02", owner_id="t1")
