import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from hypothesis.extra.numpy import arrays

from icpreg import KDTree


def brute_force_nearest(points, query):
    dists = np.sqrt(((points - query)**2).sum(axis=1))
    best = dists.min()
    return int(np.flatnonzero(dists == best)[0]), best


# integer coordinates make exact distance ties likely
grid_points = arrays(dtype=np.float64, shape=st.tuples(st.integers(1, 60), st.just(3)),
                     elements=st.integers(-5, 5).map(float))
grid_query = arrays(dtype=np.float64, shape=3, elements=st.integers(-6, 6).map(float))


@settings(max_examples=60, deadline=None)
@given(points=grid_points, query=grid_query, leaf_size=st.integers(1, 8))
def test_nearest_matches_brute_force(points, query, leaf_size):
    tree = KDTree(leaf_size=leaf_size)
    tree.build(points)

    index, distance = tree.nearest(query)
    expected_index, expected_distance = brute_force_nearest(points, query)

    assert index == expected_index
    assert distance == pytest.approx(expected_distance)


def test_ties_resolved_to_lowest_index():
    points = np.array([[1.0, 0, 0], [-1.0, 0, 0], [0, 1.0, 0], [0, -1.0, 0], [1.0, 0, 0]])
    for leaf_size in (1, 2, 32):
        tree = KDTree(leaf_size=leaf_size)
        tree.build(points)
        assert tree.nearest([0.0, 0.0, 0.0]) == (0, 1.0)
        # duplicate of point 0 at index 4
        assert tree.nearest([1.0, 0.0, 0.0])[0] == 0


def test_nearest_is_deterministic_across_builds():
    rng = np.random.default_rng(3)
    points = rng.integers(-3, 3, size=(200, 3)).astype(float)
    queries = rng.integers(-4, 4, size=(50, 3)).astype(float)

    first, second = KDTree(leaf_size=4), KDTree(leaf_size=4)
    first.build(points)
    second.build(points.copy())

    assert [first.nearest(q) for q in queries] == [second.nearest(q) for q in queries]


def test_empty_tree():
    tree = KDTree()
    tree.build(np.empty((0, 3)))

    assert tree.is_empty
    assert len(tree) == 0
    index, distance = tree.nearest([0.0, 0.0, 0.0])
    assert index == -1
    assert np.isinf(distance)


def test_non_finite_query_has_no_match():
    tree = KDTree()
    tree.build(np.eye(3))
    assert tree.nearest([np.nan, 0.0, 0.0]) == (-1, np.inf)


@settings(max_examples=40, deadline=None)
@given(points=grid_points, query=grid_query, k=st.integers(1, 10))
def test_knn_matches_sorted_distances(points, query, k):
    tree = KDTree(leaf_size=3)
    tree.build(points)

    indices, distances = tree.query_knn(query, k)

    dists = np.sqrt(((points - query)**2).sum(axis=1))
    expected = sorted(zip(dists.tolist(), range(len(points))))[:k]
    assert indices.tolist() == [i for _, i in expected]
    np.testing.assert_allclose(distances, [d for d, _ in expected])


def test_radius_query_is_inclusive():
    points = np.array([[0.0, 0, 0], [1.0, 0, 0], [2.0, 0, 0], [0, 3.0, 0]])
    tree = KDTree(leaf_size=1)
    tree.build(points)

    indices, distances = tree.query_radius([0.0, 0.0, 0.0], 2.0)

    assert indices.tolist() == [0, 1, 2]
    np.testing.assert_allclose(distances, [0.0, 1.0, 2.0])


@settings(max_examples=40, deadline=None)
@given(points=grid_points, query=grid_query, radius=st.floats(0.0, 6.0))
def test_radius_matches_brute_force(points, query, radius):
    tree = KDTree(leaf_size=2)
    tree.build(points)

    indices, _ = tree.query_radius(query, radius)

    dists = np.sqrt(((points - query)**2).sum(axis=1))
    assert set(indices.tolist()) == set(np.flatnonzero(dists <= radius).tolist())


def test_build_timing_is_recorded(capsys):
    tree = KDTree(verbose=True)
    tree.build(np.zeros((5, 3)))

    assert KDTree.build.elapsed is not None
    assert "build took" in capsys.readouterr().out
