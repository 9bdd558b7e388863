"""KD-Tree implementation for efficient spatial partitioning and nearest neighbor search."""

import heapq

import numpy as np
from .utils import time_function, nearest_neighbor_search


class Node:
    def __init__(self):
        self.point = None
        self.index = None
        self.left = None
        self.right = None
        self.axis = None
        self.indices = None
    def set_point(self, point, index):
        self.point = point
        self.index = int(index)
    def set_left(self, left):
        self.left = left
    def set_right(self, right):
        self.right = right
    def set_axis(self, axis):
        self.axis = axis
    def set_indices(self, indices):
        # copy, the builder keeps partitioning the shared index buffer
        self.indices = np.array(indices, dtype=np.int64)


class KDTree:
    """
    Spatial index over a fixed reference point set.

    Built once; queries never mutate it, so a single tree can be shared by
    concurrent workers. Every query breaks distance ties by lowest index.
    """

    def __init__(self, leaf_size=32, dimension=3, verbose=False):
        self.root = None
        self.points = np.empty((0, dimension))
        self.leaf_size = max(1, int(leaf_size))
        self.dimension = dimension
        self.verbose = verbose

    def __len__(self):
        return self.points.shape[0]

    @property
    def is_empty(self):
        return self.root is None

    @time_function
    def build(self, points):
        """Build the tree over ``points`` (N, dimension) and return the root."""
        points = np.asarray(points, dtype=float).reshape(-1, self.dimension)
        self.points = points
        indices = np.arange(points.shape[0], dtype=np.int64)
        self.root = self._build(indices, 0)
        return self.root

    def _build(self, indices, depth):
        n_points = indices.shape[0]

        # No points
        if n_points == 0:
            return None

        # Leaf: store the indices to avoid creating millions of nodes
        if n_points <= self.leaf_size:
            leaf = Node()
            leaf.set_axis(depth % self.dimension)
            leaf.set_indices(indices)
            return leaf

        axis = depth % self.dimension

        # argpartition gives positions that would place kth in its final position
        median_index = n_points // 2
        order = np.argpartition(self.points[indices, axis], median_index, kind='introselect')
        indices[:] = indices[order]

        median_point_index = indices[median_index]

        node = Node()
        node.set_axis(axis)
        node.set_point(self.points[median_point_index], median_point_index)

        # Build subtrees using views (no copies) into the shared indices array
        node.set_left(self._build(indices[:median_index], depth + 1))
        node.set_right(self._build(indices[median_index + 1:], depth + 1))
        return node

    def nearest(self, query_point):
        """
        Closest reference point.

        Returns:
            Tuple of (index, distance); (-1, inf) for an empty tree
        """
        return nearest_neighbor_search(np.asarray(query_point, dtype=float),
                                       self.root, self.points)

    def query_knn(self, query_point, k):
        """
        The k closest reference points.

        Returns:
            Tuple of (indices, distances) sorted by (distance, index)
        """
        query_point = np.asarray(query_point, dtype=float)
        if k <= 0:
            return np.empty(0, dtype=np.int64), np.empty(0)
        # max-heap of (-distance, -index) keeps the k best seen so far
        heap = []

        def offer(dist, index):
            item = (-dist, -index)
            if len(heap) < k:
                heapq.heappush(heap, item)
            elif item > heap[0]:
                heapq.heapreplace(heap, item)

        def bound():
            return -heap[0][0] if len(heap) == k else np.inf

        stack = [self.root]
        while stack:
            node = stack.pop()
            if node is None:
                continue
            if node.indices is not None:
                dists = np.linalg.norm(self.points[node.indices] - query_point, axis=1)
                for dist, index in zip(dists, node.indices):
                    offer(float(dist), int(index))
                continue
            offer(float(np.linalg.norm(node.point - query_point)), node.index)
            axis = node.axis
            if query_point[axis] < node.point[axis]:
                near_node, far_node = node.left, node.right
            else:
                near_node, far_node = node.right, node.left
            if abs(query_point[axis] - node.point[axis]) <= bound():
                stack.append(far_node)
            stack.append(near_node)

        found = sorted((-d, -i) for d, i in heap)
        indices = np.array([i for _, i in found], dtype=np.int64)
        distances = np.array([d for d, _ in found], dtype=float)
        return indices, distances

    def query_radius(self, query_point, radius):
        """
        All reference points within ``radius`` (inclusive).

        Returns:
            Tuple of (indices, distances) sorted by (distance, index)
        """
        query_point = np.asarray(query_point, dtype=float)
        hits = []
        stack = [self.root]
        while stack:
            node = stack.pop()
            if node is None:
                continue
            if node.indices is not None:
                dists = np.linalg.norm(self.points[node.indices] - query_point, axis=1)
                mask = dists <= radius
                hits.extend(zip(dists[mask].tolist(), node.indices[mask].tolist()))
                continue
            dist = float(np.linalg.norm(node.point - query_point))
            if dist <= radius:
                hits.append((dist, node.index))
            axis = node.axis
            delta = query_point[axis] - node.point[axis]
            if delta <= radius:
                stack.append(node.left)
            if -delta <= radius:
                stack.append(node.right)

        hits.sort()
        indices = np.array([i for _, i in hits], dtype=np.int64)
        distances = np.array([d for d, _ in hits], dtype=float)
        return indices, distances
