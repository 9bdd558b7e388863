"""General utility functions."""

import time
from functools import wraps
import numpy as np


def time_function(func):
    """
    Decorator to time function execution.
    For recursive functions, only times the top-level call.

    The elapsed time of the last top-level call is kept on ``wrapper.elapsed``
    and printed when the bound instance has ``verbose`` set.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        if not hasattr(wrapper, '_in_call'):
            wrapper._in_call = False

        if not wrapper._in_call:
            wrapper._in_call = True
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
                wrapper.elapsed = time.time() - start_time
                if args and getattr(args[0], 'verbose', False):
                    print(f"{func.__name__} took {wrapper.elapsed:.6f} seconds")
                return result
            finally:
                wrapper._in_call = False
        else:
            return func(*args, **kwargs)

    wrapper.elapsed = None
    return wrapper


def _closer(dist, index, best):
    # (distance, index) ordering gives the lowest index on ties
    return dist < best[1] or (dist == best[1] and index < best[0])


def nearest_neighbor_search(query_point, root, points_array):
    """
    Iterative nearest neighbor search in KD-tree.

    Args:
        query_point: Point to find the nearest neighbor for
        root: Root node of the KD-tree
        points_array: Numpy array of points the tree was built on

    Returns:
        Tuple of (index, distance); (-1, inf) when the tree is empty
    """
    best = (-1, np.inf)
    if not np.all(np.isfinite(query_point)):
        return best
    stack = [root]

    while stack:
        node = stack.pop()
        if node is None:
            continue

        # Leaf node: check all points in the leaf
        if node.indices is not None:
            dists = np.linalg.norm(points_array[node.indices] - query_point, axis=1)
            dist = dists.min()
            index = int(node.indices[dists == dist].min())
            if _closer(dist, index, best):
                best = (index, float(dist))
            continue

        # Internal node: check node point
        dist = np.linalg.norm(node.point - query_point)
        if _closer(dist, node.index, best):
            best = (node.index, float(dist))

        # Traverse tree, far side is kept on ties so equal distances are seen
        axis = node.axis
        if query_point[axis] < node.point[axis]:
            near_node, far_node = node.left, node.right
        else:
            near_node, far_node = node.right, node.left

        if abs(query_point[axis] - node.point[axis]) <= best[1]:
            stack.append(far_node)
        stack.append(near_node)

    return best
