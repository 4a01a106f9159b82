"""BVH-accelerated line queries with two-sided Möller-Trumbore intersection.

Implements a flattened (linear) Bounding Volume Hierarchy for collecting
every intersection of an infinite or semi-finite line with a closed
triangle mesh. All inner-loop functions are compiled with Numba
``@njit(cache=True)`` for performance.

Design Notes
------------
- **Two-sided test**: unlike a shadow ray, a body-shape line query must
  report hits on front and back faces alike, at any signed abscissa. The
  kernel returns ``(hit, t)`` and leaves the abscissa filtering to the
  caller.
- **Flattened BVH**: Nodes are stored in contiguous 1D float64 arrays
  (no Python objects, no recursion in traversal) for Numba compatibility
  and cache locality.
- **Node layout** (8 doubles per node):
  ``[bbox_min_x, min_y, min_z, bbox_max_x, max_y, max_z, child_or_start, count_or_right]``
  - If ``count_or_right < 0``: leaf node → ``child_or_start`` = first triangle index,
    ``|count_or_right|`` = number of triangles.
  - If ``count_or_right >= 0``: internal node → ``child_or_start`` = left child node index,
    ``count_or_right`` = right child node index.
- **Precision**: float64 throughout; the barycentric tolerance ε is
  relative, the parallel test compares ``|det|`` with ``ε·|e1|·|e2|``.

References
----------
- Möller, T. & Trumbore, B. (1997). "Fast, Minimum Storage Ray-Triangle
  Intersection." J. Graphics Tools, 2(1), 21-28.
- Wald, I. (2007). "On fast Construction of SAH-based Bounding Volume
  Hierarchies." Proc. IEEE Symp. Interactive Ray Tracing, pp. 33-40.
"""

from __future__ import annotations

import logging
import math

import numpy as np
from numba import njit, prange, boolean

logger = logging.getLogger(__name__)

# ===================================================================
# Constants (compile-time defaults for Numba; callers pass the
# configured values explicitly)
# ===================================================================

_DEFAULT_EPSILON: float = 1e-10
_DEFAULT_MAX_LEAF: int = 4
_INF: float = 1e30
_STACK_SIZE: int = 128

# ===================================================================
# NODE LAYOUT: indices into the flat node array
# ===================================================================
_BBOX_MIN_X = 0
_BBOX_MIN_Y = 1
_BBOX_MIN_Z = 2
_BBOX_MAX_X = 3
_BBOX_MAX_Y = 4
_BBOX_MAX_Z = 5
_CHILD_OR_START = 6
_COUNT_OR_RIGHT = 7
_NODE_SIZE = 8  # floats per node


# ===================================================================
# MÖLLER-TRUMBORE LINE-TRIANGLE INTERSECTION: Numba JIT
# ===================================================================


@njit(cache=True, fastmath=False)
def line_triangle_intersection(
    line_origin: np.ndarray,
    line_dir: np.ndarray,
    v0: np.ndarray,
    v1: np.ndarray,
    v2: np.ndarray,
    epsilon: float,
):
    """Two-sided Möller-Trumbore line-triangle intersection test.

    Tests if the line L(t) = origin + t * dir crosses the closed triangle
    defined by vertices v0, v1, v2, for any sign of t.

    Parameters
    ----------
    line_origin : np.ndarray
        Line reference point [x, y, z]. Shape: (3,).
    line_dir : np.ndarray
        Line direction vector. Shape: (3,). Unit length makes ``t`` an
        abscissa in metres.
    v0, v1, v2 : np.ndarray
        Triangle vertex positions. Shape: (3,) each.
    epsilon : float
        Relative tolerance. Barycentric coordinates within ``epsilon`` of
        the triangle bounds count as inside, so edge and vertex hits are
        reported.

    Returns
    -------
    hit : bool
        True if the line crosses the triangle.
    t : float
        Parameter of the intersection point (0.0 on a miss).

    Notes
    -----
    ``fastmath=False`` is CRITICAL to prevent the compiler from reordering
    floating-point operations, which would break the epsilon comparisons
    and let lines leak through shared edges.
    """
    # Edge vectors
    e1_x = v1[0] - v0[0]
    e1_y = v1[1] - v0[1]
    e1_z = v1[2] - v0[2]

    e2_x = v2[0] - v0[0]
    e2_y = v2[1] - v0[1]
    e2_z = v2[2] - v0[2]

    # P = line_dir × e2
    p_x = line_dir[1] * e2_z - line_dir[2] * e2_y
    p_y = line_dir[2] * e2_x - line_dir[0] * e2_z
    p_z = line_dir[0] * e2_y - line_dir[1] * e2_x

    # Determinant = e1 · P
    det = e1_x * p_x + e1_y * p_y + e1_z * p_z

    # Parallel (or coplanar) line, scale-free threshold
    scale = math.sqrt(
        (e1_x * e1_x + e1_y * e1_y + e1_z * e1_z)
        * (e2_x * e2_x + e2_y * e2_y + e2_z * e2_z)
    )
    if abs(det) <= epsilon * scale:
        return False, 0.0

    inv_det = 1.0 / det

    # T = line_origin - v0
    t_x = line_origin[0] - v0[0]
    t_y = line_origin[1] - v0[1]
    t_z = line_origin[2] - v0[2]

    # u = (T · P) * inv_det: first barycentric coordinate
    u = (t_x * p_x + t_y * p_y + t_z * p_z) * inv_det

    if u < -epsilon or u > 1.0 + epsilon:
        return False, 0.0

    # Q = T × e1
    q_x = t_y * e1_z - t_z * e1_y
    q_y = t_z * e1_x - t_x * e1_z
    q_z = t_x * e1_y - t_y * e1_x

    # v = (line_dir · Q) * inv_det: second barycentric coordinate
    v = (line_dir[0] * q_x + line_dir[1] * q_y + line_dir[2] * q_z) * inv_det

    if v < -epsilon or u + v > 1.0 + epsilon:
        return False, 0.0

    # t = (e2 · Q) * inv_det: parameter along the line
    t_dist = (e2_x * q_x + e2_y * q_y + e2_z * q_z) * inv_det

    return True, t_dist


@njit(cache=True, parallel=True, fastmath=False)
def intersect_all_triangles(
    line_origin: np.ndarray,
    line_dir: np.ndarray,
    tri_verts: np.ndarray,
    epsilon: float,
):
    """Brute-force line test against every triangle.

    Used on transient vertex sets (offset surfaces) for which building a
    BVH would cost more than the query.

    Parameters
    ----------
    line_origin, line_dir : np.ndarray
        Line definition. Shape: (3,) each.
    tri_verts : np.ndarray
        Triangle vertices. Shape: (num_triangles, 3, 3).
    epsilon : float
        Intersection tolerance.

    Returns
    -------
    hits : np.ndarray
        Boolean hit mask. Shape: (num_triangles,).
    abscissas : np.ndarray
        Hit parameters (NaN on misses). Shape: (num_triangles,).
    """
    num_triangles = tri_verts.shape[0]
    hits = np.zeros(num_triangles, dtype=np.bool_)
    abscissas = np.full(num_triangles, np.nan)

    for i in prange(num_triangles):
        hit, t_hit = line_triangle_intersection(
            line_origin, line_dir, tri_verts[i, 0], tri_verts[i, 1], tri_verts[i, 2], epsilon
        )
        if hit:
            hits[i] = True
            abscissas[i] = t_hit

    return hits, abscissas


# ===================================================================
# LINE-AABB INTERSECTION: Slab Method (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def line_aabb_intersect(
    line_origin: np.ndarray,
    inv_dir: np.ndarray,
    bbox_min: np.ndarray,
    bbox_max: np.ndarray,
    t_min_limit: float,
    t_max_limit: float,
) -> boolean:
    """Test if a line interval intersects an axis-aligned bounding box.

    Uses the slab method with precomputed inverse direction to avoid
    division. Axes with a zero direction component carry the ``_INF``
    sentinel as inverse and reduce to a slab containment test.

    Parameters
    ----------
    line_origin : np.ndarray
        Line reference point [x, y, z]. Shape: (3,).
    inv_dir : np.ndarray
        Precomputed 1.0 / line_dir for each axis. Shape: (3,).
    bbox_min : np.ndarray
        AABB minimum corner. Shape: (3,).
    bbox_max : np.ndarray
        AABB maximum corner. Shape: (3,).
    t_min_limit, t_max_limit : float
        Admissible parameter interval of the line.

    Returns
    -------
    bool
        True if the line intersects the AABB within [t_min_limit, t_max_limit].
    """
    t_min = t_min_limit
    t_max = t_max_limit

    for axis in range(3):
        if inv_dir[axis] >= _INF:
            if line_origin[axis] < bbox_min[axis] or line_origin[axis] > bbox_max[axis]:
                return False
            continue

        t1 = (bbox_min[axis] - line_origin[axis]) * inv_dir[axis]
        t2 = (bbox_max[axis] - line_origin[axis]) * inv_dir[axis]

        # Swap so t1 <= t2
        if t1 > t2:
            t1, t2 = t2, t1

        if t1 > t_min:
            t_min = t1
        if t2 < t_max:
            t_max = t2

        if t_min > t_max:
            return False

    return True


# ===================================================================
# BVH TRAVERSAL: Stack-based, No Recursion (Numba JIT)
# ===================================================================


@njit(cache=True, fastmath=False)
def _collect_line_hits_bvh(
    line_origin: np.ndarray,
    line_dir: np.ndarray,
    t_lower: float,
    bvh_nodes: np.ndarray,
    tri_verts: np.ndarray,
    ordered_tri_indices: np.ndarray,
    epsilon: float,
    out_indices: np.ndarray,
    out_abscissas: np.ndarray,
) -> int:
    """Collect EVERY triangle crossed by a line.

    Uses stack-based iterative traversal. ``t_lower`` only prunes boxes;
    the exact abscissa filter is applied by the caller.

    Parameters
    ----------
    line_origin, line_dir : np.ndarray
        Line definition. Shape: (3,) each.
    t_lower : float
        Lower parameter bound used for box pruning.
    bvh_nodes : np.ndarray
        Flattened BVH node array. Shape: (num_nodes * 8,).
    tri_verts : np.ndarray
        Triangle vertices. Shape: (num_triangles, 3, 3).
    ordered_tri_indices : np.ndarray
        Triangle indices ordered by BVH leaf assignment. Shape: (num_triangles,).
    epsilon : float
        Intersection epsilon.
    out_indices : np.ndarray
        Output buffer of hit triangle indices. Shape: (num_triangles,).
    out_abscissas : np.ndarray
        Output buffer of hit parameters. Shape: (num_triangles,).

    Returns
    -------
    int
        Number of hits written to the output buffers.
    """
    inv_dir = np.empty(3, dtype=np.float64)
    for axis in range(3):
        if line_dir[axis] == 0.0:
            inv_dir[axis] = _INF
        else:
            inv_dir[axis] = 1.0 / line_dir[axis]

    stack = np.empty(_STACK_SIZE, dtype=np.int64)
    stack_ptr = 0
    stack[stack_ptr] = 0  # Push root node index
    stack_ptr += 1

    bbox_min_tmp = np.empty(3, dtype=np.float64)
    bbox_max_tmp = np.empty(3, dtype=np.float64)
    hit_count = 0

    while stack_ptr > 0:
        stack_ptr -= 1
        node_idx = stack[stack_ptr]
        base = node_idx * _NODE_SIZE

        bbox_min_tmp[0] = bvh_nodes[base + _BBOX_MIN_X]
        bbox_min_tmp[1] = bvh_nodes[base + _BBOX_MIN_Y]
        bbox_min_tmp[2] = bvh_nodes[base + _BBOX_MIN_Z]
        bbox_max_tmp[0] = bvh_nodes[base + _BBOX_MAX_X]
        bbox_max_tmp[1] = bvh_nodes[base + _BBOX_MAX_Y]
        bbox_max_tmp[2] = bvh_nodes[base + _BBOX_MAX_Z]

        if not line_aabb_intersect(
            line_origin, inv_dir, bbox_min_tmp, bbox_max_tmp, t_lower, _INF
        ):
            continue

        count_or_right = bvh_nodes[base + _COUNT_OR_RIGHT]

        if count_or_right < 0:
            # LEAF NODE: test triangles
            start = int(bvh_nodes[base + _CHILD_OR_START])
            count = int(-count_or_right)
            for i in range(start, start + count):
                tri_idx = ordered_tri_indices[i]
                hit, t_hit = line_triangle_intersection(
                    line_origin,
                    line_dir,
                    tri_verts[tri_idx, 0],
                    tri_verts[tri_idx, 1],
                    tri_verts[tri_idx, 2],
                    epsilon,
                )
                if hit:
                    out_indices[hit_count] = tri_idx
                    out_abscissas[hit_count] = t_hit
                    hit_count += 1
        else:
            # INTERNAL NODE: push children
            left = int(bvh_nodes[base + _CHILD_OR_START])
            right = int(count_or_right)
            stack[stack_ptr] = left
            stack_ptr += 1
            stack[stack_ptr] = right
            stack_ptr += 1

    return hit_count


def find_line_hits(
    bvh_data: tuple[np.ndarray, np.ndarray, np.ndarray],
    line_origin: np.ndarray,
    line_dir: np.ndarray,
    t_lower: float = -_INF,
    epsilon: float = _DEFAULT_EPSILON,
) -> tuple[np.ndarray, np.ndarray]:
    """Return all triangles crossed by a line, unsorted.

    Parameters
    ----------
    bvh_data : tuple
        Pre-built BVH (bvh_nodes, tri_verts, ordered_indices).
    line_origin, line_dir : np.ndarray
        Line definition. Shape: (3,) each.
    t_lower : float
        Lower parameter bound used to prune boxes. Hits slightly below it
        may still be returned.
    epsilon : float
        Intersection epsilon.

    Returns
    -------
    tri_indices : np.ndarray
        Indices of the crossed triangles. dtype: int64.
    abscissas : np.ndarray
        Line parameter of each hit.
    """
    bvh_nodes, tri_verts, ordered_indices = bvh_data
    num_triangles = tri_verts.shape[0]
    out_indices = np.empty(num_triangles, dtype=np.int64)
    out_abscissas = np.empty(num_triangles, dtype=np.float64)

    # Finite lower bound keeps the slab arithmetic NaN-free
    t_lower = max(float(t_lower), -_INF)

    count = _collect_line_hits_bvh(
        np.ascontiguousarray(line_origin, dtype=np.float64),
        np.ascontiguousarray(line_dir, dtype=np.float64),
        t_lower,
        bvh_nodes,
        tri_verts,
        ordered_indices,
        epsilon,
        out_indices,
        out_abscissas,
    )
    return out_indices[:count].copy(), out_abscissas[:count].copy()


# ===================================================================
# BVH CONSTRUCTION: Python (one-time cost, not JIT-compiled)
# ===================================================================


def build_bvh(
    tri_verts: np.ndarray,
    max_leaf_triangles: int = _DEFAULT_MAX_LEAF,
    sah_num_bins: int = 16,
    epsilon: float = _DEFAULT_EPSILON,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Build a flattened BVH from triangle vertices using binned SAH.

    Parameters
    ----------
    tri_verts : np.ndarray
        Triangle vertex positions. Shape: (num_triangles, 3, 3).
    max_leaf_triangles : int
        Maximum number of triangles per leaf node. Default: 4.
    sah_num_bins : int
        Number of bins for SAH cost evaluation. Default: 16.
    epsilon : float
        Intersection tolerance. Triangle boxes are padded by this
        fraction of their extent so that tolerant edge hits are never
        pruned.

    Returns
    -------
    bvh_nodes : np.ndarray
        Flattened node array. Shape: (num_nodes * 8,), dtype: float64.
    tri_verts : np.ndarray
        Triangle vertex positions (contiguous float64 copy).
        Shape: (num_triangles, 3, 3).
    ordered_indices : np.ndarray
        Triangle indices in BVH leaf order. Shape: (num_triangles,), dtype: int64.
    """
    tri_verts = np.ascontiguousarray(tri_verts, dtype=np.float64)
    num_triangles = tri_verts.shape[0]
    if num_triangles == 0:
        raise ValueError("Cannot build a BVH without triangles.")

    logger.info(
        "Building BVH for %d triangles (max_leaf=%d, sah_bins=%d)...",
        num_triangles,
        max_leaf_triangles,
        sah_num_bins,
    )

    # Per-triangle AABBs (padded) and centroids
    tri_bboxes_min = tri_verts.min(axis=1)
    tri_bboxes_max = tri_verts.max(axis=1)
    pad = epsilon * np.max(tri_bboxes_max - tri_bboxes_min, axis=1, keepdims=True)
    tri_bboxes_min = tri_bboxes_min - pad
    tri_bboxes_max = tri_bboxes_max + pad
    tri_centroids = tri_verts.mean(axis=1)

    # Working index array (reordered during construction)
    indices = np.arange(num_triangles, dtype=np.int64)

    # Pre-allocate node storage (worst case: 2*N - 1 nodes for N triangles)
    max_nodes = 2 * num_triangles
    nodes_flat = np.zeros(max_nodes * _NODE_SIZE, dtype=np.float64)

    node_count = [0]  # Mutable counter (list for closure access)

    def _allocate_node() -> int:
        idx = node_count[0]
        node_count[0] += 1
        return idx

    def _build_recursive(start: int, end: int) -> int:
        """Recursively build BVH. Returns node index."""
        node_idx = _allocate_node()
        base = node_idx * _NODE_SIZE
        count = end - start

        bbox_min = tri_bboxes_min[indices[start:end]].min(axis=0)
        bbox_max = tri_bboxes_max[indices[start:end]].max(axis=0)
        nodes_flat[base + _BBOX_MIN_X: base + _BBOX_MAX_Z + 1] = np.concatenate(
            (bbox_min, bbox_max)
        )

        if count <= max_leaf_triangles:
            nodes_flat[base + _CHILD_OR_START] = float(start)
            nodes_flat[base + _COUNT_OR_RIGHT] = float(-count)
            return node_idx

        best_axis, best_split = _find_best_split_sah(
            indices[start:end], tri_centroids, tri_bboxes_min, tri_bboxes_max,
            bbox_min, bbox_max, sah_num_bins,
        )

        if best_axis < 0:
            # No beneficial split: split at the median of the widest axis
            best_axis = int(np.argmax(bbox_max - bbox_min))
            mid = start
        else:
            mid = _partition_indices(
                indices, start, end, best_axis, best_split, tri_centroids
            )

        if mid == start or mid == end:
            sub_indices = indices[start:end].copy()
            order = np.argsort(tri_centroids[sub_indices, best_axis], kind="stable")
            indices[start:end] = sub_indices[order]
            mid = (start + end) // 2

        left_idx = _build_recursive(start, mid)
        right_idx = _build_recursive(mid, end)

        nodes_flat[base + _CHILD_OR_START] = float(left_idx)
        nodes_flat[base + _COUNT_OR_RIGHT] = float(right_idx)

        return node_idx

    _build_recursive(0, num_triangles)

    actual_nodes = node_count[0]
    bvh_nodes = nodes_flat[: actual_nodes * _NODE_SIZE].copy()

    logger.info(
        "BVH built: %d nodes, %.2f MB node memory",
        actual_nodes,
        bvh_nodes.nbytes / 1e6,
    )

    return bvh_nodes, tri_verts, indices.copy()


def _find_best_split_sah(
    sub_idx: np.ndarray,
    centroids: np.ndarray,
    bboxes_min: np.ndarray,
    bboxes_max: np.ndarray,
    parent_bbox_min: np.ndarray,
    parent_bbox_max: np.ndarray,
    num_bins: int,
) -> tuple[int, float]:
    """Find the best split axis and position using binned SAH.

    Parameters
    ----------
    sub_idx : np.ndarray
        Triangle indices of the node.
    centroids : np.ndarray
        Triangle centroids. Shape: (N, 3).
    bboxes_min, bboxes_max : np.ndarray
        Per-triangle AABBs. Shape: (N, 3).
    parent_bbox_min, parent_bbox_max : np.ndarray
        Parent node AABB. Shape: (3,).
    num_bins : int
        Number of bins for SAH sweep.

    Returns
    -------
    best_axis : int
        Best split axis (0, 1, 2) or -1 if no beneficial split.
    best_split : float
        Best split position along the axis.
    """
    count = sub_idx.shape[0]

    # Minimise C_trav + (SA_L*N_L + SA_R*N_R) * C_isect / SA_P
    c_trav = 1.0
    c_isect = 1.0
    parent_sa = _surface_area(parent_bbox_min, parent_bbox_max)
    if parent_sa < 1e-30:
        return -1, 0.0

    best_cost = count * c_isect
    best_axis = -1
    best_split = 0.0

    sub_min = bboxes_min[sub_idx]
    sub_max = bboxes_max[sub_idx]

    for axis in range(3):
        axis_min = parent_bbox_min[axis]
        axis_range = parent_bbox_max[axis] - axis_min

        if axis_range < 1e-10:
            continue

        # Bin centroids
        bin_width = axis_range / num_bins
        bins = ((centroids[sub_idx, axis] - axis_min) / bin_width).astype(np.int64)
        bins = np.clip(bins, 0, num_bins - 1)
        bin_counts = np.bincount(bins, minlength=num_bins)
        bin_bbox_min = np.full((num_bins, 3), _INF, dtype=np.float64)
        bin_bbox_max = np.full((num_bins, 3), -_INF, dtype=np.float64)
        np.minimum.at(bin_bbox_min, bins, sub_min)
        np.maximum.at(bin_bbox_max, bins, sub_max)

        # Sweep from left to right to evaluate split costs
        for split_bin in range(1, num_bins):
            left_count = int(bin_counts[:split_bin].sum())
            right_count = count - left_count

            if left_count == 0 or right_count == 0:
                continue

            left_valid = bin_counts[:split_bin] > 0
            right_valid = bin_counts[split_bin:] > 0

            left_min = bin_bbox_min[:split_bin][left_valid].min(axis=0)
            left_max = bin_bbox_max[:split_bin][left_valid].max(axis=0)
            right_min = bin_bbox_min[split_bin:][right_valid].min(axis=0)
            right_max = bin_bbox_max[split_bin:][right_valid].max(axis=0)

            sa_left = _surface_area(left_min, left_max)
            sa_right = _surface_area(right_min, right_max)

            cost = c_trav + (sa_left * left_count + sa_right * right_count) * c_isect / parent_sa

            if cost < best_cost:
                best_cost = cost
                best_axis = axis
                best_split = axis_min + split_bin * bin_width

    return best_axis, best_split


def _surface_area(bbox_min: np.ndarray, bbox_max: np.ndarray) -> float:
    """Compute the surface area of an AABB."""
    d = bbox_max - bbox_min
    return 2.0 * (d[0] * d[1] + d[1] * d[2] + d[2] * d[0])


def _partition_indices(
    indices: np.ndarray,
    start: int,
    end: int,
    axis: int,
    split: float,
    centroids: np.ndarray,
) -> int:
    """Partition indices in-place around a split plane.

    Indices with centroid[axis] < split go to the left partition.

    Returns
    -------
    int
        Partition point (first index of right partition).
    """
    sub = indices[start:end]
    left_mask = centroids[sub, axis] < split
    num_left = int(left_mask.sum())
    indices[start:end] = np.concatenate((sub[left_mask], sub[~left_mask]))
    return start + num_left
