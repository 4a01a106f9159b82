"""Line primitive and rotation helpers.

A :class:`Line` is parameterised by its abscissa along a unit direction,
measured from the point of the line closest to the coordinate origin.
It is either infinite or semi-finite: a semi-finite line only exists for
abscissas at or above ``min_abscissa``.

Notes
-----
Every query in the engine that accepts a line honours the minimum
abscissa: intersections, closest points and distances are computed on
the admissible half-line only.
"""

from __future__ import annotations

import math

import numpy as np

_PARALLEL_TOLERANCE = 1e-14


def as_point(value) -> np.ndarray:
    """Convert array-like input to a float64 3-vector.

    Raises
    ------
    ValueError
        If the input does not hold exactly three finite coordinates.
    """
    arr = np.asarray(value, dtype=np.float64).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"Expected a 3-vector, got shape {np.shape(value)}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"Point coordinates must be finite, got {arr}")
    return arr


class Line:
    """Infinite or semi-finite straight line.

    Parameters
    ----------
    p1, p2 : array-like
        Two distinct points of the line. The direction runs from ``p1``
        toward ``p2``.
    p_min_abscissa : array-like, optional
        Point whose abscissa becomes the lower bound of the line. The
        point does not need to lie on the line; its projection is used.
        If None, the line is infinite in both directions.

    Raises
    ------
    ValueError
        If ``p1`` and ``p2`` coincide.
    """

    __slots__ = ("_origin", "_direction", "_min_abscissa")

    def __init__(self, p1, p2, p_min_abscissa=None) -> None:
        p1 = as_point(p1)
        p2 = as_point(p2)
        delta = p2 - p1
        norm_sq = float(delta @ delta)
        if norm_sq == 0.0:
            raise ValueError("Line points must be distinct.")

        self._direction = delta / math.sqrt(norm_sq)
        self._origin = p1 - float(p1 @ self._direction) * self._direction
        if p_min_abscissa is None:
            self._min_abscissa = -math.inf
        else:
            self._min_abscissa = self.abscissa(as_point(p_min_abscissa))

    @classmethod
    def from_direction(cls, point, direction, p_min_abscissa=None) -> Line:
        """Build a line through ``point`` along ``direction``."""
        point = as_point(point)
        return cls(point, point + as_point(direction), p_min_abscissa)

    @classmethod
    def half_line(cls, start, toward) -> Line:
        """Build a semi-finite line starting at ``start`` toward ``toward``."""
        return cls(start, toward, start)

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def origin(self) -> np.ndarray:
        """Point of the line closest to the coordinate origin."""
        return self._origin.copy()

    @property
    def direction(self) -> np.ndarray:
        """Unit direction vector."""
        return self._direction.copy()

    @property
    def min_abscissa(self) -> float:
        """Lower abscissa bound (``-inf`` for an infinite line)."""
        return self._min_abscissa

    @property
    def is_semi_finite(self) -> bool:
        return self._min_abscissa != -math.inf

    @property
    def start_point(self) -> np.ndarray | None:
        """Point at the minimum abscissa, or None for an infinite line."""
        if not self.is_semi_finite:
            return None
        return self.point_at(self._min_abscissa)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def abscissa(self, point) -> float:
        """Abscissa of the projection of ``point`` on the line."""
        return float((np.asarray(point, dtype=np.float64) - self._origin) @ self._direction)

    def point_at(self, abscissa: float) -> np.ndarray:
        """Point of the (unbounded) line at the given abscissa."""
        return self._origin + abscissa * self._direction

    def accepts(self, abscissa: float) -> bool:
        """Whether the abscissa lies on the admissible part of the line."""
        return abscissa >= self._min_abscissa

    def closest_point(self, point) -> np.ndarray:
        """Closest admissible point of the line to ``point``."""
        return self.point_at(max(self.abscissa(point), self._min_abscissa))

    def distance(self, point) -> float:
        """Distance between ``point`` and the admissible part of the line."""
        point = np.asarray(point, dtype=np.float64)
        return float(np.linalg.norm(point - self.closest_point(point)))

    def distances(self, points: np.ndarray) -> np.ndarray:
        """Vectorised :meth:`distance` for an ``(N, 3)`` array of points."""
        rel = points - self._origin
        t = np.maximum(rel @ self._direction, self._min_abscissa)
        closest = self._origin + t[:, None] * self._direction
        return np.linalg.norm(points - closest, axis=1)

    def contains(self, point, tolerance: float = 1e-10) -> bool:
        """Whether ``point`` lies on the admissible part of the line."""
        return self.distance(point) <= tolerance

    def closest_points_to_segment(
        self,
        start: np.ndarray,
        end: np.ndarray,
    ) -> tuple[np.ndarray, np.ndarray]:
        """Closest pair between this line and the segment ``[start, end]``.

        The squared distance is a convex quadratic of the two parameters,
        so its minimum is either the unconstrained critical point or lies
        on the boundary of the parameter domain. Every boundary piece is a
        one-dimensional clamp, and the smallest candidate wins.

        Returns
        -------
        point_on_line : np.ndarray
            Admissible point of the line.
        point_on_segment : np.ndarray
            Point of the segment.
        """
        seg = end - start
        seg_len_sq = float(seg @ seg)

        candidates = [
            (self.closest_point(start), start),
            (self.closest_point(end), end),
        ]
        if self.is_semi_finite:
            anchor = self.point_at(self._min_abscissa)
            candidates.append((anchor, _closest_on_segment(anchor, start, seg, seg_len_sq)))

        if seg_len_sq > 0.0:
            b = float(seg @ self._direction)
            denom = seg_len_sq - b * b
            if denom > _PARALLEL_TOLERANCE * seg_len_sq:
                w = start - self._origin
                d_w = float(self._direction @ w)
                s = (b * d_w - float(seg @ w)) / denom
                t = b * s + d_w
                if 0.0 <= s <= 1.0 and t >= self._min_abscissa:
                    candidates.append((self.point_at(t), start + s * seg))

        return min(candidates, key=lambda pair: float(np.linalg.norm(pair[0] - pair[1])))

    def __repr__(self) -> str:
        return (
            f"Line(origin={self._origin.tolist()}, direction={self._direction.tolist()}, "
            f"min_abscissa={self._min_abscissa})"
        )


def _closest_on_segment(
    point: np.ndarray,
    start: np.ndarray,
    seg: np.ndarray,
    seg_len_sq: float,
) -> np.ndarray:
    if seg_len_sq == 0.0:
        return start.copy()
    s = min(1.0, max(0.0, float((point - start) @ seg) / seg_len_sq))
    return start + s * seg


# ---------------------------------------------------------------------------
# Rotations
# ---------------------------------------------------------------------------


def rotation_z_to_direction(target_dir: np.ndarray) -> np.ndarray:
    """Compute rotation matrix that maps ẑ = (0, 0, 1) to `target_dir`.

    Uses Rodrigues' rotation formula. Handles the singular cases where
    target_dir ≈ +ẑ (identity) or ≈ −ẑ (180° flip around x-axis).

    Parameters
    ----------
    target_dir : np.ndarray
        Unit target direction. Shape: (3,).

    Returns
    -------
    R : np.ndarray
        3×3 rotation matrix. Shape: (3, 3).
    """
    z_axis = np.array([0.0, 0.0, 1.0])
    target_dir = np.asarray(target_dir, dtype=np.float64)
    target_dir = target_dir / np.linalg.norm(target_dir)
    dot = float(np.dot(z_axis, target_dir))

    if dot > 1.0 - 1e-12:
        return np.eye(3, dtype=np.float64)

    if dot < -1.0 + 1e-12:
        return np.array([
            [1.0,  0.0,  0.0],
            [0.0, -1.0,  0.0],
            [0.0,  0.0, -1.0],
        ], dtype=np.float64)

    k = np.cross(z_axis, target_dir)
    sin_theta = float(np.linalg.norm(k))
    return rotation_about_axis(k / sin_theta, math.atan2(sin_theta, dot))


def rotation_about_axis(axis: np.ndarray, angle: float) -> np.ndarray:
    """Rotation matrix of ``angle`` radians about a unit ``axis``.

    R = I + sin(θ)·K + (1 − cos(θ))·K², with K the cross-product matrix.
    """
    k = np.asarray(axis, dtype=np.float64)
    K = np.array([
        [0.0, -k[2], k[1]],
        [k[2], 0.0, -k[0]],
        [-k[1], k[0], 0.0],
    ], dtype=np.float64)
    return np.eye(3) + math.sin(angle) * K + (1.0 - math.cos(angle)) * (K @ K)


def angle_between(u: np.ndarray, v: np.ndarray) -> float:
    """Angle between two non-zero vectors, accurate near 0 and π."""
    return math.atan2(float(np.linalg.norm(np.cross(u, v))), float(np.dot(u, v)))
