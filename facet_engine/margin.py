"""Resize margins for facet bodies.

``DISTANCE`` moves every vertex radially by a signed distance;
``SCALE_FACTOR`` multiplies every vertex position by a positive factor.
"""

from __future__ import annotations

from enum import Enum

import numpy as np

from facet_engine.errors import InvalidMarginError


class MarginType(Enum):
    """How a margin value is applied to a body."""

    DISTANCE = "distance"
    SCALE_FACTOR = "scale_factor"

    def check_value(self, value: float, min_norm: float) -> None:
        """Reject a margin that would collapse or invert the body.

        Parameters
        ----------
        value : float
            Margin value [m] for DISTANCE, factor [-] for SCALE_FACTOR.
        min_norm : float
            Smallest vertex norm of the body [m].

        Raises
        ------
        InvalidMarginError
            If a DISTANCE margin reaches the closest vertex
            (``value <= -min_norm``) or a SCALE_FACTOR is not positive.
        """
        if not np.isfinite(value):
            raise InvalidMarginError(f"Margin value must be finite, got {value}")
        if self is MarginType.DISTANCE and value <= -min_norm:
            raise InvalidMarginError(
                f"Distance margin {value} m must be greater than -{min_norm} m "
                "(minimal vertex norm)"
            )
        if self is MarginType.SCALE_FACTOR and value <= 0.0:
            raise InvalidMarginError(f"Scale factor must be positive, got {value}")

    def apply(self, positions: np.ndarray, value: float) -> np.ndarray:
        """Return resized copies of ``positions`` (shape (N, 3)).

        Vertices at the origin are left in place by DISTANCE margins.
        """
        if self is MarginType.SCALE_FACTOR:
            return positions * value

        norms = np.linalg.norm(positions, axis=1, keepdims=True)
        safe_norms = np.where(norms > 0.0, norms, 1.0)
        return np.where(norms > 0.0, positions * ((norms + value) / safe_norms), positions)
