"""Exception taxonomy for the facet engine.

Query misses are never errors: they return ``None`` or an empty list.
Exceptions are reserved for invalid input and for numerical procedures
that cannot reach their tolerance.
"""

from __future__ import annotations


class FacetEngineError(Exception):
    """Base class of every error raised by the facet engine."""


class MeshLoadError(FacetEngineError, ValueError):
    """Raised when vertex or triangle input cannot form a mesh.

    Typical causes are a triangle referencing an out-of-range vertex id,
    malformed array shapes, non-finite coordinates or an empty mesh.
    """


class InvalidMarginError(FacetEngineError, ValueError):
    """Raised when a resize margin is outside its admissible range."""


class AltitudeIntersectionError(FacetEngineError):
    """Raised when no point at the requested altitude can be located."""


class ConvergenceError(FacetEngineError):
    """Raised when an iterative search exhausts its step budget."""
