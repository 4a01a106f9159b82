"""Mesh Ingestion Package.

Wavefront OBJ reading and synthetic spherical / ellipsoidal body
generation, both producing :class:`MeshData` for the facet engine.
"""
